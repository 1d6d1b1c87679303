"""Recursive substitution engine.

A single pass replaces every registered ``{{{KEY}}}`` token with its
generator's output, computed against the pre-pass snapshot of the document:
replacement text is never re-scanned within the same pass. Because a
generator may emit further tokens (for example an injected section that
references another placeholder), ``resolve`` repeats passes until no
registered token remains, bounded by an iteration cap.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from instrukt_ai_logging import get_logger

from kiro_agents.constants import DEFAULT_MAX_ITERATIONS, TOKEN_RE
from kiro_agents.errors import SubstitutionDivergenceError
from kiro_agents.substitutions.registry import SubstitutionRegistry, token_for
from kiro_agents.targets import BuildContext

logger = get_logger(__name__)

# Anything shaped like a token, including keys that could never be registered.
_TOKEN_LIKE_RE = re.compile(r"\{\{\{([^{}\s]+)\}\}\}")


@dataclass(frozen=True)
class SubstitutionResult:
    text: str
    passes: int
    converged: bool
    unresolved: tuple[str, ...] = ()


def find_tokens(text: str) -> list[str]:
    """Distinct token keys in ``text``, in document order."""
    seen: dict[str, None] = {}
    for match in TOKEN_RE.finditer(text):
        seen.setdefault(match.group(1), None)
    return list(seen)


def _registered_tokens(text: str, registry: SubstitutionRegistry) -> list[str]:
    return [key for key in find_tokens(text) if key in registry]


def apply_once(text: str, registry: SubstitutionRegistry, context: BuildContext) -> tuple[str, tuple[str, ...]]:
    """Run one substitution pass.

    Each registered key is generated at most once per pass. Unknown tokens
    are left untouched since documentation legitimately shows placeholder
    examples.

    Returns:
        The rewritten text and the keys that were replaced.
    """
    values: dict[str, str] = {}

    def _replace(match: re.Match[str]) -> str:
        key = match.group(1)
        if key not in registry:
            return match.group(0)
        if key not in values:
            values[key] = registry.get(key).generate(context)
        return values[key]

    return TOKEN_RE.sub(_replace, text), tuple(values)


def resolve(
    text: str,
    registry: SubstitutionRegistry,
    context: BuildContext,
    *,
    document: str = "<string>",
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
    strict: bool = True,
    warn_unresolved: bool = False,
) -> SubstitutionResult:
    """Apply passes until no registered token remains.

    A pass that changes nothing while registered tokens remain means a
    generator reproduces its own token; that is treated like hitting the cap.

    Raises:
        SubstitutionDivergenceError: in strict mode, when the document does not
            converge within ``max_iterations`` passes.
    """
    if max_iterations < 1:
        raise ValueError(f"max_iterations must be >= 1, got {max_iterations}")

    current = text
    passes = 0
    converged = True
    while _registered_tokens(current, registry):
        if passes >= max_iterations:
            converged = False
            break
        updated, _ = apply_once(current, registry, context)
        passes += 1
        if updated == current:
            converged = False
            break
        current = updated

    unresolved: tuple[str, ...] = ()
    if not converged:
        unresolved = tuple(token_for(key) for key in _registered_tokens(current, registry))
        if strict:
            raise SubstitutionDivergenceError(document, unresolved, passes)
        logger.warning(
            "Substitution did not converge for %s after %d passes; unresolved: %s",
            document,
            passes,
            ", ".join(unresolved),
        )

    if warn_unresolved:
        unknown = sorted({m.group(0) for m in _TOKEN_LIKE_RE.finditer(current) if m.group(1) not in registry})
        if unknown:
            logger.warning("Unregistered placeholder tokens in %s: %s", document, ", ".join(unknown))

    if passes:
        logger.debug("Resolved %s in %d passes", document, passes)
    return SubstitutionResult(text=current, passes=passes, converged=converged, unresolved=unresolved)
