"""Centralized file manifest for every build target.

Single source of truth for source -> destination mappings. Glob sources
auto-discover files, so adding a protocol document needs no manifest edit::

    FileMapping("core/protocols/*.md", "steering/{name}.md", targets=POWER_ONLY)

maps ``src/core/protocols/agent-activation.md`` to
``<power root>/steering/agent-activation.md``.

Expansion is deterministic: mappings expand in declaration order and glob
matches in lexicographic order of the matched name, so installers and file
count checks see the same list on every run.
"""

from __future__ import annotations

import fnmatch
import glob as globlib
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Iterable, Optional

from instrukt_ai_logging import get_logger

from kiro_agents.constants import NAME_PLACEHOLDER
from kiro_agents.errors import ConflictError, EmptyGlobError, ManifestError
from kiro_agents.targets import BuildTarget

logger = get_logger(__name__)

_GLOB_CHARS = ("*", "?", "[")


def is_glob(pattern: str) -> bool:
    return any(char in pattern for char in _GLOB_CHARS)


@dataclass(frozen=True)
class FileMapping:
    """Declarative source -> destination rule.

    Attributes:
        source: Path relative to the source root; may be a glob.
        destination: Path relative to the target root. Must contain exactly one
            ``{name}`` when ``source`` is a glob, and none otherwise.
        targets: Targets this rule applies to. Empty means all targets.
        required: Strict expansion fails when a required glob matches nothing.
        optional: A literal source that may be absent; nothing is produced for it.
        fallback: Bytes written to the destination when a literal source is absent.
    """

    source: str
    destination: str
    targets: frozenset[BuildTarget] = field(default_factory=frozenset)
    required: bool = False
    optional: bool = False
    fallback: Optional[bytes] = None

    def __post_init__(self) -> None:
        if not self.source or not self.destination:
            raise ManifestError(f"Mapping needs both source and destination: {self.source!r} -> {self.destination!r}")
        for value in (self.source, self.destination):
            if PurePosixPath(value).is_absolute() or ".." in PurePosixPath(value).parts:
                raise ManifestError(f"Mapping paths must be relative and inside their root: {value!r}")
        placeholders = self.destination.count(NAME_PLACEHOLDER)
        if self.is_glob:
            if placeholders != 1:
                raise ManifestError(
                    f"Glob mapping {self.source!r} needs exactly one {NAME_PLACEHOLDER} in its destination, "
                    f"got {self.destination!r}"
                )
        elif placeholders or is_glob(self.destination):
            raise ManifestError(
                f"Literal mapping {self.source!r} needs a literal destination, got {self.destination!r}"
            )
        if (self.optional or self.fallback is not None) and (self.is_glob or self.required):
            raise ManifestError(
                f"Only non-required literal mappings can be optional or have a fallback: {self.source!r}"
            )
        if self.optional and self.fallback is not None:
            raise ManifestError(f"Mapping {self.source!r} cannot be both optional and have a fallback")
        # Accept any iterable of targets (or target names) at declaration time.
        object.__setattr__(self, "targets", frozenset(BuildTarget(t) for t in self.targets))

    @property
    def is_glob(self) -> bool:
        return is_glob(self.source)

    def applies_to(self, target: BuildTarget) -> bool:
        return not self.targets or target in self.targets

    def matches(self, relative_path: str) -> bool:
        """True when a source-root relative path is covered by this mapping."""
        candidate = PurePosixPath(relative_path).as_posix()
        if not self.is_glob:
            return candidate == PurePosixPath(self.source).as_posix()
        if "**" in self.source:
            patterns = (self.source, self.source.replace("**/", ""))
            return any(fnmatch.fnmatchcase(candidate, pattern) for pattern in patterns)
        same_depth = len(PurePosixPath(candidate).parts) == len(PurePosixPath(self.source).parts)
        return same_depth and fnmatch.fnmatchcase(candidate, self.source)

    def destination_for(self, relative_source: str) -> str:
        if not self.is_glob:
            return self.destination
        return self.destination.replace(NAME_PLACEHOLDER, PurePosixPath(relative_source).stem)


@dataclass(frozen=True)
class ResolvedMapping:
    """One concrete (source, destination) pair produced by expansion."""

    source: Path
    destination: Path
    mapping: FileMapping

    @property
    def name(self) -> str:
        return self.source.stem


def _glob_sources(pattern: str, source_root: Path) -> list[str]:
    matches = globlib.glob(pattern, root_dir=str(source_root), recursive="**" in pattern)
    files = [m for m in matches if (source_root / m).is_file()]
    relative = [PurePosixPath(Path(m).as_posix()) for m in files]
    relative.sort(key=lambda p: (p.stem, p.as_posix()))
    return [p.as_posix() for p in relative]


def expand_mapping(
    mapping: FileMapping,
    source_root: Path,
    dest_root: Path,
    *,
    strict: bool = False,
) -> list[ResolvedMapping]:
    """Resolve one mapping to concrete absolute pairs.

    An optional literal whose source is absent expands to nothing.

    Raises:
        EmptyGlobError: ``strict`` is set and a required glob matched nothing.
    """
    if not mapping.is_glob:
        if mapping.optional and not (source_root / mapping.source).is_file():
            logger.debug("Optional source absent: %s", mapping.source)
            return []
        return [ResolvedMapping(source_root / mapping.source, dest_root / mapping.destination, mapping)]

    matches = _glob_sources(mapping.source, source_root)
    if not matches:
        if strict and mapping.required:
            raise EmptyGlobError(mapping.source, source_root)
        logger.info("Glob matched no files: %s (in %s)", mapping.source, source_root)
        return []
    return [
        ResolvedMapping(source_root / rel, dest_root / mapping.destination_for(rel), mapping) for rel in matches
    ]


def expand_mappings(
    mappings: Iterable[FileMapping],
    source_root: Path,
    dest_root: Path,
    target: BuildTarget,
    *,
    strict: bool = False,
) -> list[ResolvedMapping]:
    """Expand every mapping that applies to ``target``.

    Identical (source, destination) pairs collapse to one entry.

    Raises:
        ConflictError: two different sources resolve to the same destination.
        EmptyGlobError: see ``expand_mapping``.
    """
    resolved: list[ResolvedMapping] = []
    by_destination: dict[Path, ResolvedMapping] = {}
    for mapping in mappings:
        if not mapping.applies_to(target):
            continue
        for item in expand_mapping(mapping, source_root, dest_root, strict=strict):
            existing = by_destination.get(item.destination)
            if existing is not None:
                if existing.source == item.source:
                    continue
                raise ConflictError(item.destination, (existing.source, item.source))
            by_destination[item.destination] = item
            resolved.append(item)
    return resolved


def expected_files(
    target: BuildTarget,
    source_root: Path,
    mappings: Iterable[FileMapping] | None = None,
) -> list[str]:
    """Destination paths relative to the target root, in expansion order.

    This is the list the installer copies for ``target``.
    """
    placeholder_root = Path("/")
    expanded = expand_mappings(MANIFEST if mappings is None else mappings, source_root, placeholder_root, target)
    return [item.destination.relative_to(placeholder_root).as_posix() for item in expanded]


STEERING_TARGETS = frozenset({BuildTarget.DEV, BuildTarget.NPM, BuildTarget.CLI})
POWER_ONLY = frozenset({BuildTarget.POWER})

# Written when the project ships no kiro/mcp.json.
EMPTY_MCP_JSON = b'{\n  "mcpServers": {}\n}\n'

MANIFEST: tuple[FileMapping, ...] = (
    # Core system files (always loaded)
    FileMapping("core/aliases.md", "aliases.md", targets=STEERING_TARGETS),
    # Interactive interfaces (manual inclusion via /agents, /modes, /strict)
    FileMapping("core/agents.md", "agents.md", targets=STEERING_TARGETS),
    FileMapping("kiro/steering/modes.md", "modes.md", targets=STEERING_TARGETS),
    FileMapping("core/strict.md", "strict.md", targets=STEERING_TARGETS),
    # Interaction patterns (loaded by agents/modes)
    FileMapping("core/interactions/*.md", "interactions/{name}.md", targets=STEERING_TARGETS),
    # kiro-protocols power bundle
    FileMapping("kiro/POWER.md", "POWER.md", targets=POWER_ONLY, required=True),
    FileMapping("kiro/mcp.json", "mcp.json", targets=POWER_ONLY, fallback=EMPTY_MCP_JSON),
    FileMapping("kiro/icon.png", "icon.png", targets=POWER_ONLY, optional=True),
    FileMapping("core/protocols/*.md", "steering/{name}.md", targets=POWER_ONLY, required=True),
    FileMapping("kiro/steering/protocols/*.md", "steering/{name}.md", targets=POWER_ONLY),
)
