"""Build orchestrator.

Expands the manifest for a target, runs every text source through the
substitution engine, and writes the results under the target's output root.
Files are only rewritten when their bytes change, so repeated builds leave
timestamps alone and watch mode does not retrigger itself.
"""

from __future__ import annotations

import os
import shutil
import tempfile
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional

from instrukt_ai_logging import get_logger

from kiro_agents.config import Settings
from kiro_agents.constants import DEFAULT_MAX_ITERATIONS, TEXT_SUFFIXES
from kiro_agents.errors import BuildError, SourceDecodeError, SourceNotFoundError
from kiro_agents.manifest import MANIFEST, FileMapping, ResolvedMapping, expand_mappings
from kiro_agents.manifest_validation import declares_power_metadata, validate_power_bundle, validate_power_metadata
from kiro_agents.substitutions.engine import SubstitutionResult, resolve
from kiro_agents.substitutions.profiles import registry_for
from kiro_agents.substitutions.registry import SubstitutionRegistry
from kiro_agents.targets import BuildContext, BuildTarget

logger = get_logger(__name__)

WRITTEN = "written"
UNCHANGED = "unchanged"
DISCARDED = "discarded"


@dataclass
class BuildReport:
    """Outcome of one target build, in expansion order."""

    target: BuildTarget
    written: list[Path] = field(default_factory=list)
    unchanged: list[Path] = field(default_factory=list)
    discarded: list[Path] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.written) + len(self.unchanged)

    def record(self, destination: Path, status: str, warning: Optional[str] = None) -> None:
        if status == WRITTEN:
            self.written.append(destination)
        elif status == UNCHANGED:
            self.unchanged.append(destination)
        else:
            self.discarded.append(destination)
        if warning:
            self.warnings.append(warning)


def is_text_source(path: Path) -> bool:
    return path.suffix.lower() in TEXT_SUFFIXES


def _render(
    resolved: ResolvedMapping,
    registry: SubstitutionRegistry,
    context: BuildContext,
    *,
    strict: bool,
    max_iterations: int,
    warn_unresolved: bool,
) -> tuple[bytes, Optional[SubstitutionResult]]:
    try:
        data = resolved.source.read_bytes()
    except FileNotFoundError as e:
        if resolved.mapping.fallback is not None:
            logger.debug("No %s; writing default %s", resolved.source, resolved.destination.name)
            return resolved.mapping.fallback, None
        raise SourceNotFoundError(resolved.source, referenced_by=resolved.mapping.source) from e
    if not is_text_source(resolved.source):
        return data, None

    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise SourceDecodeError(resolved.source, e) from e
    result = resolve(
        text,
        registry,
        context,
        document=str(resolved.source),
        max_iterations=max_iterations,
        strict=strict,
        warn_unresolved=warn_unresolved,
    )
    return result.text.encode("utf-8"), result


def render(
    resolved: ResolvedMapping,
    registry: SubstitutionRegistry,
    context: BuildContext,
    *,
    strict: bool = True,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
    warn_unresolved: bool = False,
) -> bytes:
    """Produce the destination bytes for one pair.

    Text sources go through the substitution engine; anything else is copied
    verbatim.

    Raises:
        SourceNotFoundError: the source file does not exist.
        SourceDecodeError: a text source is not valid UTF-8.
        SubstitutionDivergenceError: strict mode and the document did not converge.
    """
    data, _ = _render(
        resolved,
        registry,
        context,
        strict=strict,
        max_iterations=max_iterations,
        warn_unresolved=warn_unresolved,
    )
    return data


def write_if_changed(path: Path, data: bytes) -> bool:
    """Write ``data`` to ``path`` unless it already holds exactly those bytes.

    The write goes through a temporary file in the same directory so readers
    never observe a half-written destination.

    Returns:
        True if the file was written.
    """
    try:
        if path.read_bytes() == data:
            return False
    except FileNotFoundError:
        pass
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
    return True


class OutputWriter:
    """Commits rendered files straight to their destinations.

    ``begin`` is called for each pair before it is rendered and its ticket is
    handed back to ``commit``; subclasses use it to drop superseded renders.
    """

    def begin(self, resolved: ResolvedMapping) -> int:
        return 0

    def commit(self, resolved: ResolvedMapping, data: bytes, ticket: int) -> str:
        return WRITTEN if write_if_changed(resolved.destination, data) else UNCHANGED


def build_pairs(
    pairs: Iterable[ResolvedMapping],
    registry: SubstitutionRegistry,
    context: BuildContext,
    settings: Settings,
    *,
    strict: bool,
    writer: Optional[OutputWriter] = None,
    report: Optional[BuildReport] = None,
) -> BuildReport:
    """Render and commit ``pairs``; the report follows input order regardless of workers."""
    writer = writer or OutputWriter()
    report = report or BuildReport(target=context.target)
    pairs = list(pairs)

    def _process(item: ResolvedMapping, ticket: int) -> tuple[str, Optional[str]]:
        data, result = _render(
            item,
            registry,
            context,
            strict=strict,
            max_iterations=settings.max_iterations,
            warn_unresolved=settings.warn_unresolved,
        )
        warning = None
        if result is not None and not result.converged:
            warning = f"{item.source}: unresolved after {result.passes} passes: {', '.join(result.unresolved)}"
        return writer.commit(item, data, ticket), warning

    tickets = [writer.begin(item) for item in pairs]
    if settings.workers > 1 and len(pairs) > 1:
        with ThreadPoolExecutor(max_workers=settings.workers) as executor:
            futures = [executor.submit(_process, item, ticket) for item, ticket in zip(pairs, tickets)]
            try:
                outcomes = [future.result() for future in futures]
            except BaseException:
                executor.shutdown(cancel_futures=True)
                raise
    else:
        outcomes = [_process(item, ticket) for item, ticket in zip(pairs, tickets)]

    for item, (status, warning) in zip(pairs, outcomes):
        report.record(item.destination, status, warning)
        if status == WRITTEN:
            logger.debug("Wrote %s", item.destination)
    return report


def _check_buildable(target: BuildTarget) -> None:
    if not target.buildable:
        raise BuildError(f"Target '{target.value}' is a file list only and cannot be built")


def build_target(
    settings: Settings,
    target: BuildTarget,
    *,
    registry: Optional[SubstitutionRegistry] = None,
    strict: Optional[bool] = None,
    mappings: Iterable[FileMapping] = MANIFEST,
    writer: Optional[OutputWriter] = None,
) -> BuildReport:
    """Build every manifest pair for ``target``.

    Raises:
        BuildError: any failure; nothing is retried and the first error stops
            this target's build.
    """
    _check_buildable(target)
    mappings = tuple(mappings)
    strict = settings.strict if strict is None else strict
    registry = registry if registry is not None else registry_for(settings.profile)
    context = settings.context(target)
    power_bundle = target is BuildTarget.POWER and declares_power_metadata(mappings)

    if power_bundle:
        errors = validate_power_metadata(settings.source_root)
        if errors:
            raise BuildError("; ".join(errors))

    pairs = expand_mappings(mappings, settings.source_root, settings.output_root(target), target, strict=strict)
    report = build_pairs(pairs, registry, context, settings, strict=strict, writer=writer)
    if power_bundle:
        errors, warnings = validate_power_bundle(settings.output_root(target))
        report.warnings.extend(warnings)
        if errors:
            raise BuildError(f"Invalid power bundle {settings.output_root(target)}: {'; '.join(errors)}")
    logger.info(
        "Built %s: %d written, %d unchanged (%s)",
        target.value,
        len(report.written),
        len(report.unchanged),
        settings.output_root(target),
    )
    return report


def build_mappings(
    settings: Settings,
    target: BuildTarget,
    selected: Iterable[FileMapping],
    *,
    mappings: Iterable[FileMapping] = MANIFEST,
    registry: Optional[SubstitutionRegistry] = None,
    strict: Optional[bool] = None,
    writer: Optional[OutputWriter] = None,
    report: Optional[BuildReport] = None,
) -> BuildReport:
    """Rebuild only the pairs the ``selected`` mappings expand to.

    The whole of ``mappings`` is expanded first so a new source that collides
    with another mapping's destination fails here exactly as in a full build.

    Raises:
        ConflictError: two sources resolve to the same destination.
    """
    _check_buildable(target)
    selected = set(selected)
    strict = settings.strict if strict is None else strict
    registry = registry if registry is not None else registry_for(settings.profile)
    expanded = expand_mappings(mappings, settings.source_root, settings.output_root(target), target, strict=strict)
    return build_pairs(
        [item for item in expanded if item.mapping in selected],
        registry,
        settings.context(target),
        settings,
        strict=strict,
        writer=writer,
        report=report,
    )


def clean(settings: Settings) -> list[Path]:
    """Remove the packaged build roots that live inside the project.

    The dev tree is never removed, nor is any output root outside the
    project root.
    """
    removed: list[Path] = []
    for target in (BuildTarget.NPM, BuildTarget.POWER):
        root = settings.output_root(target)
        if settings.project_root not in root.parents:
            logger.warning("Not cleaning %s output outside the project: %s", target.value, root)
            continue
        if not root.exists():
            continue
        shutil.rmtree(root)
        removed.append(root)
        logger.info("Removed %s", root)
    return removed
