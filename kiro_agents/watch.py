"""Watch mode: rebuild affected outputs when source files change.

Change events are coalesced: every event (re)starts a debounce timer and
the pending mappings are rebuilt once it fires. Each destination carries a
generation counter that is bumped whenever a rebuild of it starts, so a
slow render that finishes after a newer one has started is dropped instead
of overwriting fresher output.
"""

from __future__ import annotations

import threading
import time
from concurrent.futures import Executor
from pathlib import Path
from typing import Iterable, Optional

import pathspec
from instrukt_ai_logging import InstruktAILogger, get_logger
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from kiro_agents.build import DISCARDED, BuildReport, OutputWriter, build_mappings, build_target
from kiro_agents.config import Settings
from kiro_agents.errors import BuildError
from kiro_agents.manifest import MANIFEST, FileMapping, ResolvedMapping
from kiro_agents.substitutions.profiles import registry_for
from kiro_agents.substitutions.registry import SubstitutionRegistry
from kiro_agents.targets import BuildTarget

logger: InstruktAILogger = get_logger(__name__)

_WATCH_EVENT_TYPES = {"created", "modified", "moved", "deleted"}

# Always skipped, on top of the project's configured ignore patterns.
DEFAULT_IGNORES = (
    ".git/",
    ".DS_Store",
    "*~",
    "*.swp",
    "*.swx",
    "*.tmp",
    "*.tmp.*",
    ".#*",
    "#*#",
)


class GenerationalWriter(OutputWriter):
    """Output writer that drops renders superseded by a newer rebuild."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._generations: dict[Path, int] = {}

    def _bump(self, destination: Path) -> int:
        generation = self._generations.get(destination, 0) + 1
        self._generations[destination] = generation
        return generation

    def generation(self, destination: Path) -> int:
        with self._lock:
            return self._generations.get(destination, 0)

    def begin(self, resolved: ResolvedMapping) -> int:
        with self._lock:
            return self._bump(resolved.destination)

    def commit(self, resolved: ResolvedMapping, data: bytes, ticket: int) -> str:
        with self._lock:
            if self._generations.get(resolved.destination) != ticket:
                logger.debug("Discarding stale render of %s", resolved.destination)
                return DISCARDED
            return super().commit(resolved, data, ticket)

    def remove(self, destination: Path) -> bool:
        """Delete a destination and invalidate any render still in flight for it."""
        with self._lock:
            self._bump(destination)
            if not destination.exists():
                return False
            destination.unlink()
            return True


class IncrementalBuilder:
    """Debounced, per-mapping rebuilds for one target."""

    def __init__(
        self,
        settings: Settings,
        target: BuildTarget,
        registry: Optional[SubstitutionRegistry] = None,
        *,
        mappings: Iterable[FileMapping] = MANIFEST,
        executor: Optional[Executor] = None,
    ) -> None:
        if not target.buildable:
            raise BuildError(f"Target '{target.value}' is a file list only and cannot be watched")
        self.settings = settings
        self.target = target
        self.registry = registry if registry is not None else registry_for(settings.profile)
        self.mappings = tuple(m for m in mappings if m.applies_to(target))
        self.writer = GenerationalWriter()
        self._executor = executor
        self._lock = threading.Lock()
        self._pending: dict[FileMapping, None] = {}
        self._deletions: dict[Path, None] = {}
        self._full_rebuild = False
        self._timer: Optional[threading.Timer] = None
        self.dependencies = self.registry.dependencies(settings.context(target))

    @property
    def has_pending(self) -> bool:
        with self._lock:
            return bool(self._pending or self._deletions or self._full_rebuild)

    def affected_mappings(self, rel_path: str) -> list[FileMapping]:
        """Mappings whose source covers ``rel_path`` (relative to the source root)."""
        return [m for m in self.mappings if m.matches(rel_path)]

    def _relative_source(self, path: Path) -> Optional[str]:
        if not path.is_absolute():
            return path.as_posix()
        try:
            return path.resolve().relative_to(self.settings.source_root).as_posix()
        except ValueError:
            return None

    def is_dependency(self, path: Path) -> bool:
        """True for a dependency file or a file directly inside a dependency directory."""
        candidate = (path if path.is_absolute() else self.settings.source_root / path).resolve()
        return candidate in self.dependencies or candidate.parent in self.dependencies

    def notify(self, path: Path | str, deleted: bool = False) -> bool:
        """Queue the work a change to ``path`` implies and restart the debounce timer.

        ``path`` is absolute or relative to the source root.

        Returns:
            True if anything was scheduled.
        """
        path = Path(path)
        full = self.is_dependency(path)
        rel = self._relative_source(path)
        affected = self.affected_mappings(rel) if rel is not None else []
        removals: list[Path] = []
        if deleted and rel is not None:
            kept: list[FileMapping] = []
            for mapping in affected:
                if mapping.is_glob or mapping.optional:
                    removals.append(self.settings.output_root(self.target) / mapping.destination_for(rel))
                elif mapping.fallback is not None:
                    kept.append(mapping)
                else:
                    logger.warning("Manifest source deleted: %s", rel)
            affected = kept

        if not (full or affected or removals):
            return False

        with self._lock:
            self._full_rebuild = self._full_rebuild or full
            for mapping in affected:
                self._pending[mapping] = None
            for destination in removals:
                self._deletions[destination] = None
            self._restart_timer()
        logger.debug("Change queued: %s (deleted=%s, full=%s)", path, deleted, full)
        return True

    def _restart_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
        self._timer = threading.Timer(self.settings.debounce_ms / 1000.0, self._on_timer)
        self._timer.daemon = True
        self._timer.start()

    def _on_timer(self) -> None:
        if self._executor is not None:
            self._executor.submit(self._flush_logged)
        else:
            self._flush_logged()

    def _flush_logged(self) -> None:
        try:
            self.flush()
        except (BuildError, OSError) as e:
            logger.error("Rebuild failed: %s", e)

    def cancel(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def flush(self) -> Optional[BuildReport]:
        """Run all queued work now.

        Returns:
            The rebuild report, or None if nothing was pending.
        """
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            pending = list(self._pending)
            deletions = list(self._deletions)
            full = self._full_rebuild
            self._pending.clear()
            self._deletions.clear()
            self._full_rebuild = False

        if not (pending or deletions or full):
            return None

        for destination in deletions:
            if self.writer.remove(destination):
                logger.info("Removed %s", destination)

        if full:
            report = self.rebuild_all()
        else:
            report = build_mappings(
                self.settings,
                self.target,
                pending,
                mappings=self.mappings,
                registry=self.registry,
                writer=self.writer,
            )
        for warning in report.warnings:
            logger.warning(warning)
        logger.info(
            "Rebuilt %s: %d written, %d unchanged, %d discarded",
            self.target.value,
            len(report.written),
            len(report.unchanged),
            len(report.discarded),
        )
        return report

    def rebuild_all(self) -> BuildReport:
        self.dependencies = self.registry.dependencies(self.settings.context(self.target))
        return build_target(
            self.settings,
            self.target,
            registry=self.registry,
            mappings=self.mappings,
            writer=self.writer,
        )


class SourceWatcher(FileSystemEventHandler):
    """Forward relevant file system events to an ``IncrementalBuilder``."""

    def __init__(self, builder: IncrementalBuilder, ignore: Iterable[str] = ()) -> None:
        self.builder = builder
        self.source_root = builder.settings.source_root
        self.output_roots = tuple(builder.settings.outputs.values())
        self.spec = pathspec.PathSpec.from_lines("gitwildmatch", [*DEFAULT_IGNORES, *ignore])

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        if event.event_type not in _WATCH_EVENT_TYPES:
            return

        if event.event_type == "moved":
            self._dispatch(event.src_path, deleted=True)
            dest_path = getattr(event, "dest_path", None)
            if dest_path:
                self._dispatch(dest_path, deleted=False)
            return
        self._dispatch(event.src_path, deleted=event.event_type == "deleted")

    def _dispatch(self, raw_path: str | bytes, *, deleted: bool) -> None:
        path = Path(raw_path.decode() if isinstance(raw_path, bytes) else raw_path).resolve()
        if any(root == path or root in path.parents for root in self.output_roots):
            return
        if self.builder.is_dependency(path):
            self.builder.notify(path, deleted=deleted)
            return
        try:
            rel_path = path.relative_to(self.source_root)
        except ValueError:
            return  # Path not in source root
        if self.spec.match_file(rel_path.as_posix()):
            logger.trace("Ignoring change: %s (matched ignore patterns)", rel_path)
            return
        if self.builder.notify(path, deleted=deleted):
            logger.info("Change detected: %s", rel_path)


def _watch_directories(builder: IncrementalBuilder) -> list[tuple[Path, bool]]:
    """Directories to observe and whether to observe them recursively."""
    source_root = builder.settings.source_root
    directories: list[tuple[Path, bool]] = [(source_root, True)]
    for dependency in sorted(builder.dependencies):
        parent = dependency if dependency.is_dir() else dependency.parent
        if parent == source_root or source_root in parent.parents:
            continue
        if parent.is_dir() and (parent, False) not in directories:
            directories.append((parent, False))
    return directories


def run_watch(
    settings: Settings,
    target: BuildTarget = BuildTarget.DEV,
    *,
    registry: Optional[SubstitutionRegistry] = None,
) -> None:
    """Build ``target`` once, then rebuild on change until interrupted."""
    builder = IncrementalBuilder(settings, target, registry)
    try:
        builder.rebuild_all()
    except (BuildError, OSError) as e:
        logger.error("Initial build failed: %s", e)

    handler = SourceWatcher(builder, ignore=settings.ignore)
    observer = Observer()
    for directory, recursive in _watch_directories(builder):
        observer.schedule(handler, str(directory), recursive=recursive)
    observer.start()

    logger.info("Watching %s for changes (target: %s)...", settings.source_root, target.value)
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        logger.info("Stopping watch")
    finally:
        observer.stop()
        builder.cancel()
    observer.join()
