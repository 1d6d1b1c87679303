"""Build error taxonomy.

Every error names the offending source path(s) and, where it applies, the
placeholder or heading involved. Nothing here is retried: the invoking
command stops the current target's build.
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, Sequence


class BuildError(Exception):
    """Base class for all build failures."""


class ManifestError(BuildError, ValueError):
    """A FileMapping declaration violates the glob/placeholder invariant."""


class ConflictError(BuildError):
    """Two resolved mappings would write the same destination."""

    def __init__(self, destination: Path, sources: Sequence[Path]) -> None:
        self.destination = destination
        self.sources = tuple(sources)
        joined = " and ".join(str(s) for s in self.sources)
        super().__init__(f"Destination conflict: {destination} is written by both {joined}")


class SubstitutionDivergenceError(BuildError):
    """Fixed-point substitution hit the iteration cap with tokens still unresolved."""

    def __init__(self, document: str, unresolved: Iterable[str], passes: int) -> None:
        self.document = document
        self.unresolved = tuple(unresolved)
        self.passes = passes
        tokens = ", ".join(self.unresolved) or "(none)"
        super().__init__(
            f"Substitution did not converge for {document} after {passes} passes; unresolved: {tokens}"
        )


class SectionNotFoundError(BuildError):
    """A requested heading does not exist in the document."""

    def __init__(self, document: str, heading: str) -> None:
        self.document = document
        self.heading = heading
        super().__init__(f"Section not found: '{heading}' in {document}")


class EmptyGlobError(BuildError):
    """A mapping marked required matched zero files."""

    def __init__(self, pattern: str, source_root: Path) -> None:
        self.pattern = pattern
        self.source_root = source_root
        super().__init__(f"Required glob matched no files: {pattern} (in {source_root})")


class SourceNotFoundError(BuildError):
    """A literal source or auxiliary document is missing."""

    def __init__(self, path: Path, *, referenced_by: str | None = None) -> None:
        self.path = path
        self.referenced_by = referenced_by
        suffix = f" (referenced by {referenced_by})" if referenced_by else ""
        super().__init__(f"Source file not found: {path}{suffix}")


class SourceDecodeError(BuildError):
    """A text source is not valid UTF-8."""

    def __init__(self, path: Path, error: UnicodeDecodeError) -> None:
        self.path = path
        super().__init__(f"Source is not valid UTF-8: {path} (byte {error.start}: {error.reason})")
