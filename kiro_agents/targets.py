"""Build targets and the immutable context handed to every generator."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path


class BuildTarget(str, Enum):
    """Named distribution outputs."""

    DEV = "dev"
    NPM = "npm"
    POWER = "power"
    # Installer file list only; never written by the build.
    CLI = "cli"

    @classmethod
    def from_str(cls, value: str) -> "BuildTarget":
        normalized = value.strip().lower()
        for member in cls:
            if member.value == normalized:
                return member
        raise ValueError(f"Unknown build target '{value}'")

    @classmethod
    def choices(cls) -> tuple[str, ...]:
        return tuple(member.value for member in cls)

    @property
    def buildable(self) -> bool:
        return self is not BuildTarget.CLI


BUILDABLE_TARGETS: tuple[BuildTarget, ...] = tuple(t for t in BuildTarget if t.buildable)


@dataclass(frozen=True)
class BuildContext:
    """Everything a generator may depend on.

    Attributes:
        target: The distribution being produced.
        project_root: Repository root (package.json, .kiro/ live here).
        source_root: Template source tree that manifest sources are relative to.
    """

    target: BuildTarget
    project_root: Path
    source_root: Path
