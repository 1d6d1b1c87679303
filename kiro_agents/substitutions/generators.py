"""Concrete substitution generators.

Each generator is an immutable value with a ``generate(context)`` method.
Generators that read auxiliary files or directories also expose
``dependencies(context)`` so watch mode can rebuild when those change.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Mapping

from instrukt_ai_logging import get_logger

from kiro_agents.markdown_extractor import extract_section_from_file
from kiro_agents.targets import BuildContext, BuildTarget

logger = get_logger(__name__)

DEV_STEERING_PATH = "~/.kiro/steering/kiro-agents"
POWER_STEERING_PATH = "~/.kiro/powers/installed/kiro-agents/steering"


def steering_path(target: BuildTarget) -> str:
    """Install location of steering documents for ``target``."""
    if target is BuildTarget.POWER:
        return POWER_STEERING_PATH
    return DEV_STEERING_PATH


@dataclass(frozen=True)
class StaticText:
    text: str

    def generate(self, context: BuildContext) -> str:
        return self.text


@dataclass(frozen=True)
class Callback:
    """Adapter for a plain function of the build context."""

    fn: Callable[[BuildContext], str]

    def generate(self, context: BuildContext) -> str:
        return self.fn(context)


@dataclass(frozen=True)
class TargetText:
    """Per-target text with a default for targets not listed."""

    texts: Mapping[BuildTarget, str]
    default: str = ""

    def generate(self, context: BuildContext) -> str:
        return self.texts.get(context.target, self.default)


@dataclass(frozen=True)
class SteeringPath:
    suffix: str = ""

    def generate(self, context: BuildContext) -> str:
        return steering_path(context.target) + self.suffix


@dataclass(frozen=True)
class PackageVersion:
    """Version field of the project's package.json."""

    path: str = "package.json"
    default: str = "1.0.0"

    def _file(self, context: BuildContext) -> Path:
        return context.project_root / self.path

    def generate(self, context: BuildContext) -> str:
        package_file = self._file(context)
        try:
            payload = json.loads(package_file.read_text(encoding="utf-8"))
        except FileNotFoundError:
            logger.debug("No %s; using default version %s", package_file, self.default)
            return self.default
        except json.JSONDecodeError as e:
            logger.warning("Unreadable %s (%s); using default version %s", package_file, e, self.default)
            return self.default
        version = payload.get("version") if isinstance(payload, dict) else None
        return str(version) if version else self.default

    def dependencies(self, context: BuildContext) -> tuple[Path, ...]:
        return (self._file(context),)


@dataclass(frozen=True)
class DirectoryListing:
    """Markdown bullet list of document names found in a directory."""

    directory: str
    fallback: str
    suffix: str = ".md"

    def _root(self, context: BuildContext) -> Path:
        return context.project_root / self.directory

    def generate(self, context: BuildContext) -> str:
        root = self._root(context)
        if not root.is_dir():
            return self.fallback
        files = [p for p in root.iterdir() if p.is_file() and p.name.endswith(self.suffix)]
        names = sorted(p.name[: -len(self.suffix)] for p in files)
        if not names:
            return self.fallback
        return "\n".join(f"- {name}" for name in names)

    def dependencies(self, context: BuildContext) -> tuple[Path, ...]:
        return (self._root(context),)


@dataclass(frozen=True)
class SectionInclude:
    """Inject a section of another source document.

    ``path`` is relative to the source root. Missing files and headings
    raise; nothing is injected in their place.
    """

    path: str
    query: str
    include_heading: bool = True

    def _file(self, context: BuildContext) -> Path:
        return context.source_root / self.path

    def generate(self, context: BuildContext) -> str:
        return extract_section_from_file(self._file(context), self.query, include_heading=self.include_heading)

    def dependencies(self, context: BuildContext) -> tuple[Path, ...]:
        return (self._file(context),)
