"""Manifest and bundle validation.

Every check returns a list of human-readable error strings; an empty list
means the check passed. ``validate_all`` runs them in order and is what the
``validate`` command reports.
"""

from __future__ import annotations

from collections import defaultdict
from pathlib import Path
from typing import Iterable

import frontmatter
from instrukt_ai_logging import get_logger

from kiro_agents.errors import BuildError
from kiro_agents.manifest import MANIFEST, FileMapping, expand_mapping, expected_files
from kiro_agents.substitutions.profiles import base_registry, kiro_registry
from kiro_agents.substitutions.registry import SubstitutionRegistry
from kiro_agents.targets import BuildTarget

logger = get_logger(__name__)

POWER_METADATA_SOURCE = "kiro/POWER.md"
POWER_REQUIRED_FIELDS = ("name", "displayName", "description")

# Minimum expected files per target.
MIN_FILE_COUNTS = {BuildTarget.DEV: 5, BuildTarget.POWER: 3}
MIN_PROTOCOL_CHARS = 50
MAX_ICON_BYTES = 1024 * 1024


def declares_power_metadata(mappings: Iterable[FileMapping]) -> bool:
    return any(m.source == POWER_METADATA_SOURCE and m.applies_to(BuildTarget.POWER) for m in mappings)


def validate_dev_matches_cli(source_root: Path, mappings: Iterable[FileMapping] = MANIFEST) -> list[str]:
    """The installer copies the ``cli`` list; it must be exactly the ``dev`` tree."""
    mappings = tuple(mappings)
    try:
        dev = expected_files(BuildTarget.DEV, source_root, mappings)
        cli = expected_files(BuildTarget.CLI, source_root, mappings)
    except BuildError as e:
        return [str(e)]

    errors: list[str] = []
    missing_in_cli = sorted(set(dev) - set(cli))
    extra_in_cli = sorted(set(cli) - set(dev))
    if missing_in_cli:
        errors.append(f"Files in dev but not in cli: {', '.join(missing_in_cli)}")
    if extra_in_cli:
        errors.append(f"Files in cli but not in dev: {', '.join(extra_in_cli)}")
    return errors


def validate_sources_exist(source_root: Path, mappings: Iterable[FileMapping] = MANIFEST) -> list[str]:
    errors: list[str] = []
    for mapping in mappings:
        if mapping.is_glob or mapping.optional or mapping.fallback is not None:
            continue
        if not (source_root / mapping.source).is_file():
            errors.append(f"Source file not found: {mapping.source}")
    return errors


def validate_no_duplicate_destinations(
    source_root: Path,
    mappings: Iterable[FileMapping] = MANIFEST,
) -> list[str]:
    """Report every destination that two different sources would write, per target."""
    mappings = tuple(mappings)
    errors: list[str] = []
    placeholder_root = Path("/")
    for target in BuildTarget:
        writers: dict[str, set[str]] = defaultdict(set)
        for mapping in mappings:
            if not mapping.applies_to(target):
                continue
            for item in expand_mapping(mapping, source_root, placeholder_root):
                dest = item.destination.relative_to(placeholder_root).as_posix()
                writers[dest].add(item.source.relative_to(source_root).as_posix())
        for dest, sources in sorted(writers.items()):
            if len(sources) > 1:
                errors.append(f"Duplicate destination for {target.value}: {dest} <- {', '.join(sorted(sources))}")
    return errors


def validate_globs_resolve(source_root: Path, mappings: Iterable[FileMapping] = MANIFEST) -> list[str]:
    """Required globs must match at least one file; optional empty globs are only logged."""
    errors: list[str] = []
    for mapping in mappings:
        if not mapping.is_glob:
            continue
        matched = expand_mapping(mapping, source_root, Path("/"))
        if matched:
            logger.debug("Glob %s matched %d files", mapping.source, len(matched))
        elif mapping.required:
            errors.append(f"Required glob matched no files: {mapping.source}")
    return errors


def validate_registry_parity(
    base: SubstitutionRegistry | None = None,
    kiro: SubstitutionRegistry | None = None,
) -> list[str]:
    """Every profile must define the same keys so no build leaves a raw token behind."""
    base_keys = set((base or base_registry()).keys())
    kiro_keys = set((kiro or kiro_registry()).keys())
    errors: list[str] = []
    if kiro_keys - base_keys:
        errors.append(f"Keys missing from base profile: {', '.join(sorted(kiro_keys - base_keys))}")
    if base_keys - kiro_keys:
        errors.append(f"Keys missing from kiro profile: {', '.join(sorted(base_keys - kiro_keys))}")
    return errors


def validate_power_metadata(source_root: Path) -> list[str]:
    """POWER.md must carry the frontmatter fields the plugin host reads."""
    path = source_root / POWER_METADATA_SOURCE
    if not path.is_file():
        return [f"POWER.md not found: {path}"]
    try:
        post = frontmatter.load(str(path))
    except Exception as e:
        return [f"{path}: invalid frontmatter ({e})"]

    missing = [key for key in POWER_REQUIRED_FIELDS if not post.metadata.get(key)]
    if missing:
        return [f"{path}: missing required frontmatter fields: {', '.join(missing)}"]
    return []


def validate_file_counts(source_root: Path, mappings: Iterable[FileMapping] = MANIFEST) -> list[str]:
    mappings = tuple(mappings)
    errors: list[str] = []
    for target, minimum in MIN_FILE_COUNTS.items():
        try:
            count = len(expected_files(target, source_root, mappings))
        except BuildError:
            continue
        logger.info("%s: %d files", target.value, count)
        if count < minimum:
            errors.append(f"Too few {target.value} files: {count} (expected at least {minimum})")
    return errors


def validate_power_bundle(power_root: Path) -> tuple[list[str], list[str]]:
    """Check a built power bundle.

    Returns:
        ``(errors, warnings)``. Errors make the bundle unusable; warnings are
        quality issues such as a missing icon or a protocol without sections.
    """
    errors: list[str] = []
    warnings: list[str] = []

    steering = power_root / "steering"
    protocols = sorted(steering.glob("*.md")) if steering.is_dir() else []
    if not steering.is_dir():
        errors.append("Missing steering/ directory")
    elif not protocols:
        errors.append("No protocol files in steering/ directory")
    for path in protocols:
        content = path.read_text(encoding="utf-8")
        if not content.strip():
            errors.append(f"Empty protocol file: {path.name}")
            continue
        if len(content) < MIN_PROTOCOL_CHARS:
            warnings.append(f"Very short protocol file: {path.name} (< {MIN_PROTOCOL_CHARS} chars)")
        if "##" not in content:
            warnings.append(f"Protocol file missing sections: {path.name}")

    icon = power_root / "icon.png"
    if not icon.is_file():
        warnings.append("No icon found (icon.png recommended)")
    else:
        size = icon.stat().st_size
        if size == 0:
            errors.append("Icon file is empty")
        elif size > MAX_ICON_BYTES:
            warnings.append(f"Icon file is large ({size // 1024}KB, recommend < 100KB)")
    return errors, warnings


def validate_all(source_root: Path, mappings: Iterable[FileMapping] = MANIFEST) -> list[str]:
    mappings = tuple(mappings)
    errors: list[str] = []
    errors.extend(validate_dev_matches_cli(source_root, mappings))
    errors.extend(validate_sources_exist(source_root, mappings))
    errors.extend(validate_no_duplicate_destinations(source_root, mappings))
    errors.extend(validate_globs_resolve(source_root, mappings))
    errors.extend(validate_registry_parity())
    errors.extend(validate_file_counts(source_root, mappings))
    if declares_power_metadata(mappings):
        errors.extend(validate_power_metadata(source_root))
    return errors
