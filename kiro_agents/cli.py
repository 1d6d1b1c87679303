"""Command line entry point: ``kiro-agents``.

Commands:
    build <target> [--warn-only]   Build dev, npm or power output
    watch [target]                 Build, then rebuild on source changes
    validate                       Check the manifest, POWER.md and any built power bundle
    files <target>                 Print the files a target produces
    clean                          Remove packaged build outputs
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Optional, Sequence

from instrukt_ai_logging import get_logger
from pydantic import ValidationError

from kiro_agents.build import build_target, clean
from kiro_agents.config import Settings, load_settings
from kiro_agents.errors import BuildError
from kiro_agents.logging_config import setup_logging
from kiro_agents.manifest import expected_files
from kiro_agents.manifest_validation import validate_all, validate_power_bundle
from kiro_agents.targets import BUILDABLE_TARGETS, BuildTarget
from kiro_agents.watch import run_watch

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130


def _build_parser() -> argparse.ArgumentParser:
    buildable = [t.value for t in BUILDABLE_TARGETS]
    parser = argparse.ArgumentParser(prog="kiro-agents", description="Build kiro-agents distribution outputs.")
    parser.add_argument(
        "--project-root",
        default=".",
        help="Project root containing the source tree and kiro-agents.yml (default: current directory).",
    )
    parser.add_argument("--config", help="Config file, relative to the project root (default: kiro-agents.yml).")
    parser.add_argument("--log-level", help="Override KIRO_AGENTS_LOG_LEVEL (e.g. DEBUG, INFO).")
    subparsers = parser.add_subparsers(dest="command", required=True)

    build = subparsers.add_parser("build", help="Build one target.")
    build.add_argument("target", choices=buildable)
    build.add_argument(
        "--warn-only",
        action="store_true",
        help="Report unresolved placeholders as warnings instead of failing.",
    )

    watch = subparsers.add_parser("watch", help="Build a target and rebuild on changes.")
    watch.add_argument("target", nargs="?", default=BuildTarget.DEV.value, choices=buildable)

    subparsers.add_parser("validate", help="Validate the manifest, registry profiles and POWER.md.")

    files = subparsers.add_parser("files", help="List the files a target produces.")
    files.add_argument("target", choices=BuildTarget.choices())

    subparsers.add_parser("clean", help="Remove npm and power build outputs.")
    return parser


def _cmd_build(settings: Settings, target: BuildTarget, *, warn_only: bool) -> int:
    report = build_target(settings, target, strict=False if warn_only else None)
    for warning in report.warnings:
        print(f"warning: {warning}", file=sys.stderr)
    print(
        f"{target.value}: {len(report.written)} written, {len(report.unchanged)} unchanged "
        f"-> {settings.output_root(target)}"
    )
    return EXIT_OK


def _cmd_validate(settings: Settings) -> int:
    errors = validate_all(settings.source_root)
    power_root = settings.output_root(BuildTarget.POWER)
    if power_root.is_dir():
        bundle_errors, warnings = validate_power_bundle(power_root)
        errors.extend(f"{power_root}: {error}" for error in bundle_errors)
        for warning in warnings:
            print(f"warning: {power_root}: {warning}", file=sys.stderr)
    if errors:
        for error in errors:
            print(error)
        return EXIT_FAILURE
    print("Manifest OK")
    return EXIT_OK


def _cmd_files(settings: Settings, target: BuildTarget) -> int:
    for rel_path in expected_files(target, settings.source_root):
        print(rel_path)
    return EXIT_OK


def _cmd_clean(settings: Settings) -> int:
    for path in clean(settings):
        print(f"Removed {path}")
    return EXIT_OK


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    setup_logging(args.log_level)

    try:
        settings = load_settings(Path(args.project_root), Path(args.config) if args.config else None)
        if args.command == "build":
            return _cmd_build(settings, BuildTarget.from_str(args.target), warn_only=args.warn_only)
        if args.command == "watch":
            run_watch(settings, BuildTarget.from_str(args.target))
            return EXIT_OK
        if args.command == "validate":
            return _cmd_validate(settings)
        if args.command == "files":
            return _cmd_files(settings, BuildTarget.from_str(args.target))
        if args.command == "clean":
            return _cmd_clean(settings)
    except KeyboardInterrupt:
        return EXIT_INTERRUPTED
    except (BuildError, ValidationError, OSError) as e:
        logger.error("%s failed: %s", args.command, e)
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILURE
    return EXIT_FAILURE


if __name__ == "__main__":
    raise SystemExit(main())
