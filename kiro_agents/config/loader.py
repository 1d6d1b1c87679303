from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

import yaml
from dotenv import load_dotenv
from instrukt_ai_logging import get_logger
from pydantic import BaseModel

from kiro_agents.config.schema import BuildSettings
from kiro_agents.constants import CONFIG_FILENAME
from kiro_agents.targets import BuildContext, BuildTarget
from kiro_agents.utils import expand_env_vars

logger = get_logger(__name__)


@dataclass(frozen=True)
class Settings:
    """Resolved build settings with absolute paths.

    Attributes:
        project_root: Repository root.
        source_root: Template source tree (``<project_root>/<source_dir>``).
        outputs: Output root per buildable target.
    """

    project_root: Path
    source_root: Path
    outputs: Mapping[BuildTarget, Path]
    profile: str = "kiro"
    max_iterations: int = 10
    strict: bool = True
    warn_unresolved: bool = False
    workers: int = 1
    debounce_ms: int = 50
    ignore: tuple[str, ...] = field(default_factory=tuple)

    def output_root(self, target: BuildTarget) -> Path:
        # The installer list mirrors the dev tree.
        if target is BuildTarget.CLI:
            return self.outputs[BuildTarget.DEV]
        return self.outputs[target]

    def context(self, target: BuildTarget) -> BuildContext:
        return BuildContext(target=target, project_root=self.project_root, source_root=self.source_root)


def _warn_unknown_keys(model: BaseModel, path: str, config_path: Path) -> None:
    """Recursively warn about unknown keys in a model and its nested models."""
    if model.model_extra:
        logger.warning("Unknown keys in %s at %s: %s", path, config_path, list(model.model_extra.keys()))
    for field_name, field_value in model.__dict__.items():
        if isinstance(field_value, BaseModel):
            _warn_unknown_keys(field_value, f"{path}.{field_name}", config_path)


def _resolve_path(value: str, project_root: Path) -> Path:
    path = Path(value).expanduser()
    if not path.is_absolute():
        path = project_root / path
    return path.resolve()


def load_build_config(path: Path) -> BuildSettings:
    """Load and validate ``kiro-agents.yml``.

    A missing or unreadable file yields the defaults. Schema violations raise
    ``pydantic.ValidationError``.
    """
    if not path.exists():
        return BuildSettings()

    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning("Failed to read config file %s: %s", path, e)
        return BuildSettings()

    expanded = expand_env_vars(raw)
    model = BuildSettings.model_validate(expanded)
    _warn_unknown_keys(model, "root", path)
    return model


def resolve_settings(model: BuildSettings, project_root: Path) -> Settings:
    root = project_root.expanduser().resolve()
    outputs = {
        BuildTarget.DEV: _resolve_path(model.outputs.dev, root),
        BuildTarget.NPM: _resolve_path(model.outputs.npm, root),
        BuildTarget.POWER: _resolve_path(model.outputs.power, root),
    }
    return Settings(
        project_root=root,
        source_root=_resolve_path(model.source_dir, root),
        outputs=outputs,
        profile=model.profile,
        max_iterations=model.max_iterations,
        strict=model.strict,
        warn_unresolved=model.warn_unresolved,
        workers=model.workers,
        debounce_ms=model.debounce_ms,
        ignore=tuple(model.ignore),
    )


def load_settings(project_root: Path, config_path: Optional[Path] = None) -> Settings:
    """Load ``.env`` and the project config, then resolve it against ``project_root``."""
    root = project_root.expanduser().resolve()
    load_dotenv(root / ".env")
    if config_path is None:
        config_path = root / CONFIG_FILENAME
    elif not config_path.is_absolute():
        config_path = root / config_path
    settings = resolve_settings(load_build_config(config_path), root)
    logger.debug("Loaded settings from %s (profile=%s)", config_path, settings.profile)
    return settings
