"""Build configuration.

Settings come from an optional ``kiro-agents.yml`` at the project root, with
``${VAR}`` references expanded from the environment (including the
project's ``.env``)::

    source_dir: src
    outputs:
      dev: ~/.kiro/steering/kiro-agents
      npm: build/npm/dist
      power: powers/kiro-protocols
    profile: kiro
    workers: 4
"""

from kiro_agents.config.loader import Settings, load_build_config, load_settings, resolve_settings
from kiro_agents.config.schema import BuildSettings, OutputsConfig

__all__ = [
    "BuildSettings",
    "OutputsConfig",
    "Settings",
    "load_build_config",
    "load_settings",
    "resolve_settings",
]
