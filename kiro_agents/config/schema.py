"""Pydantic schema for ``kiro-agents.yml``."""

from pydantic import BaseModel, ConfigDict, Field, field_validator

from kiro_agents.constants import DEFAULT_DEBOUNCE_MS, DEFAULT_MAX_ITERATIONS
from kiro_agents.substitutions.profiles import PROFILES


class OutputsConfig(BaseModel):
    """Output root per buildable target. Relative paths resolve against the project root."""

    model_config = ConfigDict(extra="allow")
    dev: str = "~/.kiro/steering/kiro-agents"
    npm: str = "build/npm/dist"
    power: str = "powers/kiro-protocols"


class BuildSettings(BaseModel):
    model_config = ConfigDict(extra="allow")
    source_dir: str = "src"
    outputs: OutputsConfig = OutputsConfig()
    profile: str = "kiro"
    max_iterations: int = Field(default=DEFAULT_MAX_ITERATIONS, ge=1)
    strict: bool = True
    warn_unresolved: bool = False
    workers: int = Field(default=1, ge=1)
    debounce_ms: int = Field(default=DEFAULT_DEBOUNCE_MS, ge=0)
    ignore: list[str] = []  # gitignore-style patterns watch mode skips

    @field_validator("profile")
    @classmethod
    def validate_profile(cls, v: str) -> str:
        if v not in PROFILES:
            raise ValueError(f"Unknown profile '{v}'. Expected one of: {', '.join(PROFILES)}")
        return v
