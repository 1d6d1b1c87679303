"""Placeholder substitution: registry, generators, and the fixed-point engine."""

from kiro_agents.substitutions.engine import SubstitutionResult, apply_once, find_tokens, resolve
from kiro_agents.substitutions.registry import Generator, SubstitutionRegistry, token_for

__all__ = [
    "Generator",
    "SubstitutionRegistry",
    "SubstitutionResult",
    "apply_once",
    "find_tokens",
    "resolve",
    "token_for",
]
