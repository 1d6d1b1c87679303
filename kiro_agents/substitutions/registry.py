"""Substitution registry: placeholder key -> generator.

Keys are bare upper-case names (``VERSION``); the token that appears in
documents is the triple-braced form (``{{{VERSION}}}``). Either form is
accepted wherever a key is expected.
"""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Iterator, Mapping, Protocol, Union

from kiro_agents.constants import KEY_RE, TOKEN_CLOSE, TOKEN_OPEN
from kiro_agents.substitutions.generators import Callback
from kiro_agents.targets import BuildContext


class Generator(Protocol):
    """Produces the replacement text for one placeholder.

    Implementations may read auxiliary files but must not write files or
    mutate shared build state.
    """

    def generate(self, context: BuildContext) -> str: ...


GeneratorLike = Union[Generator, Callable[[BuildContext], str]]


def normalize_key(key: str) -> str:
    """Return the bare key for ``KEY`` or ``{{{KEY}}}``."""
    name = key.strip()
    if name.startswith(TOKEN_OPEN) and name.endswith(TOKEN_CLOSE):
        name = name[len(TOKEN_OPEN) : -len(TOKEN_CLOSE)]
    if not KEY_RE.match(name):
        raise ValueError(f"Invalid substitution key: {key!r} (expected UPPER_SNAKE_CASE)")
    return name


def token_for(key: str) -> str:
    return f"{TOKEN_OPEN}{normalize_key(key)}{TOKEN_CLOSE}"


def _as_generator(generator: GeneratorLike) -> Generator:
    if hasattr(generator, "generate"):
        return generator  # type: ignore[return-value]
    if callable(generator):
        return Callback(generator)
    raise TypeError(f"Not a generator: {generator!r}")


class SubstitutionRegistry:
    """Read-only (once built) mapping of placeholder keys to generators."""

    def __init__(self, entries: Mapping[str, GeneratorLike] | None = None) -> None:
        self._entries: dict[str, Generator] = {}
        for key, generator in (entries or {}).items():
            self.register(key, generator)

    def register(self, key: str, generator: GeneratorLike) -> None:
        name = normalize_key(key)
        if name in self._entries:
            raise ValueError(f"Duplicate substitution key: {token_for(name)}")
        self._entries[name] = _as_generator(generator)

    def get(self, key: str) -> Generator:
        return self._entries[normalize_key(key)]

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, str):
            return False
        try:
            return normalize_key(key) in self._entries
        except ValueError:
            return False

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def keys(self) -> list[str]:
        return list(self._entries)

    def merged(self, overrides: Mapping[str, GeneratorLike]) -> "SubstitutionRegistry":
        """Return a copy with ``overrides`` replacing existing entries.

        Overrides may only replace keys the registry already has, which keeps
        every profile's key set identical to the base profile's.
        """
        merged = SubstitutionRegistry()
        merged._entries = dict(self._entries)
        for key, generator in overrides.items():
            name = normalize_key(key)
            if name not in merged._entries:
                raise ValueError(f"Override for unknown substitution key: {token_for(name)}")
            merged._entries[name] = _as_generator(generator)
        return merged

    def dependencies(self, context: BuildContext) -> set[Path]:
        """Auxiliary files read by generators for ``context``."""
        paths: set[Path] = set()
        for generator in self._entries.values():
            deps = getattr(generator, "dependencies", None)
            if callable(deps):
                paths.update(Path(p).resolve() for p in deps(context))
        return paths
