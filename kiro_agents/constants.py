"""Constants used across the build engine."""

import re

# Placeholder tokens are triple-braced so they never collide with the
# single/double-brace examples used throughout the instructional documents.
TOKEN_OPEN = "{{{"
TOKEN_CLOSE = "}}}"
TOKEN_RE = re.compile(r"\{\{\{([A-Z][A-Z0-9_]*)\}\}\}")
KEY_RE = re.compile(r"^[A-Z][A-Z0-9_]*$")

DEFAULT_MAX_ITERATIONS = 10
DEFAULT_DEBOUNCE_MS = 50

# Destination placeholder filled from a glob match's base name.
NAME_PLACEHOLDER = "{name}"

# Files whose content goes through the substitution engine; everything else is copied as bytes.
TEXT_SUFFIXES = frozenset({".md", ".mdx", ".json", ".txt", ".yaml", ".yml"})

CONFIG_FILENAME = "kiro-agents.yml"
