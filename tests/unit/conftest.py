"""Shared fixtures: a small but complete kiro-agents source tree."""

from pathlib import Path

import pytest

from kiro_agents.config import Settings
from kiro_agents.targets import BuildTarget

POWER_MD = """\
---
name: kiro-protocols
displayName: Kiro Protocols
description: Reusable protocol library for agents and modes
---

# Kiro Protocols

Version {{{VERSION}}}
"""

AGENT_MANAGEMENT = """\
# Agent Management

Intro text.

## Agent Management Steps

1. Read `{{{PROTOCOLS_PATH}}}/agent-activation.md`
2. Show the agent list:

```markdown
## Example Heading Inside Fence
```

## Notes

Not injected.
"""

MODE_MANAGEMENT = """\
# Mode Management

## Mode Management Steps

1. Read `{{{KIRO_PROTOCOLS_PATH}}}/mode-switching.md`
"""

SOURCES = {
    "core/aliases.md": "# Aliases\n\nkiro-agents v{{{VERSION}}}\n\n{{{KIRO_MODE_ALIASES}}}\n",
    "core/agents.md": "# Agents\n\n{{{AGENT_LIST}}}\n\n{{{AGENT_MANAGEMENT_PROTOCOL}}}\n",
    "core/strict.md": "# Strict\n\n{{{MODE_COMMANDS}}}\n",
    "kiro/steering/modes.md": "# Modes\n\n{{{MODE_MANAGEMENT_PROTOCOL}}}\n",
    "core/interactions/chit-chat.md": "# Chit Chat\n\nUse {{{EXAMPLE}}} style placeholders freely.\n",
    "core/interactions/interaction-styles.md": "# Interaction Styles\n",
    "core/protocols/agent-activation.md": "# Agent Activation\n\nSee {{{PROTOCOLS_PATH}}}.\n",
    "core/protocols/agent-management.md": AGENT_MANAGEMENT,
    "kiro/steering/protocols/mode-management.md": MODE_MANAGEMENT,
    "kiro/steering/protocols/mode-switching.md": "# Mode Switching\n",
    "kiro/POWER.md": POWER_MD,
    "kiro/mcp.json": '{"mcpServers": {}}\n',
}


def write_tree(root: Path, files: dict[str, str]) -> None:
    for rel_path, content in files.items():
        path = root / rel_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")


def make_settings(project_root: Path, **overrides: object) -> Settings:
    values: dict[str, object] = {
        "project_root": project_root,
        "source_root": project_root / "src",
        "outputs": {
            BuildTarget.DEV: project_root / "out" / "dev",
            BuildTarget.NPM: project_root / "build" / "npm" / "dist",
            BuildTarget.POWER: project_root / "powers" / "kiro-protocols",
        },
        # Long debounce so tests drive flush() themselves.
        "debounce_ms": 60_000,
    }
    values.update(overrides)
    return Settings(**values)  # type: ignore[arg-type]


@pytest.fixture
def project_root(tmp_path: Path) -> Path:
    root = tmp_path.resolve()
    write_tree(root / "src", SOURCES)
    (root / "package.json").write_text('{"name": "kiro-agents", "version": "2.3.4"}\n', encoding="utf-8")
    return root


@pytest.fixture
def source_root(project_root: Path) -> Path:
    return project_root / "src"


@pytest.fixture
def settings(project_root: Path) -> Settings:
    return make_settings(project_root)
