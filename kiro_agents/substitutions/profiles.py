"""Registry profiles.

``base`` holds every substitution key with cross-IDE content (empty string
for Kiro-only features) so a non-Kiro build never leaves a raw token behind.
``kiro`` overrides those keys with the Kiro implementations. Both profiles
always share one key set.
"""

from __future__ import annotations

from kiro_agents.substitutions.generators import (
    DirectoryListing,
    PackageVersion,
    SectionInclude,
    StaticText,
    SteeringPath,
    steering_path,
)
from kiro_agents.substitutions.registry import SubstitutionRegistry
from kiro_agents.targets import BuildContext

PROFILES = ("base", "kiro")

AGENT_PROTOCOL_SOURCE = "core/protocols/agent-management.md"
MODE_PROTOCOL_SOURCE = "kiro/steering/protocols/mode-management.md"

BASE_MODE_COMMANDS = """\
MODE COMMANDS
  /strict {state}   Control strict mode (on/off)
  /strict           Interactive strict mode control"""

KIRO_MODE_COMMANDS = """\
MODE COMMANDS (see modes-system.md)
  /modes {name}     Switch Kiro mode (vibe/spec)
  /modes            Interactive mode management
  /strict {state}   Control strict mode (on/off)
  /strict           Interactive strict mode control"""

COMMANDS_LIST = """\
### Agent Commands
- `/agents` - Interactive agent management with visual menu
- `/agents {name}` - Activate specific agent directly

### Mode Commands
- `/modes` - Interactive mode management with visual menu
- `/modes vibe` - Switch to vibe mode directly
- `/modes spec` - Switch to spec mode directly

### Strict Mode Commands
- `/strict` - Interactive control with visual buttons
- `/strict on` - Enable strict mode directly
- `/strict off` - Disable strict mode directly"""

EXTRA_COMPATIBILITY = """\
- **Mode system** - Works seamlessly with modes (see `modes-system.md`)
- **Context preservation** - File changes and conversation history persist across agent switches"""

INTEGRATION_ENHANCEMENTS = """
**Integration enhancements:**
- **Task sessions** - Agents create sub-tasks with own context
- **Session continuation** - Resume interrupted work with full context
- **Enhanced mode integration** - Better coordination with modes system"""

DEFAULT_AGENT_LIST = "- kiro-master (auto-created on first use)"


def _mode_aliases(context: BuildContext) -> str:
    protocols = f"{steering_path(context.target)}/protocols"
    return f"""
## Mode System Alias

The mode switching command uses parameter substitution to load mode definitions dynamically:

<alias>
  <trigger>/modes {{mode_name}}</trigger>
  <definition>
## Mode Switch: {{mode_name}}

You are now switching to **{{mode_name}} mode**.

**Load and execute mode switching protocol:**
1. Read `kiro-{{mode_name}}-mode.md` from agent-system directory into context
2. Read `{protocols}/mode-switching.md` into context
3. Follow all steps from the "Mode Switch Steps" section in mode-switching.md
4. Use `{{mode_name}}` as the mode identifier throughout the protocol
  </definition>
</alias>

This alias enables users to switch modes with `/modes {{name}}` syntax."""


def base_registry() -> SubstitutionRegistry:
    return SubstitutionRegistry(
        {
            "VERSION": StaticText(""),
            "AGENT_LIST": StaticText(""),
            "COMMANDS_LIST": StaticText(""),
            "MODE_COMMANDS": StaticText(BASE_MODE_COMMANDS),
            "EXTRA_COMPATIBILITY": StaticText(""),
            "INTEGRATION_ENHANCEMENTS": StaticText(""),
            "PROTOCOLS_PATH": StaticText(""),
            "KIRO_PROTOCOLS_PATH": StaticText(""),
            "AGENT_MANAGEMENT_PROTOCOL": SectionInclude(AGENT_PROTOCOL_SOURCE, "## Agent Management Steps"),
            "MODE_MANAGEMENT_PROTOCOL": StaticText(""),
            "KIRO_MODE_ALIASES": StaticText(""),
        }
    )


def kiro_registry() -> SubstitutionRegistry:
    return base_registry().merged(
        {
            "VERSION": PackageVersion(),
            "AGENT_LIST": DirectoryListing(".kiro/agents", fallback=DEFAULT_AGENT_LIST),
            "COMMANDS_LIST": StaticText(COMMANDS_LIST),
            "MODE_COMMANDS": StaticText(KIRO_MODE_COMMANDS),
            "EXTRA_COMPATIBILITY": StaticText(EXTRA_COMPATIBILITY),
            "INTEGRATION_ENHANCEMENTS": StaticText(INTEGRATION_ENHANCEMENTS),
            "PROTOCOLS_PATH": SteeringPath("/protocols"),
            "KIRO_PROTOCOLS_PATH": SteeringPath("/protocols"),
            "MODE_MANAGEMENT_PROTOCOL": SectionInclude(MODE_PROTOCOL_SOURCE, "## Mode Management Steps"),
            "KIRO_MODE_ALIASES": _mode_aliases,
        }
    )


def registry_for(profile: str) -> SubstitutionRegistry:
    if profile == "base":
        return base_registry()
    if profile == "kiro":
        return kiro_registry()
    raise ValueError(f"Unknown substitution profile '{profile}' (expected one of: {', '.join(PROFILES)})")
