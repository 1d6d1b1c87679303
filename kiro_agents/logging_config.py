"""kiro-agents logging configuration.

kiro-agents uses the shared InstruktAI logging standard (`instrukt_ai_logging`).
Logs are written to the canonical per-app location; query them with
`instruktai-python-logs kiro_agents --since 10m`.
"""

from __future__ import annotations

import os
from typing import Optional

from instrukt_ai_logging import configure_logging


def setup_logging(level: Optional[str] = None) -> None:
    """Configure kiro-agents logging.

    Args:
        level: Optional override for `KIRO_AGENTS_LOG_LEVEL`.
    """
    if level:
        os.environ["KIRO_AGENTS_LOG_LEVEL"] = level

    configure_logging("kiro_agents")
