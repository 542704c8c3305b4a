"""Outbound notifications toward the connected client.

The engine only talks to a Notifier; the MCP session adapter lives in
server.py so the core never imports the protocol runtime.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

log = logging.getLogger(__name__)

# MCP logging levels (RFC 5424 order)
LOG_LEVELS = ["debug", "info", "notice", "warning", "error", "critical", "alert", "emergency"]


def level_enabled(level: str, threshold: str) -> bool:
    """True if ``level`` is at or above ``threshold``."""
    try:
        return LOG_LEVELS.index(level) >= LOG_LEVELS.index(threshold)
    except ValueError:
        return False


class Notifier:
    """Notifications the core can send. The base class drops them all."""

    def __init__(self, logging_level: str = "info"):
        self.logging_level = logging_level

    async def send_tool_list_changed(self) -> None:
        log.debug("Dropping tools/list_changed (no client)")

    async def send_resource_list_changed(self) -> None:
        log.debug("Dropping resources/list_changed (no client)")

    async def send_prompt_list_changed(self) -> None:
        log.debug("Dropping prompts/list_changed (no client)")

    async def send_resource_updated(self, uri: str, title: str) -> None:
        log.debug("Dropping resources/updated for %s (no client)", uri)

    async def _send_log_message(self, level: str, data: Any, logger: Optional[str]) -> None:
        log.debug("Dropping client log message at %s (no client)", level)

    async def send_log_message(self, level: str, data: Any, logger: Optional[str] = None) -> None:
        """Send a client-visible log message if it passes the client's level."""
        if not level_enabled(level, self.logging_level):
            return
        await self._send_log_message(level, data, logger)
