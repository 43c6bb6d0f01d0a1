"""Structured logging for the bot process."""

from __future__ import annotations

from shared.logging.config import setup_logging
from shared.logging.structured import (
    JsonFormatter,
    bind_guild,
    get_guild_id,
    get_trace_id,
    set_trace_id,
)

__all__ = [
    "JsonFormatter",
    "bind_guild",
    "get_guild_id",
    "get_trace_id",
    "set_trace_id",
    "setup_logging",
]
