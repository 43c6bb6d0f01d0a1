"""JSON log lines with per-context trace and guild ids."""

from __future__ import annotations

import contextlib
import contextvars
import datetime as dt
import json
import logging
import uuid
from typing import Any, Iterator, Mapping, Optional

_trace: contextvars.ContextVar[str] = contextvars.ContextVar("crm_trace", default="")
_guild: contextvars.ContextVar[Optional[int]] = contextvars.ContextVar("crm_guild", default=None)

# LogRecord attributes that are plumbing rather than payload.
_RESERVED = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


def set_trace_id(value: str | None = None) -> str:
    """Start (or adopt) a trace for the current task; returns the id."""

    trace = value or uuid.uuid4().hex
    _trace.set(trace)
    return trace


def get_trace_id() -> str:
    return _trace.get()


def get_guild_id() -> Optional[int]:
    return _guild.get()


@contextlib.contextmanager
def bind_guild(guild_id: int) -> Iterator[None]:
    """Tag every log line emitted inside the block with ``guild``."""

    token = _guild.set(int(guild_id))
    try:
        yield
    finally:
        _guild.reset(token)


class JsonFormatter(logging.Formatter):
    def __init__(self, static: Mapping[str, Any] | None = None) -> None:
        super().__init__()
        self._static = dict(static or {})

    def format(self, record: logging.LogRecord) -> str:
        created = dt.datetime.fromtimestamp(record.created, tz=dt.timezone.utc)
        payload: dict[str, Any] = {
            "ts": created.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "trace": getattr(record, "trace", "") or get_trace_id(),
        }
        guild_id = get_guild_id()
        if guild_id is not None:
            payload["guild"] = guild_id
        payload.update(self._static)

        for key, value in record.__dict__.items():
            if key in _RESERVED or key.startswith("_") or key in payload:
                continue
            if value is None or isinstance(value, (str, int, float, bool)):
                payload[key] = value

        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


__all__ = ["JsonFormatter", "bind_guild", "get_guild_id", "get_trace_id", "set_trace_id"]
