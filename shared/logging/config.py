"""Install the JSON formatter on the root and HTTP access loggers."""

from __future__ import annotations

import logging
import os
from typing import Mapping

from .structured import JsonFormatter

__all__ = ["setup_logging"]


def _level() -> int:
    name = (os.getenv("LOG_LEVEL") or "INFO").strip().upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def setup_logging(
    *,
    static_fields: Mapping[str, str] | None = None,
    access_logger_name: str = "aiohttp.access",
    access_static_fields: Mapping[str, str] | None = None,
) -> logging.Logger:
    """Switch console output to JSON and return the dedicated access logger.

    Existing stream handlers on the root logger are re-formatted in place so a
    prior ``logging.basicConfig`` does not produce duplicate lines. The access
    logger gets its own handler and stops propagating.
    """

    base = dict(static_fields or {})
    root = logging.getLogger()
    root.setLevel(_level())
    streams = [h for h in root.handlers if isinstance(h, logging.StreamHandler)]
    if not streams:
        streams = [logging.StreamHandler()]
        root.addHandler(streams[0])
    for handler in streams:
        handler.setFormatter(JsonFormatter(static=base))

    access_static = {**base, **dict(access_static_fields or {})}
    access_static.setdefault("logger", access_logger_name)
    access = logging.getLogger(access_logger_name)
    access.propagate = False
    access.setLevel(logging.INFO)
    access.handlers.clear()
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter(static=access_static))
    access.addHandler(handler)
    return access
