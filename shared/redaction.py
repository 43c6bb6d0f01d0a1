"""Mask credentials before they reach a log line or the ops channel."""

from __future__ import annotations

import hashlib
import json
import re
from typing import Callable, Pattern

__all__ = ["mask_secret", "mask_service_account", "sanitize_text"]


def _fingerprint(text: str) -> str:
    return hashlib.sha1(text.encode("utf-8", "ignore")).hexdigest()[:4]


def mask_secret(text: str) -> str:
    return f"***{_fingerprint(text)}"


def mask_service_account(text: str) -> str:
    return f"***sa-json:len={len(text)}-{_fingerprint(text)}"


def _is_service_account(text: str) -> bool:
    try:
        data = json.loads(text)
    except ValueError:
        return False
    return isinstance(data, dict) and data.get("type") == "service_account"


# Applied in order; embedded service-account blobs go first so their private
# key is masked as part of the whole document.
_RULES: list[tuple[Pattern[str], Callable[[re.Match], str]]] = [
    (
        re.compile(r"\{[^{}]*\"type\"\s*:\s*\"service_account\".*?\}", re.DOTALL),
        lambda m: mask_service_account(m.group(0)),
    ),
    (
        re.compile(r"-----BEGIN [^-]+-----.*?-----END [^-]+-----", re.DOTALL),
        lambda m: mask_secret(m.group(0)),
    ),
    (
        # bot token: base64 user id, timestamp, hmac
        re.compile(r"[\w-]{24}\.[\w-]{6}\.[\w-]{27,}"),
        lambda m: mask_secret(m.group(0)),
    ),
    (
        re.compile(r"ya29\.[\w-]{20,}"),
        lambda m: mask_secret(m.group(0)),
    ),
    (
        re.compile(r"(?P<key>(?:token|secret|credentials?|password)\s*[=:]\s*)(?P<value>[^\s,;]+)", re.I),
        lambda m: m.group("key") + mask_secret(m.group("value")),
    ),
]


def sanitize_text(value: object) -> str:
    """Return ``str(value)`` with anything token-shaped masked."""

    if value is None:
        return ""
    text = str(value)
    if _is_service_account(text.strip()):
        return mask_service_account(text.strip())
    for pattern, replace in _RULES:
        text = pattern.sub(replace, text)
    return text
