"""Environment-backed settings for the CRM bot.

Values are read once at import (and again on :func:`reload_config`) into a
plain dict; the ``get_*`` accessors only ever read that snapshot. Importing
this module without the required credentials raises ``RuntimeError`` so a
misconfigured deploy fails before it connects to Discord.
"""

from __future__ import annotations

import logging
import os
import re
from typing import Callable, Dict, Optional, Set, TypeVar

from shared.redaction import mask_secret, mask_service_account, sanitize_text

__all__ = [
    "reload_config",
    "get_config_snapshot",
    "get_env_name",
    "get_bot_name",
    "get_port",
    "get_discord_token",
    "get_gspread_credentials",
    "get_crm_sheet_id",
    "get_sheet_tab",
    "get_board_state_tab",
    "get_allowed_guild_ids",
    "is_guild_allowed",
    "get_log_channel_id",
    "get_admin_role_ids",
    "get_team_lead_role_ids",
    "get_staff_role_ids",
    "get_sync_interval_min",
    "get_smart_sync_debounce_sec",
    "get_thread_settle_delay_sec",
    "get_entity_cache_ttl_sec",
    "get_invoice_cache_ttl_sec",
    "get_invoice_number_start",
]

log = logging.getLogger("crm.config")

N = TypeVar("N", int, float)

_REQUIRED_ENV = ("DISCORD_TOKEN", "GSPREAD_CREDENTIALS", "CRM_SHEET_ID")
_SECRET_KEYS = frozenset({"DISCORD_TOKEN", "GSPREAD_CREDENTIALS"})

_TAB_DEFAULTS = {
    "clients": ("CLIENTS_TAB", "Clients"),
    "jobs": ("JOBS_TAB", "Jobs"),
    "tasks": ("TASKS_TAB", "Tasks"),
    "invoices": ("INVOICES_TAB", "Invoices"),
}

# name -> (cast, default, lower bound, upper bound)
_NUMERIC: Dict[str, tuple] = {
    "PORT": (int, 10000, 1, 65535),
    "SYNC_INTERVAL_MIN": (int, 10, 1, None),
    "SMART_SYNC_DEBOUNCE_SEC": (float, 1.5, 0.0, None),
    "THREAD_SETTLE_DELAY_SEC": (float, 1.0, 0.0, 10.0),
    "ENTITY_CACHE_TTL_SEC": (int, 300, 0, None),
    "INVOICE_CACHE_TTL_SEC": (int, 600, 0, None),
    "INVOICE_NUMBER_START": (int, 1, 1, None),
}

_ID_RE = re.compile(r"\d+")

_CONFIG: Dict[str, object] = {}
_log_channel_warning_emitted = False


def _check_required() -> None:
    for name in _REQUIRED_ENV:
        if not (os.getenv(name) or "").strip():
            raise RuntimeError(f"Missing required environment variable: {name}")


def _text(key: str, default: str = "") -> str:
    return (os.getenv(key) or "").strip() or default


def _ids(key: str) -> Set[int]:
    """Every run of digits in the variable; accepts mentions, commas or spaces."""

    return {int(match) for match in _ID_RE.findall(os.getenv(key) or "")}


def _number(key: str, cast: Callable[[str], N], default: N, low: Optional[N], high: Optional[N]) -> N:
    raw = _text(key)
    if not raw:
        return default
    try:
        value = cast(raw)
    except ValueError:
        log.warning("config: %s=%r is not a number; using %s", key, raw, default)
        return default
    if low is not None and value < low:
        log.warning("config: %s=%s below %s; clamping", key, value, low)
        value = low
    if high is not None and value > high:
        log.warning("config: %s=%s above %s; clamping", key, value, high)
        value = high
    return value


def _log_channel() -> Optional[int]:
    global _log_channel_warning_emitted

    found = _ID_RE.search(os.getenv("LOG_CHANNEL_ID") or "")
    if found:
        _log_channel_warning_emitted = False
        return int(found.group(0))
    if not _log_channel_warning_emitted:
        log.warning("Log channel disabled; set LOG_CHANNEL_ID to enable Discord log posting.")
        _log_channel_warning_emitted = True
    return None


def _redact_value(key: str, value: object) -> str:
    """Render one snapshot value for the ``config loaded`` log line."""

    if value in (None, "") or (isinstance(value, (set, frozenset)) and not value):
        return "—"
    if key in _SECRET_KEYS or "TOKEN" in key or "CREDENTIAL" in key:
        text = str(value).strip()
        if '"service_account"' in text:
            return mask_service_account(text)
        return mask_secret(text)
    if isinstance(value, (set, frozenset)):
        return ",".join(str(item) for item in sorted(value))
    return sanitize_text(value)


def _load() -> Dict[str, object]:
    config: Dict[str, object] = {
        "ENV_NAME": _text("ENV_NAME", "dev"),
        "BOT_NAME": _text("BOT_NAME", "CRM-Bot"),
        "BOT_VERSION": _text("BOT_VERSION", "dev"),
        "LOG_LEVEL": _text("LOG_LEVEL", "INFO"),
        "DISCORD_TOKEN": _text("DISCORD_TOKEN"),
        "GSPREAD_CREDENTIALS": _text("GSPREAD_CREDENTIALS"),
        "CRM_SHEET_ID": _text("CRM_SHEET_ID"),
        "BOARD_STATE_TAB": _text("BOARD_STATE_TAB", "BoardState"),
        "GUILD_IDS": _ids("GUILD_IDS"),
        "ADMIN_ROLE_IDS": _ids("ADMIN_ROLE_IDS"),
        "TEAM_LEAD_ROLE_IDS": _ids("TEAM_LEAD_ROLE_IDS"),
        "STAFF_ROLE_IDS": _ids("STAFF_ROLE_IDS"),
        "LOG_CHANNEL_ID": _log_channel(),
    }
    for key, (cast, default, low, high) in _NUMERIC.items():
        config[key] = _number(key, cast, default, low, high)
    for env_key, default in _TAB_DEFAULTS.values():
        config[env_key] = _text(env_key, default)
    return config


def reload_config() -> Dict[str, object]:
    """Re-read the environment; returns a copy of the new snapshot."""

    global _CONFIG
    _check_required()
    _CONFIG = _load()
    log.info(
        "config loaded",
        extra={"config": {key: _redact_value(key, value) for key, value in _CONFIG.items()}},
    )
    return dict(_CONFIG)


reload_config()


def get_config_snapshot() -> Dict[str, object]:
    return dict(_CONFIG)


def _str(key: str) -> str:
    return str(_CONFIG.get(key) or "")


def _num(key: str):
    return _CONFIG.get(key, _NUMERIC[key][1])


def _set(key: str) -> Set[int]:
    return set(_CONFIG.get(key) or ())


def get_env_name() -> str:
    return _str("ENV_NAME")


def get_bot_name() -> str:
    return _str("BOT_NAME")


def get_port() -> int:
    """Health server port; Render injects ``$PORT``."""

    return _num("PORT")


def get_discord_token() -> str:
    return _str("DISCORD_TOKEN")


def get_gspread_credentials() -> str:
    return _str("GSPREAD_CREDENTIALS")


def get_crm_sheet_id() -> str:
    return _str("CRM_SHEET_ID")


def get_sheet_tab(entity: str) -> str:
    """Worksheet name for ``clients``, ``jobs``, ``tasks`` or ``invoices``."""

    if entity not in _TAB_DEFAULTS:
        raise KeyError(f"unknown CRM entity tab: {entity}")
    env_key, default = _TAB_DEFAULTS[entity]
    return _str(env_key) or default


def get_board_state_tab() -> str:
    return _str("BOARD_STATE_TAB") or "BoardState"


def get_allowed_guild_ids() -> Set[int]:
    return _set("GUILD_IDS")


def is_guild_allowed(guild_id: int | None) -> bool:
    """An empty allow-list admits every guild."""

    allowed = get_allowed_guild_ids()
    if not allowed:
        return True
    return guild_id is not None and int(guild_id) in allowed


def get_log_channel_id() -> Optional[int]:
    value = _CONFIG.get("LOG_CHANNEL_ID")
    return value if isinstance(value, int) else None


def get_admin_role_ids() -> Set[int]:
    return _set("ADMIN_ROLE_IDS")


def get_team_lead_role_ids() -> Set[int]:
    return _set("TEAM_LEAD_ROLE_IDS")


def get_staff_role_ids() -> Set[int]:
    return _set("STAFF_ROLE_IDS")


def get_sync_interval_min() -> int:
    """Minutes between full reconciliation passes (at least one)."""

    return _num("SYNC_INTERVAL_MIN")


def get_smart_sync_debounce_sec() -> float:
    return _num("SMART_SYNC_DEBOUNCE_SEC")


def get_thread_settle_delay_sec() -> float:
    return _num("THREAD_SETTLE_DELAY_SEC")


def get_entity_cache_ttl_sec() -> int:
    return _num("ENTITY_CACHE_TTL_SEC")


def get_invoice_cache_ttl_sec() -> int:
    return _num("INVOICE_CACHE_TTL_SEC")


def get_invoice_number_start() -> int:
    return _num("INVOICE_NUMBER_START")
