"""Blocking gspread access for the CRM record store.

Everything here runs on a Sheets worker thread (see
:mod:`shared.sheets.async_adapter`); callers on the event loop go through
:mod:`shared.sheets.async_core`.
"""

from __future__ import annotations

import json
import logging
import os
import random
import threading
import time
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, Tuple, TypeVar

import gspread
from gspread import Spreadsheet, Worksheet
from gspread.exceptions import APIError, WorksheetNotFound
from gspread.utils import rowcol_to_a1
from requests import exceptions as requests_exceptions

log = logging.getLogger("crm.sheets.core")

T = TypeVar("T")

# HTTP statuses Google returns for throttling and transient backend trouble.
_RETRY_STATUS = frozenset({408, 425, 429, 500, 502, 503, 504})
_RETRY_HINTS = ("rate limit", "quota", "timeout")

_client_lock = threading.Lock()
_client: Optional[gspread.Client] = None
_worksheets: Dict[Tuple[str, str], Tuple[Worksheet, float]] = {}


def get_client() -> gspread.Client:
    """Service-account client built from ``GSPREAD_CREDENTIALS`` on first use."""

    global _client
    with _client_lock:
        if _client is None:
            raw = os.getenv("GSPREAD_CREDENTIALS") or ""
            try:
                info = json.loads(raw)
            except ValueError as exc:
                raise RuntimeError("GSPREAD_CREDENTIALS must be service-account JSON") from exc
            if not isinstance(info, dict):
                raise RuntimeError("GSPREAD_CREDENTIALS must be a JSON object")
            _client = gspread.service_account_from_dict(info)
            log.debug("gspread client authorised", extra={"account": info.get("client_email", "")})
        return _client


def is_retryable(exc: BaseException) -> bool:
    """True for throttling, 5xx and network failures; False for everything else."""

    if isinstance(exc, requests_exceptions.RequestException):
        return True
    if not isinstance(exc, APIError):
        return False
    response = getattr(exc, "response", None)
    if getattr(response, "status_code", None) in _RETRY_STATUS:
        return True
    text = f"{getattr(response, 'text', '')} {exc}".lower()
    return any(hint in text for hint in _RETRY_HINTS)


def with_backoff(
    func: Callable[[], T],
    *,
    retries: int = 5,
    base_delay: float = 0.5,
    max_delay: float = 8.0,
) -> T:
    """Call *func*, retrying transient failures with jittered exponential delays."""

    for attempt in range(retries + 1):
        try:
            return func()
        except Exception as exc:
            if attempt == retries or not is_retryable(exc):
                raise
            delay = min(max_delay, base_delay * 2**attempt) + random.uniform(0, base_delay)
            log.warning("Sheets call failed (attempt %s/%s): %s", attempt + 1, retries, exc)
            time.sleep(delay)
    raise AssertionError("unreachable")


def _open(spreadsheet_id: str) -> Spreadsheet:
    return with_backoff(lambda: get_client().open_by_key(spreadsheet_id))


def clear_cached_worksheets(spreadsheet_id: Optional[str] = None) -> None:
    for key in [k for k in _worksheets if spreadsheet_id in (None, k[0])]:
        del _worksheets[key]


def get_worksheet(
    spreadsheet_id: str,
    worksheet_name: str,
    *,
    ttl: float = 300.0,
    force: bool = False,
) -> Worksheet:
    """Worksheet handle, reused for *ttl* seconds unless *force* is set."""

    key = (spreadsheet_id, worksheet_name)
    now = time.monotonic()
    cached = _worksheets.get(key)
    if cached and not force and cached[1] > now:
        return cached[0]
    worksheet = with_backoff(lambda: _open(spreadsheet_id).worksheet(worksheet_name))
    if ttl > 0:
        _worksheets[key] = (worksheet, now + ttl)
    return worksheet


def get_values(
    spreadsheet_id: str,
    worksheet_name: str,
    *,
    ttl: float = 300.0,
    force: bool = False,
) -> Sequence[Sequence[Any]]:
    worksheet = get_worksheet(spreadsheet_id, worksheet_name, ttl=ttl, force=force)
    return with_backoff(worksheet.get_all_values)


def ensure_worksheet(spreadsheet_id: str, worksheet_name: str, headers: Sequence[str]) -> str:
    """Create the tab or append any missing header columns on the right.

    Existing columns never move, so rows written by an older layout stay
    aligned. Returns ``"created"``, ``"extended"`` or ``"ok"``.
    """

    spreadsheet = _open(spreadsheet_id)
    try:
        worksheet = with_backoff(lambda: spreadsheet.worksheet(worksheet_name))
    except WorksheetNotFound:
        worksheet = with_backoff(
            lambda: spreadsheet.add_worksheet(title=worksheet_name, rows=1000, cols=max(1, len(headers)))
        )
        with_backoff(lambda: worksheet.append_row(list(headers), value_input_option="RAW"))
        clear_cached_worksheets(spreadsheet_id)
        log.info("created worksheet", extra={"worksheet": worksheet_name})
        return "created"

    current = [str(cell).strip() for cell in with_backoff(lambda: worksheet.row_values(1))]
    known = {cell.casefold() for cell in current if cell}
    missing = [name for name in headers if name.casefold() not in known]
    if not missing:
        return "ok"

    header = current + missing
    shortfall = len(header) - worksheet.col_count
    if shortfall > 0:
        with_backoff(lambda: worksheet.add_cols(shortfall))
    with_backoff(
        lambda: worksheet.update(
            range_name=f"A1:{rowcol_to_a1(1, len(header))}",
            values=[header],
            value_input_option="RAW",
        )
    )
    log.info("extended worksheet header", extra={"worksheet": worksheet_name, "added": ",".join(missing)})
    return "extended"


def get_config_dict(
    spreadsheet_id: str,
    worksheet_name: str,
    *,
    ttl: float = 300.0,
    force: bool = False,
) -> Dict[str, str]:
    """Two-column Key/Value tab as a dict; header row and blank keys skipped."""

    result: Dict[str, str] = {}
    for row in get_values(spreadsheet_id, worksheet_name, ttl=ttl, force=force)[1:]:
        cells = [str(cell).strip() for cell in row[:2]] + ["", ""]
        if cells[0]:
            result[cells[0]] = cells[1]
    return result


def _lookup(row: Mapping[str, Any], column: str) -> str:
    """Value for *column* in *row*, matching names case-insensitively."""

    if column in row:
        value = row[column]
    else:
        folded = column.casefold()
        value = next((v for k, v in row.items() if str(k).casefold() == folded), "")
    return "" if value is None else str(value)


def upsert_row(
    spreadsheet_id: str,
    worksheet_name: str,
    row: Mapping[str, Any],
    *,
    key_columns: Sequence[str],
    value_input_option: str = "RAW",
    ttl: float = 60.0,
) -> str:
    """Overwrite the row whose *key_columns* match, or append a new one.

    Keys compare trimmed and case-insensitively. Returns ``"updated"`` or
    ``"inserted"``.
    """

    if not key_columns:
        raise ValueError("key_columns must not be empty")

    worksheet = get_worksheet(spreadsheet_id, worksheet_name, ttl=ttl)
    values = with_backoff(worksheet.get_all_values)
    if not values:
        raise RuntimeError(f"Worksheet '{worksheet_name}' has no header row")

    header = [str(cell).strip() for cell in values[0]]
    position: Dict[str, int] = {}
    for index, name in enumerate(header):
        if name:
            position.setdefault(name.casefold(), index)

    key_index = []
    for column in key_columns:
        if column.casefold() not in position:
            raise KeyError(f"Column '{column}' not present in worksheet '{worksheet_name}' header")
        key_index.append(position[column.casefold()])
    wanted = tuple(_lookup(row, column).strip().casefold() for column in key_columns)
    if not any(wanted):
        raise ValueError("Key column values must not all be empty")

    def key_of(existing: Sequence[Any]) -> Tuple[str, ...]:
        return tuple(
            str(existing[i]).strip().casefold() if i < len(existing) else "" for i in key_index
        )

    payload = [_lookup(row, column) for column in header]
    for row_number, existing in enumerate(values[1:], start=2):
        if key_of(existing) == wanted:
            target = rowcol_to_a1(row_number, 1)
            if len(payload) > 1:
                target = f"{target}:{rowcol_to_a1(row_number, len(payload))}"
            with_backoff(
                lambda: worksheet.update(
                    range_name=target, values=[payload], value_input_option=value_input_option
                )
            )
            return "updated"

    with_backoff(lambda: worksheet.append_row(payload, value_input_option=value_input_option))
    return "inserted"
