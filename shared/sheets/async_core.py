"""Async wrappers for Google Sheets access built on :mod:`shared.sheets.core`."""

from __future__ import annotations

from functools import partial
from typing import Any, Callable, Dict, Mapping, ParamSpec, Sequence, TypeVar

from . import core as _core
from .async_adapter import arun

P = ParamSpec("P")
T = TypeVar("T")


async def aget_worksheet(
    sheet_id: str, name: str, *, force: bool = False, timeout: float | None = None
) -> Any:
    """Fetch a worksheet handle using the shared cache without blocking."""

    return await arun(_core.get_worksheet, sheet_id, name, force=force, timeout=timeout)


async def afetch_config_dict(
    sheet_id: str, worksheet: str, *, timeout: float | None = None
) -> Dict[str, str]:
    """Async variant of :func:`shared.sheets.core.get_config_dict` (always fresh)."""

    return await arun(
        _core.get_config_dict, sheet_id, worksheet, force=True, timeout=timeout
    )


async def aupsert_row(
    sheet_id: str,
    worksheet: str,
    row: Mapping[str, Any],
    *,
    key_columns: Sequence[str],
    timeout: float | None = None,
) -> str:
    return await arun(
        _core.upsert_row,
        sheet_id,
        worksheet,
        row,
        key_columns=key_columns,
        timeout=timeout,
    )


async def aensure_worksheet(
    sheet_id: str, worksheet: str, headers: Sequence[str], *, timeout: float | None = None
) -> str:
    return await arun(_core.ensure_worksheet, sheet_id, worksheet, headers, timeout=timeout)


async def acall_with_backoff(
    func: Callable[P, T],
    *args: P.args,
    timeout: float | None = None,
    **kwargs: P.kwargs,
) -> T:
    """Execute ``func`` in the Sheets executor with backoff on transient errors."""

    bound = partial(func, *args, **kwargs)
    return await arun(_core.with_backoff, bound, timeout=timeout)


__all__ = [
    "aget_worksheet",
    "afetch_config_dict",
    "aupsert_row",
    "aensure_worksheet",
    "acall_with_backoff",
]
