"""Error taxonomy for reconciliation and CRM commands."""

from __future__ import annotations

import asyncio

import aiohttp
import discord
from gspread.exceptions import APIError

from shared.sheets.core import is_retryable


class ReconcileError(Exception):
    """Base class for failures reported per entity in a sync report."""

    kind = "error"

    def __init__(self, message: str, *, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.cause = cause

    def describe(self) -> str:
        text = str(self).strip()
        return f"{self.kind}: {text}" if text else self.kind


class NotFound(ReconcileError):
    """Entity id does not resolve, or a Discord object was deleted externally."""

    kind = "not_found"


class PermissionDenied(ReconcileError):
    kind = "permission_denied"


class ValidationError(ReconcileError):
    """Bad user input; surfaced to the invoking command, never retried."""

    kind = "validation"


class TransientIOError(ReconcileError):
    kind = "transient_io"


def _errtext(exc: BaseException) -> str:
    s = str(exc).strip()
    return s or type(exc).__name__


def classify_error(exc: BaseException) -> ReconcileError:
    """Map a raw exception from discord.py, gspread or aiohttp onto the taxonomy."""

    if isinstance(exc, ReconcileError):
        return exc
    if isinstance(exc, discord.NotFound):
        return NotFound(_errtext(exc), cause=exc)
    if isinstance(exc, discord.Forbidden):
        return PermissionDenied(_errtext(exc), cause=exc)
    if isinstance(exc, discord.HTTPException):
        return TransientIOError(_errtext(exc), cause=exc)
    if isinstance(exc, APIError):
        status = getattr(getattr(exc, "response", None), "status_code", None)
        if status == 403:
            return PermissionDenied(_errtext(exc), cause=exc)
        if status == 404:
            return NotFound(_errtext(exc), cause=exc)
        if is_retryable(exc):
            return TransientIOError(_errtext(exc), cause=exc)
        return ReconcileError(_errtext(exc), cause=exc)
    if isinstance(exc, (aiohttp.ClientError, asyncio.TimeoutError, OSError)):
        return TransientIOError(_errtext(exc), cause=exc)
    return ReconcileError(_errtext(exc), cause=exc)


__all__ = [
    "NotFound",
    "PermissionDenied",
    "ReconcileError",
    "TransientIOError",
    "ValidationError",
    "classify_error",
]
