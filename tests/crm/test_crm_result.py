import asyncio
from types import SimpleNamespace

import aiohttp
import discord
import pytest
from gspread.exceptions import APIError

from modules.crm.errors import (
    NotFound,
    PermissionDenied,
    ReconcileError,
    TransientIOError,
    ValidationError,
    classify_error,
)
from modules.crm.result import Result, SyncReport, capture


def _discord_error(cls, status):
    return cls(SimpleNamespace(status=status, reason="x"), "x")


class _Response:
    def __init__(self, status_code):
        self.status_code = status_code
        self.text = "error"

    def json(self):
        return {"error": {"code": self.status_code, "message": "error", "status": "ERR"}}


@pytest.mark.parametrize(
    "exc, expected",
    [
        (_discord_error(discord.NotFound, 404), NotFound),
        (_discord_error(discord.Forbidden, 403), PermissionDenied),
        (_discord_error(discord.HTTPException, 500), TransientIOError),
        (APIError(_Response(403)), PermissionDenied),
        (APIError(_Response(404)), NotFound),
        (APIError(_Response(503)), TransientIOError),
        (aiohttp.ClientConnectionError("reset"), TransientIOError),
        (asyncio.TimeoutError(), TransientIOError),
        (KeyError("boom"), ReconcileError),
    ],
)
def test_classify_error(exc, expected):
    classified = classify_error(exc)

    assert type(classified) is expected
    assert classified.cause is exc


def test_reconcile_errors_pass_through():
    err = ValidationError("bad date")

    assert classify_error(err) is err
    assert err.describe() == "validation: bad date"


def test_capture_folds_exceptions_into_results():
    async def ok():
        return 5

    async def broken():
        raise _discord_error(discord.Forbidden, 403)

    async def runner():
        return await capture("a", ok()), await capture("b", broken())

    good, bad = asyncio.run(runner())

    assert good.ok and good.value == 5
    assert not bad.ok
    assert bad.error.kind == "permission_denied"


def test_capture_does_not_swallow_cancellation():
    async def cancelled():
        raise asyncio.CancelledError()

    with pytest.raises(asyncio.CancelledError):
        asyncio.run(capture("c", cancelled()))


def test_sync_report_counts_and_summary():
    report = SyncReport(guild_id=1, trigger="manual")
    report.add("gc", Result.success("tasks:closed-jobs", 3))
    report.add("clients", Result.success("client:ACME"))
    report.add("clients", Result.failure("client:BOLT", _discord_error(discord.Forbidden, 403)))
    report.add("boards", Result.success("board:tasks"))
    report.finish()

    assert not report.ok
    assert report.counts("clients") == (1, 2)
    assert report.tasks_purged() == 3
    summary = report.summary()
    assert "clients=1/2" in summary
    assert "jobs=0/0" in summary
    assert "failures=1" in summary
    (line,) = report.failure_lines()
    assert line.startswith("• client:BOLT: permission_denied: 403")


def test_failure_lines_are_capped():
    report = SyncReport(guild_id=1, trigger="t")
    for n in range(12):
        report.add("jobs", Result.failure(f"job:{n}", RuntimeError("no")))

    lines = report.failure_lines(limit=10)

    assert len(lines) == 11
    assert lines[-1] == "• … and 2 more"
