import asyncio
import logging
from types import SimpleNamespace

import pytest

from modules.common import runtime


def test_failing_job_keeps_its_schedule(caplog: pytest.LogCaptureFixture, monkeypatch) -> None:
    monkeypatch.setattr(runtime, "_next_delay", lambda interval, jitter: 0.005)
    caplog.set_level(logging.ERROR, logger="crm.runtime")
    calls = {"count": 0}

    async def flaky() -> None:
        calls["count"] += 1
        if calls["count"] == 1:
            raise RuntimeError("boom")

    async def runner() -> None:
        scheduler = runtime.Scheduler()
        task = scheduler.every(60, flaky, name="flaky_job")
        await asyncio.sleep(0.05)
        await scheduler.shutdown()
        assert task.cancelled()

    asyncio.run(runner())

    assert calls["count"] >= 2
    errors = [r for r in caplog.records if r.getMessage() == "recurring job error"]
    assert errors and errors[0].job_name == "flaky_job"


def test_next_delay_stays_within_jitter_and_floor():
    for _ in range(50):
        assert 570.0 <= runtime._next_delay(600.0, 0.05) <= 630.0
    assert runtime._next_delay(0.2, 0.0) == 1.0


class _Queue:
    def __init__(self, failing) -> None:
        self.failing = failing
        self.runs = []

    async def run_now(self, guild, trigger="manual"):
        self.runs.append((guild.id, trigger))
        if guild.id in self.failing:
            raise RuntimeError("sheet down")


class _Bot:
    def __init__(self, guilds) -> None:
        self.guilds = guilds

    def is_ready(self) -> bool:
        return True


def test_periodic_sync_visits_every_guild_and_reports_failures(monkeypatch):
    guilds = [SimpleNamespace(id=1, name="One"), SimpleNamespace(id=2, name="Two")]
    rt = runtime.Runtime(bot=_Bot(guilds))
    rt.crm = SimpleNamespace(queue=_Queue(failing={1}))
    sent = []

    async def capture(message):
        sent.append(message)

    monkeypatch.setattr(rt, "send_log_message", capture)

    asyncio.run(rt.periodic_sync())

    assert rt.crm.queue.runs == [(1, "periodic"), (2, "periodic")]
    assert sent == ["❌ Periodic sync failed for One: sheet down"]


def test_trim_message_caps_length():
    assert runtime._trim_message("x" * 2000, limit=10) == "x" * 9 + "…"
    assert runtime._trim_message("short") == "short"
