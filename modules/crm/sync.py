"""Full reconciliation runs and the per-guild queue every trigger goes through."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional

import discord

from modules.common.logs import log as human_log
from modules.crm.boards import BoardReconciler
from modules.crm.client_cards import ClientCardReconciler
from modules.crm.job_threads import JobThreadReconciler
from modules.crm.models import Client, CrmSnapshot, Job
from modules.crm.result import Result, SyncReport, capture
from shared import health
from shared.logging import bind_guild

log = logging.getLogger("crm.sync")

Notifier = Callable[[str], Awaitable[None]]


def orphaned_task_ids(snapshot: CrmSnapshot) -> List[str]:
    """Ids of tasks whose job is completed or closed."""

    closed = {job.id for job in snapshot.jobs if not job.is_open}
    return [task.id for task in snapshot.tasks if task.job_id in closed]


def _client_subject(client: Client) -> str:
    return f"client:{client.code or client.name or client.id or '?'}"


class SyncOrchestrator:
    """Runs load → task GC → client cards → job threads → boards for one guild.

    Every phase runs even when an earlier one failed; per-entity outcomes are
    collected in the returned :class:`SyncReport`.
    """

    def __init__(
        self,
        store,
        client_cards: ClientCardReconciler,
        job_threads: JobThreadReconciler,
        boards: BoardReconciler,
        *,
        notify: Optional[Notifier] = None,
    ) -> None:
        self._store = store
        self._client_cards = client_cards
        self._job_threads = job_threads
        self._boards = boards
        self._notify = notify

    async def purge_closed_job_tasks(self, snapshot: Optional[CrmSnapshot] = None) -> int:
        if snapshot is None:
            snapshot = await self._store.snapshot(fresh=True)
        doomed = orphaned_task_ids(snapshot)
        if not doomed:
            return 0
        return await self._store.delete_tasks(doomed)

    async def _reconcile_job(self, guild: discord.Guild, client: Client, job: Job) -> discord.Thread:
        channel = await self._client_cards.ensure_client_channel(guild, client)
        return await self._job_threads.ensure_job_thread(client, channel, job)

    async def run(self, guild: discord.Guild, trigger: str = "manual") -> SyncReport:
        with bind_guild(guild.id):
            return await self._run(guild, trigger)

    async def _run(self, guild: discord.Guild, trigger: str) -> SyncReport:
        report = SyncReport(guild_id=guild.id, trigger=trigger)
        log.info("sync started", extra={"guild_id": guild.id, "trigger": trigger})

        loaded: Result[CrmSnapshot] = report.add(
            "load", await capture("snapshot", self._store.snapshot(fresh=True))
        )
        snapshot = loaded.value

        if snapshot is not None:
            report.add(
                "gc", await capture("tasks:closed-jobs", self.purge_closed_job_tasks(snapshot))
            )

            jobs = list(snapshot.jobs)
            for client in snapshot.active_clients():
                report.add(
                    "clients",
                    await capture(
                        _client_subject(client),
                        self._client_cards.ensure_client_card(guild, client, jobs),
                    ),
                )

        # channel ids written by the client phase must be visible here
        clients = await capture("clients:reload", self._store.list_clients(fresh=True))
        if not clients.ok:
            report.add("jobs", clients)
        elif snapshot is not None:
            by_id = {c.id: c for c in clients.value or [] if c.id}
            for job in snapshot.open_jobs():
                client = by_id.get(job.client_id)
                if client is None or not client.is_active or client.archived or not client.channel_id:
                    continue
                report.add(
                    "jobs",
                    await capture(f"job:{job.id}", self._reconcile_job(guild, client, job)),
                )

        for result in await self._boards.refresh_all(guild):
            report.add("boards", result)

        report.finish()
        health.set_component("sync", report.ok, detail=report.summary())
        log.info(
            report.summary(),
            extra={
                "guild_id": guild.id,
                "trigger": trigger,
                "failures": len(report.failures),
                "duration_ms": report.duration_ms,
            },
        )
        if self._notify is not None:
            lines = [report.summary(), *report.failure_lines()]
            try:
                await self._notify("\n".join(lines))
            except Exception:
                log.debug("failed to post sync summary", exc_info=True)
        return report


@dataclass
class _GuildSlot:
    guild: discord.Guild
    triggers: List[str] = field(default_factory=list)
    waiters: List[asyncio.Future] = field(default_factory=list)
    dirty: bool = False
    timer: Optional[asyncio.TimerHandle] = None
    worker: Optional[asyncio.Task] = None
    last_report: Optional[SyncReport] = None


class SyncQueue:
    """Debounced, single-flight sync per guild.

    ``request`` coalesces bursts of mutations into one run after the debounce
    window; ``run_now`` skips the window and waits for the run that picks its
    request up. At most one run per guild is in flight; anything requested
    meanwhile is folded into a single follow-up run.
    """

    def __init__(self, orchestrator: SyncOrchestrator, *, debounce_sec: float = 1.5) -> None:
        self._orchestrator = orchestrator
        self._debounce = max(0.0, debounce_sec)
        self._slots: Dict[int, _GuildSlot] = {}
        self._closed = False

    def _slot(self, guild: discord.Guild) -> _GuildSlot:
        slot = self._slots.get(guild.id)
        if slot is None:
            slot = self._slots[guild.id] = _GuildSlot(guild=guild)
        else:
            slot.guild = guild
        return slot

    def is_running(self, guild_id: int) -> bool:
        slot = self._slots.get(guild_id)
        return bool(slot and slot.worker and not slot.worker.done())

    def last_report(self, guild_id: int) -> Optional[SyncReport]:
        slot = self._slots.get(guild_id)
        return slot.last_report if slot else None

    def request(self, guild: discord.Guild, trigger: str = "mutation") -> None:
        if self._closed:
            log.debug("sync queue closed; dropping request", extra={"trigger": trigger})
            return
        slot = self._slot(guild)
        slot.triggers.append(trigger)
        if slot.timer is not None:
            slot.timer.cancel()
            slot.timer = None
        if self._debounce <= 0:
            self._kick(slot)
            return
        loop = asyncio.get_running_loop()
        slot.timer = loop.call_later(self._debounce, self._on_timer, guild.id)

    async def run_now(self, guild: discord.Guild, trigger: str = "manual") -> SyncReport:
        if self._closed:
            raise RuntimeError("sync queue is shut down")
        slot = self._slot(guild)
        slot.triggers.append(trigger)
        waiter: asyncio.Future = asyncio.get_running_loop().create_future()
        slot.waiters.append(waiter)
        if slot.timer is not None:
            # the pending debounced request rides along with this run
            slot.timer.cancel()
            slot.timer = None
        self._kick(slot)
        return await waiter

    def _on_timer(self, guild_id: int) -> None:
        slot = self._slots.get(guild_id)
        if slot is None:
            return
        slot.timer = None
        self._kick(slot)

    def _kick(self, slot: _GuildSlot) -> None:
        slot.dirty = True
        if slot.worker is None or slot.worker.done():
            slot.worker = asyncio.ensure_future(self._drain(slot))

    async def _drain(self, slot: _GuildSlot) -> None:
        while slot.dirty:
            slot.dirty = False
            triggers, slot.triggers = slot.triggers, []
            waiters, slot.waiters = slot.waiters, []
            trigger = "+".join(dict.fromkeys(triggers)) or "queue"
            try:
                report = await self._orchestrator.run(slot.guild, trigger)
            except asyncio.CancelledError:
                for waiter in waiters:
                    if not waiter.done():
                        waiter.cancel()
                raise
            except Exception as exc:
                log.exception("sync run failed", extra={"guild_id": slot.guild.id})
                human_log.human("error", "🧭 Sync — failed", guild_id=slot.guild.id, trigger=trigger)
                for waiter in waiters:
                    if not waiter.done():
                        waiter.set_exception(exc)
                continue
            slot.last_report = report
            for waiter in waiters:
                if not waiter.done():
                    waiter.set_result(report)

    async def flush(self, guild_id: Optional[int] = None) -> None:
        """Fire pending debounce timers now and wait for the workers to go idle."""

        slots = [
            slot
            for gid, slot in self._slots.items()
            if guild_id is None or gid == guild_id
        ]
        for slot in slots:
            if slot.timer is not None:
                slot.timer.cancel()
                slot.timer = None
                self._kick(slot)
        for slot in slots:
            while slot.worker is not None and not slot.worker.done():
                await asyncio.shield(slot.worker)

    async def shutdown(self) -> None:
        self._closed = True
        workers = []
        for slot in self._slots.values():
            if slot.timer is not None:
                slot.timer.cancel()
                slot.timer = None
            if slot.worker is not None and not slot.worker.done():
                slot.worker.cancel()
                workers.append(slot.worker)
        if workers:
            await asyncio.gather(*workers, return_exceptions=True)


__all__ = ["SyncOrchestrator", "SyncQueue", "orphaned_task_ids"]
