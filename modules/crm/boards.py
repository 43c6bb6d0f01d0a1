"""Pinned board messages, one per well-known channel per guild."""

from __future__ import annotations

import asyncio
import datetime as dt
import logging
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Sequence

import discord

from modules.crm import board_views
from modules.crm.board_state import BoardStateStore
from modules.crm.channels import ChannelResolver
from modules.crm.client_cards import ClientCardReconciler
from modules.crm.job_threads import JobThreadReconciler
from modules.crm.messages import pin_quietly, upsert_message
from modules.crm.models import CrmSnapshot
from modules.crm.naming import (
    ADMIN_BOARD,
    CLIENT_BOARD,
    INVOICE_BOARD,
    JOB_BOARD,
    LEAD_BOARD,
    TASK_BOARD,
    ChannelName,
)
from modules.crm.result import Result, capture

log = logging.getLogger("crm.boards")

BoardRenderer = Callable[[CrmSnapshot, int, dt.date], discord.Embed]


@dataclass(frozen=True)
class BoardSpec:
    key: str
    channel: ChannelName
    render: BoardRenderer
    needs_threads: bool = False


BOARDS: tuple[BoardSpec, ...] = (
    BoardSpec("clients", CLIENT_BOARD, board_views.render_client_board),
    BoardSpec("jobs", JOB_BOARD, board_views.render_job_board, needs_threads=True),
    BoardSpec("tasks", TASK_BOARD, board_views.render_task_board),
    BoardSpec("invoices", INVOICE_BOARD, board_views.render_invoice_board),
    BoardSpec("admin", ADMIN_BOARD, board_views.render_admin_board),
    BoardSpec("leads", LEAD_BOARD, board_views.render_lead_board),
)

BOARD_KEYS = tuple(spec.key for spec in BOARDS)


def get_board(key: str) -> BoardSpec:
    for spec in BOARDS:
        if spec.key == key:
            return spec
    raise KeyError(f"unknown board: {key}")


class BoardReconciler:
    """Render each board from a full fresh read and edit its message in place.

    The stored message id is verified by fetching it; a missing message is
    replaced, re-pinned and its id written back to board state.
    """

    def __init__(
        self,
        store,
        resolver: ChannelResolver,
        state: BoardStateStore,
        client_cards: ClientCardReconciler,
        job_threads: JobThreadReconciler,
        *,
        settle_delay: float = 1.0,
        today: Callable[[], dt.date] = dt.date.today,
    ) -> None:
        self._store = store
        self._resolver = resolver
        self._state = state
        self._client_cards = client_cards
        self._settle_delay = max(0.0, settle_delay)
        self._today = today
        self._job_threads = job_threads

    async def _ensure_missing_threads(
        self, guild: discord.Guild, snapshot: CrmSnapshot
    ) -> CrmSnapshot:
        created = 0
        for job in snapshot.open_jobs():
            if job.thread_id:
                continue
            client = snapshot.client_by_id(job.client_id)
            # leads, archived clients and clients without a channel get no thread
            if client is None or not client.is_active or client.archived or not client.channel_id:
                continue
            try:
                channel = await self._client_cards.ensure_client_channel(guild, client)
                await self._job_threads.ensure_job_thread(client, channel, job)
            except Exception:
                log.warning(
                    "failed to ensure job thread for job board",
                    extra={"job_id": job.id},
                    exc_info=True,
                )
                continue
            created += 1
        if not created:
            return snapshot
        # let the sheet settle so the re-read sees the new thread ids
        await asyncio.sleep(self._settle_delay)
        return await self._store.snapshot(fresh=True)

    async def ensure_board_message(
        self,
        guild: discord.Guild,
        board: BoardSpec | str,
        snapshot: Optional[CrmSnapshot] = None,
    ) -> discord.Message:
        spec = get_board(board) if isinstance(board, str) else board
        channel = await self._resolver.ensure_channel_under(guild, spec.channel)
        if snapshot is None:
            snapshot = await self._store.snapshot(fresh=True)
        if spec.needs_threads:
            snapshot = await self._ensure_missing_threads(guild, snapshot)

        embed = spec.render(snapshot, guild.id, self._today())
        stored_id = await self._state.get(guild.id, spec.key)
        message, created = await upsert_message(channel, stored_id, embed=embed)
        if message.id != stored_id:
            await self._state.set(guild.id, spec.key, message.id)
        if created:
            log.info(
                "board message posted",
                extra={"guild_id": guild.id, "board": spec.key, "message_id": message.id},
            )
        await pin_quietly(message)
        return message

    async def refresh_board(self, guild: discord.Guild, board: BoardSpec | str) -> discord.Message:
        return await self.ensure_board_message(guild, board)

    async def refresh_all(
        self,
        guild: discord.Guild,
        boards: Iterable[BoardSpec | str] | None = None,
        *,
        snapshot: Optional[CrmSnapshot] = None,
    ) -> List[Result[discord.Message]]:
        """Refresh boards concurrently; one board failing does not stop the others."""

        specs: Sequence[BoardSpec] = [
            get_board(b) if isinstance(b, str) else b for b in (boards or BOARDS)
        ]
        if snapshot is None:
            snapshot = await self._store.snapshot(fresh=True)
        results = await asyncio.gather(
            *(
                capture(f"board:{spec.key}", self.ensure_board_message(guild, spec, snapshot))
                for spec in specs
            )
        )
        return list(results)

    def board_channels(self) -> List[ChannelName]:
        return [spec.channel for spec in BOARDS]


__all__ = ["BOARDS", "BOARD_KEYS", "BoardReconciler", "BoardSpec", "get_board"]
