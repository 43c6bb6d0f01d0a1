"""Per-job threads inside a client's channel, each carrying a job card."""

from __future__ import annotations

import logging
from typing import Dict, Optional

import discord

from modules.crm.board_views import render_job_card
from modules.crm.errors import NotFound
from modules.crm.locks import KeyedLocks
from modules.crm.messages import parse_snowflake, upsert_message
from modules.crm.models import Client, Job
from modules.crm.naming import job_thread_name

log = logging.getLogger("crm.job_threads")

THREAD_AUTO_ARCHIVE_MINUTES = 10080  # one week


async def resolve_thread(
    guild: discord.Guild, thread_id: object
) -> Optional[discord.Thread]:
    snowflake = parse_snowflake(thread_id)
    if snowflake is None:
        return None
    cached = guild.get_thread(snowflake)
    if cached is not None:
        return cached
    try:
        fetched = await guild.fetch_channel(snowflake)
    except discord.NotFound:
        return None
    except discord.HTTPException:
        log.debug("failed to fetch thread %s", snowflake, exc_info=True)
        return None
    return fetched if isinstance(fetched, discord.Thread) else None


class JobThreadReconciler:
    def __init__(self, store) -> None:
        self._store = store
        self._locks: KeyedLocks[str] = KeyedLocks()

    async def _reload(self, job: Job) -> Job:
        current = await self._store.get_job(job.id)
        if current is None:
            raise NotFound(f"job {job.id} no longer exists")
        return current

    async def _find_thread(
        self, channel: discord.TextChannel, job: Job
    ) -> Optional[discord.Thread]:
        thread = await resolve_thread(channel.guild, job.thread_id)
        if thread is not None and getattr(thread, "parent_id", channel.id) != channel.id:
            log.info(
                "job thread belongs to another channel; replacing",
                extra={"job_id": job.id, "thread_id": thread.id},
            )
            return None
        return thread

    async def ensure_job_thread(
        self, client: Client, channel: discord.TextChannel, job: Job
    ) -> discord.Thread:
        """Find or create the job's thread and refresh its card.

        *job* is trusted as read (sync passes its snapshot rows); the Jobs tab
        is only re-read when another call for the same job ran first, or right
        before a thread would be created. The thread id is written to the store
        as soon as the thread exists, so a retry after a crash finds it instead
        of opening a second one. Card failures are logged; the thread is still
        returned.
        """

        async with self._locks.hold(job.id) as waited:
            current = await self._reload(job) if waited else job
            thread = await self._find_thread(channel, current)

            if thread is None and current is job:
                current = await self._reload(job)
                if current.thread_id != job.thread_id:
                    thread = await self._find_thread(channel, current)

            if thread is None:
                thread = await channel.create_thread(
                    name=job_thread_name(current.id, current.title),
                    type=discord.ChannelType.public_thread,
                    auto_archive_duration=THREAD_AUTO_ARCHIVE_MINUTES,
                )
                current = await self._persist(current, thread_id=str(thread.id), thread_card_message_id="")
                log.info(
                    "created job thread",
                    extra={"job_id": current.id, "thread_id": thread.id},
                )
                await self._delete_created_notice(channel, thread)
            else:
                await self._wake(thread, job_thread_name(current.id, current.title))

            try:
                message, created = await upsert_message(
                    thread, current.thread_card_message_id, embed=render_job_card(current, client)
                )
            except discord.HTTPException:
                log.warning(
                    "failed to post job card",
                    extra={"job_id": current.id, "thread_id": thread.id},
                    exc_info=True,
                )
            else:
                if str(message.id) != current.thread_card_message_id:
                    current = await self._persist(current, thread_card_message_id=str(message.id))
                if created:
                    log.debug("job card sent", extra={"job_id": current.id})

            job.thread_id = current.thread_id
            job.thread_card_message_id = current.thread_card_message_id
            return thread

    async def _persist(self, job: Job, **fields: str) -> Job:
        updated = await self._store.update_job(job.id, **fields)
        if updated is None:
            raise NotFound(f"job {job.id} no longer exists")
        return updated

    async def _wake(self, thread: discord.Thread, name: str) -> None:
        changes: Dict[str, object] = {}
        if getattr(thread, "archived", False):
            changes["archived"] = False
        if thread.name != name:
            changes["name"] = name
        if not changes:
            return
        try:
            await thread.edit(**changes)
        except discord.HTTPException:
            log.debug("failed to update job thread %s", thread.id, exc_info=True)

    async def _delete_created_notice(
        self, channel: discord.TextChannel, thread: discord.Thread
    ) -> None:
        try:
            async for message in channel.history(limit=10):
                if message.type is not discord.MessageType.thread_created:
                    continue
                reference = getattr(message, "reference", None)
                ref_id = getattr(reference, "channel_id", None)
                if ref_id == thread.id or message.content == thread.name:
                    await message.delete()
                    return
        except discord.HTTPException:
            log.debug("failed to delete thread notice for %s", thread.id, exc_info=True)


__all__ = ["JobThreadReconciler", "THREAD_AUTO_ARCHIVE_MINUTES", "resolve_thread"]
