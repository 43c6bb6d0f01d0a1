"""Client channels and the card message pinned in each of them."""

from __future__ import annotations

import logging
from typing import Optional, Sequence

import discord

from modules.crm.board_views import render_client_card
from modules.crm.channels import ChannelResolver
from modules.crm.errors import NotFound, ValidationError
from modules.crm.job_threads import JobThreadReconciler
from modules.crm.locks import KeyedLocks
from modules.crm.messages import parse_snowflake, upsert_message
from modules.crm.models import Client, Job
from modules.crm.naming import client_channel

log = logging.getLogger("crm.client_cards")


def _is_text_channel(channel: object) -> bool:
    return getattr(channel, "type", None) == discord.ChannelType.text


class ClientCardReconciler:
    def __init__(
        self,
        store,
        resolver: ChannelResolver,
        job_threads: JobThreadReconciler,
    ) -> None:
        self._store = store
        self._resolver = resolver
        self._job_threads = job_threads
        self._locks: KeyedLocks[str] = KeyedLocks()

    async def _by_stored_id(
        self, guild: discord.Guild, channel_id: str
    ) -> Optional[discord.TextChannel]:
        snowflake = parse_snowflake(channel_id)
        if snowflake is None:
            return None
        channel = guild.get_channel(snowflake)
        if channel is None:
            try:
                channel = await guild.fetch_channel(snowflake)
            except discord.NotFound:
                return None
            except discord.HTTPException:
                log.debug("failed to fetch client channel %s", snowflake, exc_info=True)
                return None
        return channel if _is_text_channel(channel) else None

    async def ensure_client_channel(
        self, guild: discord.Guild, client: Client
    ) -> discord.TextChannel:
        """Stored id first, then name lookup (canonical, then legacy), then create."""

        name = client_channel(client.code, client.name)
        channel = await self._by_stored_id(guild, client.channel_id)
        if channel is not None:
            channel = await self._resolver.adopt(guild, channel, name)
        else:
            channel = await self._resolver.ensure_channel_under(guild, name)
        client.channel_id = str(channel.id)
        return channel

    async def ensure_client_card(
        self,
        guild: discord.Guild,
        client: Client,
        jobs: Optional[Sequence[Job]] = None,
    ) -> Optional[discord.Message]:
        """Bring the client's channel and card in line with the sheet.

        Channel errors propagate. Card send/edit errors are logged and yield
        ``None``; the next sync retries.
        """

        if not client.id:
            raise ValidationError(
                f"client {client.name or client.code!r} has no ID; run /repair clients"
            )
        async with self._locks.hold(client.id) as waited:
            if waited or not (client.channel_id and client.card_message_id):
                # another call may have linked a channel or card since *client* was read
                current = await self._store.get_client(client.id)
                if current is None:
                    raise NotFound(f"client {client.id} no longer exists")
                client.channel_id = current.channel_id
                client.card_message_id = current.card_message_id
            return await self._reconcile(guild, client, jobs)

    async def _reconcile(
        self,
        guild: discord.Guild,
        client: Client,
        jobs: Optional[Sequence[Job]],
    ) -> Optional[discord.Message]:
        stored_channel_id = client.channel_id
        stored_card_id = client.card_message_id
        channel = await self.ensure_client_channel(guild, client)

        if jobs is None:
            jobs = await self._store.list_jobs(fresh=True)
        # threads die with their channel, so a moved client re-checks every job
        moved = client.channel_id != stored_channel_id
        for job in jobs:
            if job.client_id != client.id or not job.is_open:
                continue
            if job.thread_id and not moved:
                continue
            try:
                await self._job_threads.ensure_job_thread(client, channel, job)
            except Exception:
                log.warning(
                    "failed to ensure job thread for client card",
                    extra={"client_id": client.id, "job_id": job.id},
                    exc_info=True,
                )

        embed = render_client_card(client, jobs, guild.id)
        # a card from a previous channel cannot be edited in this one
        card_id = stored_card_id if stored_channel_id == client.channel_id else ""
        try:
            message, created = await upsert_message(channel, card_id, embed=embed)
        except discord.HTTPException:
            log.warning(
                "failed to post client card",
                extra={"client_id": client.id, "channel_id": channel.id},
                exc_info=True,
            )
            return None

        client.card_message_id = str(message.id)
        if client.channel_id != stored_channel_id or client.card_message_id != stored_card_id:
            updated = await self._store.update_client(
                client.id,
                channel_id=client.channel_id,
                card_message_id=client.card_message_id,
            )
            if updated is None:
                raise NotFound(f"client {client.id} no longer exists")
            log.info(
                "client card linked",
                extra={
                    "client_id": client.id,
                    "channel_id": client.channel_id,
                    "message_id": client.card_message_id,
                    "created": created,
                },
            )
        return message


__all__ = ["ClientCardReconciler"]
