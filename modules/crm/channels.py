"""Find-or-create for the CRM category and the channels that live under it."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

import discord

from modules.crm.naming import CRM_CATEGORY, LEGACY_CATEGORY_NAMES, ChannelName

log = logging.getLogger("crm.channels")

# gateway events can trail our own create calls by a moment
_RECENT_CREATE_GRACE_SEC = 30.0


def _category_id(channel: object) -> Optional[int]:
    return getattr(channel, "category_id", None)


@dataclass(slots=True)
class DuplicateGroup:
    name: str
    kept: discord.abc.GuildChannel
    removed: List[discord.abc.GuildChannel] = field(default_factory=list)
    failed: List[discord.abc.GuildChannel] = field(default_factory=list)


class ChannelResolver:
    """Canonical-name channel resolution with legacy migration.

    One lock per guild serializes find-or-create inside the process, so two
    commands racing on the same client cannot both decide to create.
    """

    def __init__(self, *, category_name: str = CRM_CATEGORY) -> None:
        self.category_name = category_name
        self._locks: Dict[int, asyncio.Lock] = {}
        self._recent: Dict[Tuple[int, str], Tuple[float, discord.TextChannel]] = {}

    def _lock(self, guild: discord.Guild) -> asyncio.Lock:
        lock = self._locks.get(guild.id)
        if lock is None:
            lock = self._locks[guild.id] = asyncio.Lock()
        return lock

    async def ensure_category(self, guild: discord.Guild) -> discord.CategoryChannel:
        async with self._lock(guild):
            return await self._ensure_category(guild)

    async def _ensure_category(self, guild: discord.Guild) -> discord.CategoryChannel:
        categories = list(guild.categories)
        for category in categories:
            if category.name == self.category_name:
                return category
        for category in categories:
            if category.name in LEGACY_CATEGORY_NAMES:
                try:
                    await category.edit(name=self.category_name)
                    log.info(
                        "renamed legacy CRM category",
                        extra={"guild_id": guild.id, "old": category.name},
                    )
                except discord.HTTPException:
                    log.debug("failed to rename legacy CRM category", exc_info=True)
                return category
        category = await guild.create_category(self.category_name)
        log.info("created CRM category", extra={"guild_id": guild.id})
        return category

    async def _recently_created(
        self, guild: discord.Guild, canonical: str
    ) -> Optional[discord.TextChannel]:
        entry = self._recent.get((guild.id, canonical))
        if entry is None:
            return None
        created_at, channel = entry
        if time.monotonic() - created_at > _RECENT_CREATE_GRACE_SEC:
            self._recent.pop((guild.id, canonical), None)
            return None
        try:
            await guild.fetch_channel(channel.id)
        except discord.NotFound:
            # deleted before the gateway caught up
            self._recent.pop((guild.id, canonical), None)
            return None
        except discord.HTTPException:
            log.debug("failed to confirm recent channel %s", channel.id, exc_info=True)
        return channel

    async def ensure_channel_under(
        self, guild: discord.Guild, name: ChannelName
    ) -> discord.TextChannel:
        """Return the channel for ``name`` under the CRM category, creating it last.

        Search order: canonical name in the category, canonical name anywhere
        (reparented), any legacy name (renamed and reparented). Rename and
        reparent failures only leave the channel cosmetically off; create
        failures propagate.
        """

        async with self._lock(guild):
            category = await self._ensure_category(guild)
            channels = list(guild.text_channels)

            for channel in channels:
                if channel.name == name.canonical and _category_id(channel) == category.id:
                    return channel

            for channel in channels:
                if channel.name == name.canonical:
                    await self._reparent(channel, category)
                    return channel

            legacy = [c for c in channels if c.name in name.legacy]
            legacy.sort(key=lambda c: (_category_id(c) != category.id, c.id))
            if legacy:
                channel = legacy[0]
                await self._rename(channel, name.canonical)
                await self._reparent(channel, category)
                return channel

            recent = await self._recently_created(guild, name.canonical)
            if recent is not None:
                return recent

            channel = await guild.create_text_channel(name=name.canonical, category=category)
            self._recent[(guild.id, name.canonical)] = (time.monotonic(), channel)
            log.info(
                "created CRM channel",
                extra={"guild_id": guild.id, "channel": name.canonical},
            )
            return channel

    async def adopt(
        self, guild: discord.Guild, channel: discord.TextChannel, name: ChannelName
    ) -> discord.TextChannel:
        """Bring an already-known channel to its canonical name and category."""

        async with self._lock(guild):
            category = await self._ensure_category(guild)
            await self._rename(channel, name.canonical)
            await self._reparent(channel, category)
        return channel

    def find_channel(
        self, guild: discord.Guild, name: ChannelName
    ) -> Optional[discord.TextChannel]:
        """Lookup without side effects; canonical name wins over legacy names."""

        channels = list(guild.text_channels)
        for channel in channels:
            if channel.name == name.canonical:
                return channel
        for channel in channels:
            if channel.name in name.legacy:
                return channel
        return None

    async def _rename(self, channel: discord.TextChannel, new_name: str) -> None:
        if channel.name == new_name:
            return
        old_name = channel.name
        try:
            await channel.edit(name=new_name)
            log.info(
                "renamed legacy channel",
                extra={"channel_id": channel.id, "old": old_name, "new": new_name},
            )
        except discord.HTTPException:
            log.debug("failed to rename channel %s", channel.id, exc_info=True)

    async def _reparent(
        self, channel: discord.TextChannel, category: discord.CategoryChannel
    ) -> None:
        if _category_id(channel) == category.id:
            return
        try:
            await channel.edit(category=category)
            log.info(
                "reparented channel",
                extra={"channel_id": channel.id, "category_id": category.id},
            )
        except discord.HTTPException:
            log.debug("failed to reparent channel %s", channel.id, exc_info=True)

    async def cleanup_duplicates(
        self,
        guild: discord.Guild,
        names: Iterable[ChannelName],
        *,
        dry_run: bool = False,
    ) -> List[DuplicateGroup]:
        """Delete all but one channel per name.

        The survivor is the one already under the CRM category; among equals,
        the oldest (lowest snowflake) wins.
        """

        groups: List[DuplicateGroup] = []
        async with self._lock(guild):
            category = await self._ensure_category(guild)
            seen: set[str] = set()
            for name in names:
                if name.canonical in seen:
                    continue
                seen.add(name.canonical)
                matches = [c for c in guild.text_channels if name.matches(c.name)]
                if len(matches) <= 1:
                    continue
                matches.sort(key=lambda c: (_category_id(c) != category.id, c.id))
                group = DuplicateGroup(name=name.canonical, kept=matches[0])
                for duplicate in matches[1:]:
                    if dry_run:
                        group.removed.append(duplicate)
                        continue
                    try:
                        await duplicate.delete(reason=f"duplicate of #{name.canonical}")
                    except discord.HTTPException:
                        log.warning(
                            "failed to delete duplicate channel",
                            extra={"channel_id": duplicate.id, "channel": name.canonical},
                            exc_info=True,
                        )
                        group.failed.append(duplicate)
                        continue
                    group.removed.append(duplicate)
                self._recent.pop((guild.id, name.canonical), None)
                groups.append(group)
        return groups


__all__ = ["ChannelResolver", "DuplicateGroup"]
