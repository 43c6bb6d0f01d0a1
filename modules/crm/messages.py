"""Edit-or-send helpers shared by the card and board reconcilers."""

from __future__ import annotations

import logging
from typing import Optional, Tuple

import discord

log = logging.getLogger("crm.messages")


def parse_snowflake(value: object) -> Optional[int]:
    text = str(value or "").strip()
    if not text.isdigit():
        return None
    number = int(text)
    return number if number > 0 else None


async def fetch_message(
    channel: discord.abc.Messageable, message_id: object
) -> Optional[discord.Message]:
    """Return the message or ``None`` when it is gone or unreadable."""

    snowflake = parse_snowflake(message_id)
    if snowflake is None:
        return None
    try:
        return await channel.fetch_message(snowflake)
    except discord.NotFound:
        return None
    except discord.HTTPException:
        log.debug("failed to fetch message %s", snowflake, exc_info=True)
        return None


def _same_embed(message: discord.Message, embed: discord.Embed) -> bool:
    embeds = getattr(message, "embeds", None) or []
    if len(embeds) != 1:
        return False
    return embeds[0].to_dict() == embed.to_dict()


async def upsert_message(
    channel: discord.abc.Messageable,
    message_id: object,
    *,
    embed: discord.Embed,
) -> Tuple[discord.Message, bool]:
    """Edit the stored message in place, or send a new one.

    Returns ``(message, created)``. An unchanged embed is not re-sent. Send
    errors propagate; callers decide whether that is fatal.
    """

    existing = await fetch_message(channel, message_id)
    if existing is not None:
        if _same_embed(existing, embed):
            return existing, False
        try:
            await existing.edit(content=None, embed=embed)
            return existing, False
        except discord.NotFound:
            log.debug("message %s vanished before edit", existing.id)
    message = await channel.send(embed=embed)
    return message, True


async def pin_quietly(message: discord.Message) -> None:
    if getattr(message, "pinned", False):
        return
    try:
        await message.pin()
    except discord.HTTPException:
        log.debug("failed to pin message %s", getattr(message, "id", "?"), exc_info=True)


__all__ = ["fetch_message", "parse_snowflake", "pin_quietly", "upsert_message"]
