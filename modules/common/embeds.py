from __future__ import annotations

"""Shared helpers for Discord embeds."""

from typing import Literal

import discord


EmbedCategory = Literal["client", "job", "task", "invoice", "admin", "lead"]

_COLOURS: dict[EmbedCategory, discord.Colour] = {
    "client": discord.Colour(0x1ABC9C),
    "job": discord.Colour(0x00CC66),
    "task": discord.Colour(0x5865F2),
    "invoice": discord.Colour(0xFFCC00),
    "admin": discord.Colour(0xF200E5),
    "lead": discord.Colour(0xF39C12),
}

URGENT_COLOUR = discord.Colour(0xFF0000)
WARNING_COLOUR = discord.Colour(0xFF9900)
HEALTHY_COLOUR = discord.Colour(0x00FF00)


def get_embed_colour(category: EmbedCategory) -> discord.Colour:
    """Return the embed colour for the given category."""

    return _COLOURS.get(category, discord.Colour.default())


__all__ = [
    "EmbedCategory",
    "HEALTHY_COLOUR",
    "URGENT_COLOUR",
    "WARNING_COLOUR",
    "get_embed_colour",
]
