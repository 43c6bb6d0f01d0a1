"""Shared plumbing for the CRM slash-command cogs."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Iterable, List, Optional, Tuple

import discord
from discord import app_commands
from discord.ext import commands

from modules.crm.errors import NotFound, ReconcileError, ValidationError
from modules.crm.models import INVOICE_STATUSES, PRIORITIES, TASK_STATUSES
from modules.crm.permissions import MissingTier

if TYPE_CHECKING:
    from modules.crm.context import CrmContext

log = logging.getLogger("crm.commands")

PRIORITY_CHOICES = [app_commands.Choice(name=p.title(), value=p) for p in PRIORITIES]
TASK_STATUS_CHOICES = [app_commands.Choice(name=s, value=s) for s in TASK_STATUSES]
INVOICE_STATUS_CHOICES = [app_commands.Choice(name=s.title(), value=s) for s in INVOICE_STATUSES]


def to_choices(pairs: Iterable[Tuple[str, str]]) -> List[app_commands.Choice[str]]:
    return [app_commands.Choice(name=label, value=value) for label, value in pairs]


def choice_value(choice: Optional[app_commands.Choice[str]]) -> Optional[str]:
    return None if choice is None else choice.value


def require_guild(interaction: discord.Interaction) -> discord.Guild:
    guild = interaction.guild
    if guild is None:
        raise ValidationError("this command only works inside a server")
    return guild


async def reply(
    interaction: discord.Interaction,
    content: Optional[str] = None,
    *,
    embed: Optional[discord.Embed] = None,
    ephemeral: bool = True,
) -> None:
    """Send through the initial response or, once deferred, through the followup."""

    kwargs = {"ephemeral": ephemeral}
    if content is not None:
        kwargs["content"] = content
    if embed is not None:
        kwargs["embed"] = embed
    if interaction.response.is_done():
        await interaction.followup.send(**kwargs)
    else:
        await interaction.response.send_message(**kwargs)


class CrmCog(commands.Cog):
    """Base for the CRM cogs: holds the context and maps errors to replies."""

    def __init__(self, bot: commands.Bot, context: "CrmContext") -> None:
        self.bot = bot
        self.context = context
        self.service = context.service

    async def cog_app_command_error(
        self,
        interaction: discord.Interaction,
        error: app_commands.AppCommandError,
    ) -> None:
        original = getattr(error, "original", error)
        if isinstance(error, MissingTier):
            message = f"⛔ You need {error.required.name.replace('_', ' ').lower()} access for this command."
        elif isinstance(original, (ValidationError, NotFound)):
            message = f"⚠️ {original}"
        elif isinstance(original, ReconcileError):
            log.warning(
                "command failed",
                extra={"command": getattr(interaction.command, "qualified_name", "?"), "error": original.describe()},
            )
            message = f"❌ {original.describe()}"
        else:
            log.exception(
                "command error",
                extra={"command": getattr(interaction.command, "qualified_name", "?")},
                exc_info=original,
            )
            message = "❌ Something went wrong; the error has been logged."
        try:
            await reply(interaction, message)
        except discord.HTTPException:
            log.debug("failed to report command error", exc_info=True)

    # autocomplete sources shared by several cogs

    async def _client_choices(self, current: str) -> List[app_commands.Choice[str]]:
        return to_choices(await self.service.suggest_clients(current))

    async def _lead_choices(self, current: str) -> List[app_commands.Choice[str]]:
        return to_choices(await self.service.suggest_clients(current, leads=True))

    async def _job_choices(self, current: str) -> List[app_commands.Choice[str]]:
        return to_choices(await self.service.suggest_jobs(current))

    async def _invoice_choices(self, current: str) -> List[app_commands.Choice[str]]:
        return to_choices(await self.service.suggest_invoices(current))


__all__ = [
    "CrmCog",
    "INVOICE_STATUS_CHOICES",
    "PRIORITY_CHOICES",
    "TASK_STATUS_CHOICES",
    "choice_value",
    "reply",
    "require_guild",
    "to_choices",
]
