"""Invoice commands (financial tier only)."""

from __future__ import annotations

from typing import List, Optional

import discord
from discord import app_commands
from discord.ext import commands

from modules.common.embeds import get_embed_colour
from modules.crm.board_views import money
from modules.crm.commands import (
    INVOICE_STATUS_CHOICES,
    CrmCog,
    reply,
    require_guild,
)
from modules.crm.context import CrmContext
from modules.crm.dates import format_date
from modules.crm.models import Invoice
from modules.crm.permissions import PermissionTier, require_tier


def _invoice_embed(invoice: Invoice, heading: str) -> discord.Embed:
    embed = discord.Embed(
        title=f"{heading} #{invoice.id}",
        colour=get_embed_colour("invoice"),
    )
    embed.add_field(name="Client", value=invoice.client_code or invoice.client_id, inline=True)
    embed.add_field(name="Job", value=invoice.job_id or "—", inline=True)
    embed.add_field(name="Status", value=invoice.status, inline=True)
    embed.add_field(name="Due", value=format_date(invoice.due_at), inline=True)
    if invoice.line_items:
        lines = [
            f"{index}. {item.description} — {money(item.price)}"
            for index, item in enumerate(invoice.line_items, start=1)
        ]
        embed.add_field(name="Line items", value="\n".join(lines)[:1024], inline=False)
    embed.add_field(name="Total", value=money(invoice.total), inline=False)
    return embed


class CrmInvoices(CrmCog):
    invoice = app_commands.Group(name="invoice", description="Manage invoices")

    @invoice.command(name="create", description="Create a draft invoice")
    @app_commands.describe(
        client="Client to bill",
        job="Job the invoice covers",
        due="Due date, e.g. 2025-12-31 or in 30 days",
    )
    @require_tier(PermissionTier.FULL)
    async def invoice_create(
        self,
        interaction: discord.Interaction,
        client: str,
        job: str,
        due: str,
        notes: Optional[str] = None,
        terms: Optional[str] = None,
    ) -> None:
        guild = require_guild(interaction)
        await interaction.response.defer(ephemeral=True)
        created = await self.service.create_invoice(
            guild, client, job, due=due, notes=notes or "", terms=terms or ""
        )
        await reply(interaction, embed=_invoice_embed(created, "🧾 Invoice created"))

    @invoice.command(name="add-item", description="Add a line item (max 10)")
    @require_tier(PermissionTier.FULL)
    async def invoice_add_item(
        self,
        interaction: discord.Interaction,
        invoice: str,
        description: str,
        price: app_commands.Range[float, 0.0],
    ) -> None:
        guild = require_guild(interaction)
        await interaction.response.defer(ephemeral=True)
        updated = await self.service.add_invoice_item(guild, invoice, description, price)
        await reply(interaction, embed=_invoice_embed(updated, "🧾 Invoice"))

    @invoice.command(name="remove-item", description="Remove a line item by its number")
    @app_commands.describe(index="Line number as shown on the invoice (1-10)")
    @require_tier(PermissionTier.FULL)
    async def invoice_remove_item(
        self,
        interaction: discord.Interaction,
        invoice: str,
        index: app_commands.Range[int, 1, 10],
    ) -> None:
        guild = require_guild(interaction)
        await interaction.response.defer(ephemeral=True)
        updated = await self.service.remove_invoice_item(guild, invoice, index)
        await reply(interaction, embed=_invoice_embed(updated, "🧾 Invoice"))

    @invoice.command(name="status", description="Change an invoice's status")
    @app_commands.choices(status=INVOICE_STATUS_CHOICES)
    @require_tier(PermissionTier.FULL)
    async def invoice_status(
        self,
        interaction: discord.Interaction,
        invoice: str,
        status: app_commands.Choice[str],
    ) -> None:
        guild = require_guild(interaction)
        await interaction.response.defer(ephemeral=True)
        updated = await self.service.set_invoice_status(guild, invoice, status.value)
        await reply(interaction, f"🧾 Invoice #{updated.id} is now **{updated.status}**.")

    @invoice_add_item.autocomplete("invoice")
    @invoice_remove_item.autocomplete("invoice")
    @invoice_status.autocomplete("invoice")
    async def invoice_autocomplete(
        self, interaction: discord.Interaction, current: str
    ) -> List[app_commands.Choice[str]]:
        return await self._invoice_choices(current)

    @invoice_create.autocomplete("client")
    async def invoice_client_autocomplete(
        self, interaction: discord.Interaction, current: str
    ) -> List[app_commands.Choice[str]]:
        return await self._client_choices(current)

    @invoice_create.autocomplete("job")
    async def invoice_job_autocomplete(
        self, interaction: discord.Interaction, current: str
    ) -> List[app_commands.Choice[str]]:
        return await self._job_choices(current)


async def setup(bot: commands.Bot, context: CrmContext) -> None:
    await bot.add_cog(CrmInvoices(bot, context))
