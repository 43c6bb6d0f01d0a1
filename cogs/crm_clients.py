"""Client and lead commands."""

from __future__ import annotations

from typing import List, Optional

import discord
from discord import app_commands
from discord.ext import commands

from modules.common.embeds import get_embed_colour
from modules.crm.board_views import channel_url
from modules.crm.commands import CrmCog, reply, require_guild
from modules.crm.context import CrmContext
from modules.crm.models import Client
from modules.crm.permissions import PermissionTier, require_tier


def _client_line(client: Client, guild_id: int) -> str:
    line = f"**{client.display_name}** (`{client.code}`)"
    if client.channel_id:
        line += f" → {channel_url(guild_id, client.channel_id)}"
    return line


class CrmClients(CrmCog):
    client = app_commands.Group(name="client", description="Manage clients")
    lead = app_commands.Group(name="lead", description="Manage leads and inquiries")

    @client.command(name="create", description="Create an active client with its own channel")
    @app_commands.describe(
        name="Client or company name",
        contact_name="Main contact",
        contact_method="Email, phone or handle",
        code="Short code (defaults to the first letters of the name)",
    )
    @require_tier(PermissionTier.DATA_ONLY)
    async def client_create(
        self,
        interaction: discord.Interaction,
        name: str,
        contact_name: str,
        contact_method: str,
        code: Optional[str] = None,
        description: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> None:
        guild = require_guild(interaction)
        await interaction.response.defer(ephemeral=True, thinking=True)
        created = await self.service.create_client(
            guild,
            name=name,
            contact_name=contact_name,
            contact_method=contact_method,
            code=code,
            description=description or "",
            notes=notes or "",
        )
        await reply(interaction, f"✅ Client created: {_client_line(created, guild.id)}")

    @client.command(name="edit", description="Change a client's details")
    @app_commands.describe(client="Client to edit")
    @require_tier(PermissionTier.DATA_ONLY)
    async def client_edit(
        self,
        interaction: discord.Interaction,
        client: str,
        name: Optional[str] = None,
        code: Optional[str] = None,
        contact_name: Optional[str] = None,
        contact_method: Optional[str] = None,
        description: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> None:
        guild = require_guild(interaction)
        await interaction.response.defer(ephemeral=True)
        updated = await self.service.edit_client(
            guild,
            client,
            name=name,
            code=code,
            contact_name=contact_name,
            contact_method=contact_method,
            description=description,
            notes=notes,
        )
        await reply(interaction, f"✏️ Updated {_client_line(updated, guild.id)}")

    @client.command(name="archive", description="Archive a client")
    @require_tier(PermissionTier.DATA_ONLY)
    async def client_archive(self, interaction: discord.Interaction, client: str) -> None:
        guild = require_guild(interaction)
        await interaction.response.defer(ephemeral=True)
        archived = await self.service.archive_client(guild, client)
        await reply(interaction, f"🗄️ Archived **{archived.display_name}** (`{archived.code}`).")

    @client_edit.autocomplete("client")
    @client_archive.autocomplete("client")
    async def client_autocomplete(
        self, interaction: discord.Interaction, current: str
    ) -> List[app_commands.Choice[str]]:
        return await self._client_choices(current)

    @lead.command(name="create", description="Record a new lead")
    @require_tier(PermissionTier.DATA_ONLY)
    async def lead_create(
        self,
        interaction: discord.Interaction,
        name: str,
        contact_name: str,
        contact_method: str,
        description: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> None:
        guild = require_guild(interaction)
        await interaction.response.defer(ephemeral=True)
        created = await self.service.create_client(
            guild,
            name=name,
            contact_name=contact_name,
            contact_method=contact_method,
            description=description or "",
            notes=notes or "",
            lead=True,
        )
        await reply(interaction, f"🆕 Lead recorded: **{created.display_name}** (`{created.code}`)")

    @lead.command(name="list", description="List open leads")
    @require_tier(PermissionTier.DATA_ONLY)
    async def lead_list(self, interaction: discord.Interaction) -> None:
        leads = await self.service.list_leads()
        if not leads:
            await reply(interaction, "No open leads.")
            return
        embed = discord.Embed(title=f"🆕 Leads ({len(leads)})", colour=get_embed_colour("lead"))
        for lead in leads[:25]:
            contact = " · ".join(p for p in (lead.contact_name, lead.contact_method) if p) or "no contact"
            embed.add_field(
                name=f"{lead.display_name} ({lead.code})"[:256],
                value=(f"{contact}\n{lead.description}" if lead.description else contact)[:1024],
                inline=False,
            )
        if len(leads) > 25:
            embed.set_footer(text=f"… and {len(leads) - 25} more")
        await reply(interaction, embed=embed)

    @lead.command(name="convert", description="Turn a lead into an active client")
    @require_tier(PermissionTier.DATA_ONLY)
    async def lead_convert(self, interaction: discord.Interaction, lead: str) -> None:
        guild = require_guild(interaction)
        await interaction.response.defer(ephemeral=True, thinking=True)
        client = await self.service.convert_lead(guild, lead)
        await reply(interaction, f"🎉 Converted to client: {_client_line(client, guild.id)}")

    @lead_convert.autocomplete("lead")
    async def lead_autocomplete(
        self, interaction: discord.Interaction, current: str
    ) -> List[app_commands.Choice[str]]:
        return await self._lead_choices(current)


async def setup(bot: commands.Bot, context: CrmContext) -> None:
    await bot.add_cog(CrmClients(bot, context))
