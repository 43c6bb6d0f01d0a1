"""Maintenance commands: manual sync, repairs and cache control."""

from __future__ import annotations

import logging

import discord
from discord import app_commands
from discord.ext import commands

from modules.common.embeds import HEALTHY_COLOUR, WARNING_COLOUR, get_embed_colour
from modules.crm.commands import CrmCog, reply, require_guild
from modules.crm.context import CrmContext
from modules.crm.permissions import PermissionTier, require_tier
from modules.crm.result import SyncReport

log = logging.getLogger("crm.cogs.admin")


def _report_embed(report: SyncReport) -> discord.Embed:
    embed = discord.Embed(
        title="🧭 Sync finished",
        colour=HEALTHY_COLOUR if report.ok else WARNING_COLOUR,
    )
    for phase in ("clients", "jobs", "boards"):
        done, total = report.counts(phase)
        embed.add_field(name=phase.title(), value=f"{done}/{total}", inline=True)
    embed.add_field(name="Tasks purged", value=str(report.tasks_purged()), inline=True)
    embed.add_field(name="Duration", value=f"{report.duration_ms} ms", inline=True)
    if report.failures:
        embed.add_field(
            name=f"Failures ({len(report.failures)})",
            value="\n".join(report.failure_lines())[:1024],
            inline=False,
        )
    embed.set_footer(text=f"trigger={report.trigger}")
    return embed


class CrmAdmin(CrmCog):
    repair = app_commands.Group(name="repair", description="Fix up CRM data and channels")
    cache = app_commands.Group(name="cache", description="Inspect the CRM entity cache")

    @app_commands.command(name="sync", description="Run a full CRM sync now")
    @require_tier(PermissionTier.DATA_ONLY)
    async def sync(self, interaction: discord.Interaction) -> None:
        guild = require_guild(interaction)
        await interaction.response.defer(ephemeral=True, thinking=True)
        report = await self.context.queue.run_now(guild, f"manual:{interaction.user.id}")
        await reply(interaction, embed=_report_embed(report))

    @repair.command(name="clients", description="Fill missing client IDs and auth codes")
    @app_commands.describe(dry_run="Only report what would change")
    @require_tier(PermissionTier.FULL)
    async def repair_clients(self, interaction: discord.Interaction, dry_run: bool = False) -> None:
        await interaction.response.defer(ephemeral=True, thinking=True)
        result = await self.service.repair_clients(dry_run=dry_run)
        verb = "Would fix" if dry_run else "Fixed"
        lines = [
            f"Checked {result.processed} client rows.",
            f"{verb} {result.ids_fixed} missing IDs, {result.auth_codes_fixed} missing auth codes "
            f"and {result.links_cleared} orphaned card links.",
        ]
        if result.errors:
            lines.append("Errors:")
            lines.extend(f"• {err}" for err in result.errors[:10])
        elif result.changed and not dry_run:
            guild = interaction.guild
            if guild is not None:
                self.context.queue.request(guild, "repair:clients")
        await reply(interaction, "\n".join(lines))

    @repair.command(name="channels", description="Delete duplicate CRM channels")
    @app_commands.describe(dry_run="Only list the duplicates")
    @require_tier(PermissionTier.FULL)
    async def repair_channels(self, interaction: discord.Interaction, dry_run: bool = False) -> None:
        guild = require_guild(interaction)
        await interaction.response.defer(ephemeral=True, thinking=True)
        groups = await self.service.repair_channels(guild, dry_run=dry_run)
        if not groups:
            await reply(interaction, "✅ No duplicate channels found.")
            return
        embed = discord.Embed(
            title="🧹 Duplicate channels" + (" (dry run)" if dry_run else ""),
            colour=get_embed_colour("admin"),
        )
        for group in groups[:25]:
            value = [f"kept <#{group.kept.id}>"]
            verb = "would delete" if dry_run else "deleted"
            value.extend(f"{verb} `{ch.id}`" for ch in group.removed)
            value.extend(f"failed `{ch.id}`" for ch in group.failed)
            embed.add_field(name=group.name[:256], value="\n".join(value)[:1024], inline=False)
        await reply(interaction, embed=embed)

    @cache.command(name="stats", description="Show cache bucket ages and hit counts")
    @require_tier(PermissionTier.FULL)
    async def cache_stats(self, interaction: discord.Interaction) -> None:
        stats = self.context.cache.stats()
        lines = []
        for name, info in sorted(stats.items()):
            age = "never" if info["age_sec"] is None else f"{info['age_sec']}s"
            items = "-" if info["items"] is None else info["items"]
            state = "fresh" if info["fresh"] else "stale"
            lines.append(
                f"`{name}` {state} · age {age} / ttl {info['ttl_sec']}s · items {items} · "
                f"hits {info['hits']} · misses {info['misses']}"
                + (f" · last error {info['last_error']}" if info["last_error"] else "")
            )
        await reply(interaction, "\n".join(lines) or "No cache buckets registered.")

    @cache.command(name="clear", description="Mark every cache bucket stale")
    @require_tier(PermissionTier.FULL)
    async def cache_clear(self, interaction: discord.Interaction) -> None:
        self.context.cache.invalidate_all()
        log.info("entity cache cleared", extra={"actor": interaction.user.id})
        await reply(interaction, "🧹 Cache cleared; the next read goes to the sheet.")

    @cache.command(name="refresh", description="Reload every cache bucket from the sheet now")
    @require_tier(PermissionTier.FULL)
    async def cache_refresh(self, interaction: discord.Interaction) -> None:
        await interaction.response.defer(ephemeral=True)
        cache = self.context.cache
        lines = []
        for name in sorted(cache.stats()):
            try:
                value = await cache.refresh_now(name)
            except Exception as exc:
                log.warning("cache refresh failed", extra={"bucket": name}, exc_info=True)
                lines.append(f"❌ `{name}` {exc}")
            else:
                lines.append(f"✅ `{name}` {len(value)} rows")
        await reply(interaction, "\n".join(lines) or "No cache buckets registered.")


async def setup(bot: commands.Bot, context: CrmContext) -> None:
    await bot.add_cog(CrmAdmin(bot, context))
