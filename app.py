from __future__ import annotations

import asyncio
import logging
import os

import discord
from discord.ext import commands

from shared import health as healthmod
from shared.config import (
    get_allowed_guild_ids,
    get_discord_token,
    get_env_name,
    is_guild_allowed,
)
from modules.common.logs import log as human_log
from modules.common.runtime import Runtime

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
log = logging.getLogger("crm.app")

INTENTS = discord.Intents.default()

bot = commands.Bot(command_prefix=commands.when_mentioned, intents=INTENTS)
bot.remove_command("help")

runtime = Runtime(bot)

_startup_done = False


async def _prepare_sheets() -> bool:
    crm = runtime.crm
    try:
        await crm.store.ensure_headers()
        await crm.board_state.ensure_tab()
    except Exception as exc:
        log.exception("sheet preparation failed")
        healthmod.set_component("sheets", False)
        await runtime.send_log_message(f"❌ Sheet preparation failed: {exc}")
        return False
    healthmod.set_component("sheets", True)
    return True


async def _startup_sync(guild: discord.Guild) -> None:
    """Duplicate cleanup, then a full sync, for one guild."""

    crm = runtime.crm
    try:
        groups = await crm.service.repair_channels(guild)
    except Exception:
        log.warning("startup duplicate cleanup failed", extra={"guild_id": guild.id}, exc_info=True)
    else:
        removed = sum(len(group.removed) for group in groups)
        if removed:
            await runtime.send_log_message(
                f"🧹 Duplicate channels purged • guild={guild.name} • removed={removed}"
            )
    try:
        await crm.queue.run_now(guild, "startup")
    except Exception:
        log.exception("startup sync failed", extra={"guild_id": guild.id})


def _log_guild_gating() -> None:
    allowed = sorted(get_allowed_guild_ids())
    connected = [g.id for g in bot.guilds]
    if not allowed:
        log.warning("Guild allow-list empty; syncing every connected guild")
        return
    skipped = [gid for gid in connected if not is_guild_allowed(gid)]
    if skipped:
        log.error("Guilds outside the allow-list are ignored: %s", skipped)
    log.info("Guild allow-list verified", extra={"allowed": allowed, "connected": connected})


@bot.event
async def on_ready():
    global _startup_done
    healthmod.set_component("discord", True)
    log.info("Bot ready as %s | env=%s", bot.user, get_env_name())
    if _startup_done or runtime.crm is None:
        return
    _startup_done = True

    _log_guild_gating()
    try:
        synced = await bot.tree.sync()
    except discord.HTTPException:
        log.exception("slash command sync failed")
    else:
        human_log.human("info", f"slash commands synced • count={len(synced)}")

    if not await _prepare_sheets():
        return
    for guild in runtime.sync_guilds():
        runtime.scheduler.spawn(_startup_sync(guild), name=f"crm_startup_{guild.id}")


@bot.event
async def on_resumed():
    healthmod.set_component("discord", True)


@bot.event
async def on_disconnect():
    healthmod.set_component("discord", False)


@bot.event
async def on_guild_join(guild: discord.Guild):
    if not is_guild_allowed(guild.id):
        log.warning("joined guild outside the allow-list", extra={"guild_id": guild.id})
        return
    if runtime.crm is not None:
        runtime.crm.queue.request(guild, "guild:join")


async def main() -> None:
    token = get_discord_token()
    if not token:
        raise RuntimeError("DISCORD_TOKEN not set")
    try:
        await runtime.start(token)
    finally:
        await runtime.close()


if __name__ == "__main__":
    asyncio.run(main())
