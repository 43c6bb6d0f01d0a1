import asyncio

import discord

from modules.crm.channels import ChannelResolver
from modules.crm.naming import CRM_CATEGORY, TASK_BOARD, client_channel

ACME = client_channel("ACME", "Acme Co")


def test_creates_category_and_channel_once(guild):
    resolver = ChannelResolver()

    async def runner():
        first = await resolver.ensure_channel_under(guild, ACME)
        second = await resolver.ensure_channel_under(guild, ACME)
        return first, second

    first, second = asyncio.run(runner())

    assert first is second
    assert [c.name for c in guild.categories] == [CRM_CATEGORY]
    assert first.name == "🪪-acme-acme-co"
    assert first.category_id == guild.categories[0].id
    assert guild.channels_created == 1


def test_concurrent_ensures_create_a_single_channel(guild):
    resolver = ChannelResolver()

    async def runner():
        return await asyncio.gather(*(resolver.ensure_channel_under(guild, ACME) for _ in range(5)))

    channels = asyncio.run(runner())

    assert len({c.id for c in channels}) == 1
    assert len(guild.named(ACME.canonical)) == 1


def test_legacy_channel_is_renamed_and_reparented(guild):
    legacy = guild.add_text_channel("acme-acme-co")
    resolver = ChannelResolver()

    channel = asyncio.run(resolver.ensure_channel_under(guild, ACME))

    assert channel is legacy
    assert channel.name == ACME.canonical
    assert channel.category_id == guild.categories[0].id
    assert guild.channels_created == 0


def test_legacy_category_is_adopted(guild):
    old = guild.add_category("CRM")
    resolver = ChannelResolver()

    category = asyncio.run(resolver.ensure_category(guild))

    assert category is old
    assert old.name == CRM_CATEGORY
    assert len(guild.categories) == 1


def test_canonical_outside_category_is_moved_not_duplicated(guild):
    stray = guild.add_text_channel(TASK_BOARD.canonical)
    resolver = ChannelResolver()

    channel = asyncio.run(resolver.ensure_channel_under(guild, TASK_BOARD))

    assert channel is stray
    assert stray.category is not None
    assert guild.channels_created == 0


def test_rename_failure_still_returns_the_channel(guild, http_error):
    legacy = guild.add_text_channel("📋 | task-board")
    legacy.edit_error = http_error(discord.Forbidden, 403, "Missing Permissions")
    resolver = ChannelResolver()

    channel = asyncio.run(resolver.ensure_channel_under(guild, TASK_BOARD))

    assert channel is legacy
    assert legacy.name == "📋 | task-board"
    assert guild.channels_created == 0


def test_channel_deleted_right_after_creation_is_recreated(guild):
    resolver = ChannelResolver()

    async def runner():
        first = await resolver.ensure_channel_under(guild, ACME)
        await first.delete()
        second = await resolver.ensure_channel_under(guild, ACME)
        return first, second

    first, second = asyncio.run(runner())

    assert second is not first
    assert guild.named(ACME.canonical) == [second]


def test_cleanup_keeps_the_channel_under_the_category(guild):
    resolver = ChannelResolver()
    category = guild.add_category(CRM_CATEGORY)
    outside_old = guild.add_text_channel("acme-acme-co")
    kept = guild.add_text_channel(ACME.canonical, category=category)
    outside_new = guild.add_text_channel(ACME.canonical)

    groups = asyncio.run(resolver.cleanup_duplicates(guild, [ACME, ACME, TASK_BOARD]))

    assert len(groups) == 1
    assert groups[0].kept is kept
    assert {c.id for c in groups[0].removed} == {outside_old.id, outside_new.id}
    assert guild.text_channels == [kept]


def test_cleanup_dry_run_deletes_nothing(guild):
    resolver = ChannelResolver()
    guild.add_text_channel(ACME.canonical)
    guild.add_text_channel(ACME.canonical)

    groups = asyncio.run(resolver.cleanup_duplicates(guild, [ACME], dry_run=True))

    assert len(groups[0].removed) == 1
    assert len(guild.named(ACME.canonical)) == 2


def test_find_channel_prefers_canonical(guild):
    resolver = ChannelResolver()
    guild.add_text_channel("acme-acme-co")
    canonical = guild.add_text_channel(ACME.canonical)

    assert resolver.find_channel(guild, ACME) is canonical
    assert resolver.find_channel(guild, TASK_BOARD) is None
