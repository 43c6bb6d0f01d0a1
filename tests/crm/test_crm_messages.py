import asyncio

import discord

from modules.crm.messages import parse_snowflake, pin_quietly, upsert_message


def _embed(text: str) -> discord.Embed:
    return discord.Embed(title="Board", description=text)


def test_parse_snowflake():
    assert parse_snowflake("123") == 123
    assert parse_snowflake(456) == 456
    assert parse_snowflake("") is None
    assert parse_snowflake("abc") is None
    assert parse_snowflake("0") is None


def test_upsert_sends_when_nothing_stored(guild):
    channel = guild.add_text_channel("board")

    message, created = asyncio.run(upsert_message(channel, "", embed=_embed("a")))

    assert created is True
    assert channel.sent == 1
    assert message.embeds[0].description == "a"


def test_upsert_leaves_identical_message_alone(guild):
    channel = guild.add_text_channel("board")

    async def runner():
        first, _ = await upsert_message(channel, None, embed=_embed("a"))
        second, created = await upsert_message(channel, str(first.id), embed=_embed("a"))
        return first, second, created

    first, second, created = asyncio.run(runner())

    assert second is first
    assert created is False
    assert channel.sent == 1
    assert channel.edits == 0


def test_upsert_edits_in_place_when_changed(guild):
    channel = guild.add_text_channel("board")

    async def runner():
        first, _ = await upsert_message(channel, None, embed=_embed("a"))
        second, created = await upsert_message(channel, first.id, embed=_embed("b"))
        return first, second, created

    first, second, created = asyncio.run(runner())

    assert second is first
    assert created is False
    assert channel.edits == 1
    assert first.embeds[0].description == "b"


def test_upsert_replaces_a_deleted_message(guild):
    channel = guild.add_text_channel("board")

    async def runner():
        first, _ = await upsert_message(channel, None, embed=_embed("a"))
        await first.delete()
        second, created = await upsert_message(channel, first.id, embed=_embed("a"))
        return first, second, created

    first, second, created = asyncio.run(runner())

    assert created is True
    assert second.id != first.id
    assert list(channel.messages) == [second.id]


def test_pin_quietly_swallows_http_errors(guild, http_error):
    channel = guild.add_text_channel("board")
    message, _ = asyncio.run(upsert_message(channel, None, embed=_embed("a")))

    async def refuse():
        raise http_error(discord.Forbidden, 403, "Missing Permissions")

    message.pin = refuse
    asyncio.run(pin_quietly(message))

    assert message.pinned is False
