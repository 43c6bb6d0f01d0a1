import asyncio

import discord
import pytest

from modules.crm.errors import ValidationError
from modules.crm.models import Client, Job
from modules.crm.naming import client_channel

CANONICAL = client_channel("ACME", "Acme Co").canonical


def _state(guild, sheets):
    return (
        sorted(c.id for c in guild.text_channels),
        sorted(guild.threads),
        guild.message_count(),
        [list(r) for r in sheets["Clients"].values],
        [list(r) for r in sheets["Jobs"].values],
    )


def test_client_card_creates_channel_thread_and_card(crm, guild, sheets, seed, acme):
    seed(acme, Job(id="ACME-001", client_id="c-acme", client_code="ACME", title="Website"))

    async def runner():
        client = await crm.store.get_client("c-acme")
        return await crm.client_cards.ensure_client_card(guild, client)

    card = asyncio.run(runner())

    (channel,) = guild.named(CANONICAL)
    (thread,) = guild.threads.values()
    assert thread.parent_id == channel.id
    assert thread.name == "ACME-001 — Website"
    assert card.channel is channel
    assert f"/{thread.id})" in card.embeds[0].description
    row = sheets["Clients"].records()[0]
    assert row["Channel ID"] == str(channel.id)
    assert row["Card Message ID"] == str(card.id)
    job_row = sheets["Jobs"].records()[0]
    assert job_row["Thread ID"] == str(thread.id)
    # the "started a thread" notice is cleaned up
    assert all(m.type is not discord.MessageType.thread_created for m in channel.messages.values())


def test_repeated_runs_change_nothing(crm, guild, sheets, seed, acme):
    seed(acme, Job(id="ACME-001", client_id="c-acme", client_code="ACME", title="Website"))

    async def once():
        client = await crm.store.get_client("c-acme")
        await crm.client_cards.ensure_client_card(guild, client)

    async def runner():
        await once()
        after_one = _state(guild, sheets)
        edits = guild.edit_count()
        for _ in range(4):
            await once()
        return after_one, edits

    after_one, edits = asyncio.run(runner())

    assert _state(guild, sheets) == after_one
    assert guild.edit_count() == edits


def test_deleted_channel_heals_on_next_run(crm, guild, sheets, seed, acme):
    seed(acme, Job(id="ACME-001", client_id="c-acme", client_code="ACME", title="Website"))

    async def runner():
        client = await crm.store.get_client("c-acme")
        await crm.client_cards.ensure_client_card(guild, client)
        (old,) = guild.named(CANONICAL)
        await old.delete()
        client = await crm.store.get_client("c-acme")
        card = await crm.client_cards.ensure_client_card(guild, client)
        return old, card

    old, card = asyncio.run(runner())

    (channel,) = guild.named(CANONICAL)
    assert channel.id != old.id
    assert card.channel is channel
    row = sheets["Clients"].records()[0]
    assert row["Channel ID"] == str(channel.id)
    assert row["Card Message ID"] == str(card.id)
    (thread,) = guild.threads.values()
    assert thread.parent_id == channel.id
    assert sheets["Jobs"].records()[0]["Thread ID"] == str(thread.id)


def test_deleted_card_is_reposted_in_same_channel(crm, guild, sheets, seed, acme):
    seed(acme)

    async def runner():
        client = await crm.store.get_client("c-acme")
        first = await crm.client_cards.ensure_client_card(guild, client)
        await first.delete()
        client = await crm.store.get_client("c-acme")
        second = await crm.client_cards.ensure_client_card(guild, client)
        return first, second

    first, second = asyncio.run(runner())

    assert second.id != first.id
    assert second.channel is first.channel
    assert sheets["Clients"].records()[0]["Card Message ID"] == str(second.id)


def test_legacy_channel_is_adopted_without_a_duplicate(crm, guild, seed, acme):
    legacy = guild.add_text_channel("acme-acme-co")
    seed(acme)

    async def runner():
        client = await crm.store.get_client("c-acme")
        return await crm.client_cards.ensure_client_card(guild, client)

    card = asyncio.run(runner())

    assert card.channel is legacy
    assert legacy.name == CANONICAL
    assert guild.channels_created == 0
    assert len(guild.text_channels) == 1


def test_stored_channel_id_wins_over_names(crm, guild, seed, acme):
    renamed = guild.add_text_channel("someone-renamed-this")
    decoy = guild.add_text_channel(CANONICAL)
    acme.channel_id = str(renamed.id)
    seed(acme)

    async def runner():
        client = await crm.store.get_client("c-acme")
        return await crm.client_cards.ensure_client_card(guild, client)

    card = asyncio.run(runner())

    assert card.channel is renamed
    assert renamed.name == CANONICAL
    assert decoy.messages == {}


def test_client_without_id_is_rejected(crm, guild):
    client = Client(id="", code="ACME", name="Acme Co", active="yes")

    with pytest.raises(ValidationError):
        asyncio.run(crm.client_cards.ensure_client_card(guild, client))


def test_card_send_failure_is_not_persisted(crm, guild, sheets, seed, acme, http_error):
    channel = guild.add_text_channel(CANONICAL)
    channel.send_error = http_error(discord.HTTPException, 500, "boom")
    seed(acme)

    async def runner():
        client = await crm.store.get_client("c-acme")
        return await crm.client_cards.ensure_client_card(guild, client)

    assert asyncio.run(runner()) is None
    row = sheets["Clients"].records()[0]
    assert row["Channel ID"] == ""
    assert row["Card Message ID"] == ""


def test_concurrent_calls_for_one_client_post_a_single_card(crm, guild, sheets, seed, acme):
    seed(acme)

    async def runner():
        first = await crm.store.get_client("c-acme")
        second = await crm.store.get_client("c-acme")
        return await asyncio.gather(
            crm.client_cards.ensure_client_card(guild, first),
            crm.client_cards.ensure_client_card(guild, second),
        )

    one, two = asyncio.run(runner())

    (channel,) = guild.named(CANONICAL)
    assert one.id == two.id
    assert list(channel.messages) == [one.id]
    assert sheets["Clients"].records()[0]["Card Message ID"] == str(one.id)
