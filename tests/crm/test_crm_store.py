import asyncio
import datetime as dt

import pytest

from modules.crm.models import Client, Invoice, Job, LineItem, Task
from modules.crm.store import CLIENTS, JOBS


def test_create_client_writes_header_and_row(store, sheets):
    async def runner():
        client = await store.create_client(name="Acme Co", contact_name="Wile", contact_method="email")
        again = await store.create_client(name="Acme Mining")
        return client, again

    client, again = asyncio.run(runner())

    assert client.code == "ACME"
    assert again.code == "ACM1"
    assert len(client.auth_code) == 8
    assert client.auth_code != again.auth_code
    assert sheets["Clients"].values[0] == CLIENTS.headers()
    rows = sheets["Clients"].records()
    assert [r["Code"] for r in rows] == ["ACME", "ACM1"]
    assert rows[0]["ID"] == client.id
    assert rows[0]["Active"] == "yes"


def test_archived_client_frees_its_code(store, seed):
    seed(Client(id="old", code="ACME", name="Acme Old", active="yes", archived=True))

    client = asyncio.run(store.create_client(name="Acme Co"))

    assert client.code == "ACME"


def test_job_ids_are_sequential_per_client(store, seed, acme):
    seed(acme)

    async def runner():
        first = await store.create_job(acme, title="Website")
        second = await store.create_job(acme, title="Logo", priority="high")
        return first, second

    first, second = asyncio.run(runner())

    assert (first.id, second.id) == ("ACME-001", "ACME-002")
    assert first.client_id == "c-acme"
    assert first.status == "open"
    assert second.priority == "high"


def test_lost_id_race_retries_with_next_id(store, sheets, seed, acme):
    seed(acme)
    sheets["Jobs"].values = [JOBS.headers()]
    racer = JOBS.encode(Job(id="ACME-001", client_id="c-acme", client_code="ACME", title="Racer"))

    def concurrent_writer(worksheet):
        worksheet.values.append([racer[h] for h in JOBS.headers()])

    sheets["Jobs"].before_append = concurrent_writer

    job = asyncio.run(store.create_job(acme, title="Website"))

    assert job.id == "ACME-002"
    rows = sheets["Jobs"].records()
    assert [(r["ID"], r["Title"]) for r in rows] == [("ACME-001", "Racer"), ("ACME-002", "Website")]


def test_invoice_total_is_derived_from_line_items(store, sheets, seed, acme):
    seed(acme)

    async def runner():
        invoice = await store.create_invoice(
            acme,
            line_items=[LineItem("Design", 250.0), LineItem("Build", 350.0)],
            due_at=dt.date(2025, 12, 31),
        )
        row = sheets["Invoices"].values[1]
        header = sheets["Invoices"].values[0]
        # a hand-edited total in the sheet is never trusted
        row[header.index("Total")] = "999"
        reread = await store.get_invoice(invoice.id)
        trimmed = await store.update_invoice(invoice.id, line_items=[LineItem("Design", 250.0)])
        return invoice, reread, trimmed

    invoice, reread, trimmed = asyncio.run(runner())

    assert invoice.id == "000001"
    assert invoice.total == 600
    assert reread.total == 600
    assert reread.due_at == dt.date(2025, 12, 31)
    assert trimmed.total == 250
    row = sheets["Invoices"].records()[0]
    assert row["Total"] == "250"
    assert row["Line1_Description"] == "Design"
    assert row["Line2_Description"] == ""


def test_invoice_rejects_more_than_ten_items(store, seed, acme):
    seed(acme)
    items = [LineItem(f"item {n}", 1.0) for n in range(11)]

    with pytest.raises(ValueError):
        asyncio.run(store.create_invoice(acme, line_items=items))


def test_update_preserves_columns_the_store_does_not_model(store, sheets, seed, acme):
    sheets["Clients"].values = [CLIENTS.headers() + ["Owner"]]
    seed(acme)
    sheets["Clients"].values[1][-1] = "Mia"

    updated = asyncio.run(store.update_client("c-acme", notes="vip"))

    assert updated.notes == "vip"
    row = sheets["Clients"].records()[0]
    assert row["Owner"] == "Mia"
    assert row["Notes"] == "vip"
    assert row["Code"] == "ACME"


def test_update_unknown_id_returns_none_and_id_is_immutable(store, seed, acme):
    seed(acme)

    assert asyncio.run(store.update_client("missing", notes="x")) is None
    with pytest.raises(TypeError):
        asyncio.run(store.update_client("c-acme", id="other"))
    with pytest.raises(TypeError):
        asyncio.run(store.update_invoice("000001", total=5))


def test_columns_are_matched_by_header_name(store, sheets):
    sheets["Clients"].values = [
        ["name", "CODE", "Active", "id"],
        ["Acme Co", "ACME", "yes", "c-acme"],
        ["", "", "", ""],
        ["Bolt Ltd", "BOLT", "", "c-bolt"],
    ]

    clients = asyncio.run(store.list_clients(fresh=True))

    assert [(c.id, c.code, c.is_active) for c in clients] == [
        ("c-acme", "ACME", True),
        ("c-bolt", "BOLT", False),
    ]


def test_delete_tasks_removes_only_requested_rows(store, sheets, seed):
    seed(
        Task(id="ACME-001-T1", job_id="ACME-001", title="a"),
        Task(id="ACME-001-T2", job_id="ACME-001", title="b"),
        Task(id="ACME-001-T3", job_id="ACME-001", title="c"),
    )

    removed = asyncio.run(store.delete_tasks(["ACME-001-T1", "ACME-001-T3", "nope"]))

    assert removed == 2
    assert [r["ID"] for r in sheets["Tasks"].records()] == ["ACME-001-T2"]


def test_cached_reads_are_invalidated_by_writes(store, sheets):
    async def runner():
        before = await store.list_clients()
        await store.list_clients()
        reads_while_cached = sheets["Clients"].reads
        await store.create_client(name="Acme Co")
        after = await store.list_clients()
        return before, reads_while_cached, after

    before, reads_while_cached, after = asyncio.run(runner())

    assert before == []
    assert reads_while_cached == 1
    assert [c.code for c in after] == ["ACME"]


def test_snapshot_reads_every_table(store, seed, acme):
    seed(
        acme,
        Job(id="ACME-001", client_id="c-acme", client_code="ACME", title="Website"),
        Task(id="ACME-001-T1", job_id="ACME-001", title="Wireframes"),
        Invoice(id="000001", client_id="c-acme", client_code="ACME"),
    )

    snapshot = asyncio.run(store.snapshot())

    assert [c.id for c in snapshot.clients] == ["c-acme"]
    assert snapshot.job_by_id("ACME-001").title == "Website"
    assert [t.id for t in snapshot.open_tasks()] == ["ACME-001-T1"]
    assert snapshot.invoices[0].total == 0
