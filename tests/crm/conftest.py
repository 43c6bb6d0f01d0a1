"""In-memory Discord guild and worksheet doubles for the CRM tests."""

from __future__ import annotations

import datetime as dt
import itertools
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import discord
import pytest
from gspread.utils import a1_to_rowcol

from modules.crm.board_state import state_key
from modules.crm.boards import BoardReconciler
from modules.crm.channels import ChannelResolver
from modules.crm.client_cards import ClientCardReconciler
from modules.crm.context import CrmContext
from modules.crm.job_threads import JobThreadReconciler
from modules.crm.models import Client, Invoice, Job, Task
from modules.crm.operations import CrmService
from modules.crm.store import CLIENTS, INVOICES, JOBS, TASKS, SheetRecordStore
from modules.crm.sync import SyncOrchestrator, SyncQueue
from shared.sheets.cache_service import CacheService

TODAY = dt.date(2025, 12, 1)  # a Monday

_snowflakes = itertools.count(100_000)


def _snowflake() -> int:
    return next(_snowflakes)


def make_http_error(cls=discord.NotFound, status: int = 404, text: str = "gone"):
    return cls(SimpleNamespace(status=status, reason=text), text)


# ---------------------------------------------------------------------------
# discord
# ---------------------------------------------------------------------------


class FakeMessage:
    def __init__(self, channel, *, content=None, embed=None, type=discord.MessageType.default, reference=None):
        self.id = _snowflake()
        self.channel = channel
        self.content = content or ""
        self.embeds = [embed] if embed is not None else []
        self.type = type
        self.reference = reference
        self.pinned = False

    async def edit(self, *, content=None, embed=None):
        if self.id not in self.channel.messages:
            raise make_http_error()
        self.content = content or ""
        if embed is not None:
            self.embeds = [embed]
        self.channel.edits += 1
        return self

    async def pin(self):
        self.pinned = True

    async def delete(self):
        self.channel.messages.pop(self.id, None)


class _Messageable:
    def __init__(self) -> None:
        self.messages: Dict[int, FakeMessage] = {}
        self.sent = 0
        self.edits = 0
        self.send_error: Optional[Exception] = None

    async def send(self, content=None, *, embed=None):
        if self.send_error is not None:
            raise self.send_error
        message = FakeMessage(self, content=content, embed=embed)
        self.messages[message.id] = message
        self.sent += 1
        return message

    async def fetch_message(self, message_id):
        try:
            return self.messages[message_id]
        except KeyError:
            raise make_http_error() from None

    async def history(self, limit=100):
        for message in list(reversed(list(self.messages.values())))[:limit]:
            yield message

    def pinned_messages(self) -> List[FakeMessage]:
        return [m for m in self.messages.values() if m.pinned]


class FakeCategory:
    type = discord.ChannelType.category

    def __init__(self, guild, name: str) -> None:
        self.id = _snowflake()
        self.guild = guild
        self.name = name

    async def edit(self, *, name=None):
        if name is not None:
            self.name = name


class FakeThread(_Messageable):
    type = discord.ChannelType.public_thread

    def __init__(self, parent, name: str) -> None:
        super().__init__()
        self.id = _snowflake()
        self.guild = parent.guild
        self.parent_id = parent.id
        self.name = name
        self.archived = False

    async def edit(self, **changes):
        for key, value in changes.items():
            setattr(self, key, value)


class FakeTextChannel(_Messageable):
    type = discord.ChannelType.text

    def __init__(self, guild, name: str, category: Optional[FakeCategory] = None) -> None:
        super().__init__()
        self.id = _snowflake()
        self.guild = guild
        self.name = name
        self.category = category
        self.edit_error: Optional[Exception] = None
        self.threads_created = 0

    @property
    def category_id(self):
        return self.category.id if self.category is not None else None

    async def edit(self, *, name=None, category=None):
        if self.edit_error is not None:
            raise self.edit_error
        if name is not None:
            self.name = name
        if category is not None:
            self.category = category

    async def delete(self, *, reason=None):
        self.guild.remove(self)

    async def create_thread(self, *, name, type=None, auto_archive_duration=None):
        thread = FakeThread(self, name)
        self.guild.threads[thread.id] = thread
        self.threads_created += 1
        notice = FakeMessage(
            self,
            content=name,
            type=discord.MessageType.thread_created,
            reference=SimpleNamespace(channel_id=thread.id),
        )
        self.messages[notice.id] = notice
        return thread


class FakeGuild:
    def __init__(self, guild_id: int = 4242, name: str = "Studio") -> None:
        self.id = guild_id
        self.name = name
        self.channels: List[Any] = []
        self.threads: Dict[int, FakeThread] = {}
        self.channels_created = 0
        self.create_error: Optional[Exception] = None

    @property
    def categories(self) -> List[FakeCategory]:
        return [c for c in self.channels if isinstance(c, FakeCategory)]

    @property
    def text_channels(self) -> List[FakeTextChannel]:
        return [c for c in self.channels if isinstance(c, FakeTextChannel)]

    def get_channel(self, channel_id):
        for channel in self.channels:
            if channel.id == channel_id:
                return channel
        return None

    def get_thread(self, thread_id):
        return self.threads.get(thread_id)

    async def fetch_channel(self, channel_id):
        found = self.get_channel(channel_id) or self.get_thread(channel_id)
        if found is None:
            raise make_http_error()
        return found

    async def create_category(self, name):
        return self.add_category(name)

    async def create_text_channel(self, name, *, category=None):
        if self.create_error is not None:
            raise self.create_error
        self.channels_created += 1
        return self.add_text_channel(name, category=category)

    # seeding helpers -------------------------------------------------

    def add_category(self, name: str) -> FakeCategory:
        category = FakeCategory(self, name)
        self.channels.append(category)
        return category

    def add_text_channel(self, name: str, *, category: Optional[FakeCategory] = None) -> FakeTextChannel:
        channel = FakeTextChannel(self, name, category)
        self.channels.append(channel)
        return channel

    def remove(self, channel) -> None:
        self.channels = [c for c in self.channels if c is not channel]
        for thread_id in [t.id for t in self.threads.values() if t.parent_id == channel.id]:
            self.threads.pop(thread_id)

    def named(self, name: str) -> List[FakeTextChannel]:
        return [c for c in self.text_channels if c.name == name]

    def message_count(self) -> int:
        holders = [*self.text_channels, *self.threads.values()]
        return sum(len(h.messages) for h in holders)

    def edit_count(self) -> int:
        holders = [*self.text_channels, *self.threads.values()]
        return sum(h.edits for h in holders)


# ---------------------------------------------------------------------------
# sheets
# ---------------------------------------------------------------------------


class FakeWorksheet:
    """Just enough of ``gspread.Worksheet`` for the record store."""

    def __init__(self, title: str, values=None) -> None:
        self.title = title
        self.values: List[List[str]] = [list(row) for row in values or []]
        self.before_append = None
        self.appends = 0
        self.reads = 0

    def get_all_values(self):
        self.reads += 1
        return [list(row) for row in self.values]

    def append_row(self, row, value_input_option=None):
        hook, self.before_append = self.before_append, None
        if hook is not None:
            hook(self)
        self.values.append([str(cell) for cell in row])
        self.appends += 1

    def update(self, range_name=None, values=None, value_input_option=None):
        row, _col = a1_to_rowcol(range_name.split(":")[0])
        while len(self.values) < row:
            self.values.append([])
        new = [str(cell) for cell in values[0]]
        current = self.values[row - 1]
        self.values[row - 1] = new + current[len(new):]

    def delete_rows(self, index):
        del self.values[index - 1]

    def records(self) -> List[Dict[str, str]]:
        if not self.values:
            return []
        header = self.values[0]
        out = []
        for row in self.values[1:]:
            if not any(str(cell).strip() for cell in row):
                continue
            padded = row + [""] * (len(header) - len(row))
            out.append(dict(zip(header, padded)))
        return out


class FakeBoardState:
    def __init__(self) -> None:
        self.values: Dict[str, int] = {}
        self.writes = 0

    async def ensure_tab(self) -> str:
        return "exists"

    async def get(self, guild_id, board):
        return self.values.get(state_key(guild_id, board))

    async def set(self, guild_id, board, message_id):
        self.values[state_key(guild_id, board)] = int(message_id)
        self.writes += 1

    async def clear(self, guild_id, board):
        self.values.pop(state_key(guild_id, board), None)


_SPECS = {
    Client: (CLIENTS, "Clients"),
    Job: (JOBS, "Jobs"),
    Task: (TASKS, "Tasks"),
    Invoice: (INVOICES, "Invoices"),
}


# ---------------------------------------------------------------------------
# fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def http_error():
    return make_http_error


@pytest.fixture
def today():
    return TODAY


@pytest.fixture
def guild():
    return FakeGuild()


@pytest.fixture
def sheets():
    return {tab: FakeWorksheet(tab) for tab in ("Clients", "Jobs", "Tasks", "Invoices")}


@pytest.fixture
def seed(sheets):
    """Write entities straight into the fake tabs, headers included."""

    def _seed(*entities):
        for entity in entities:
            spec, tab = _SPECS[type(entity)]
            worksheet = sheets[tab]
            if not worksheet.values:
                worksheet.values.append(spec.headers())
            encoded = spec.encode(entity)
            worksheet.values.append([encoded.get(h, "") for h in worksheet.values[0]])
        return entities

    return _seed


@pytest.fixture
def store(sheets):
    async def opener(tab):
        return sheets[tab]

    return SheetRecordStore("test-sheet", cache=CacheService(), worksheet_opener=opener)


@pytest.fixture
def board_state():
    return FakeBoardState()


@pytest.fixture
def crm(store, board_state):
    resolver = ChannelResolver()
    job_threads = JobThreadReconciler(store)
    client_cards = ClientCardReconciler(store, resolver, job_threads)
    boards = BoardReconciler(
        store,
        resolver,
        board_state,
        client_cards,
        job_threads,
        settle_delay=0,
        today=lambda: TODAY,
    )
    orchestrator = SyncOrchestrator(store, client_cards, job_threads, boards)
    queue = SyncQueue(orchestrator, debounce_sec=0)
    service = CrmService(store, queue, resolver)
    return CrmContext(
        cache=store.cache,
        store=store,
        board_state=board_state,
        resolver=resolver,
        job_threads=job_threads,
        client_cards=client_cards,
        boards=boards,
        orchestrator=orchestrator,
        queue=queue,
        service=service,
    )


@pytest.fixture
def acme():
    return Client(
        id="c-acme",
        code="ACME",
        name="Acme Co",
        contact_name="Wile",
        contact_method="email",
        auth_code="Ab12Cd34",
        active="yes",
    )
