"""Sheets-backed record store for clients, jobs, tasks and invoices.

Every tab is read by header name (case-insensitive), so columns may be
reordered in the spreadsheet. Columns the store does not model are carried
through untouched on update.
"""

from __future__ import annotations

import asyncio
import dataclasses
import datetime as dt
import logging
import re
from dataclasses import dataclass
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Generic,
    Iterable,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    TypeVar,
)

from gspread.utils import rowcol_to_a1

from modules.crm import ids
from modules.crm.dates import parse_iso_date
from modules.crm.models import (
    MAX_LINE_ITEMS,
    Client,
    CrmSnapshot,
    Invoice,
    Job,
    LineItem,
    Task,
)
from shared.sheets import async_core
from shared.sheets.cache_service import CacheService

log = logging.getLogger("crm.store")

E = TypeVar("E")

WorksheetOpener = Callable[[str], Awaitable[Any]]

_TRUE_WORDS = {"yes", "y", "true", "1", "x"}
_NUMBER_RE = re.compile(r"[^\d.\-]")


def _now_iso() -> str:
    return dt.datetime.now(dt.timezone.utc).isoformat(timespec="seconds")


def _decode(kind: str, raw: str) -> Any:
    text = (raw or "").strip()
    if kind == "bool":
        return text.lower() in _TRUE_WORDS
    if kind == "date":
        return parse_iso_date(text)
    if kind == "float":
        cleaned = _NUMBER_RE.sub("", text)
        if not cleaned:
            return None
        try:
            return float(cleaned)
        except ValueError:
            return None
    return text


def _format_number(value: float | None) -> str:
    if value is None:
        return ""
    if float(value).is_integer():
        return str(int(value))
    return f"{value:.2f}"


def _encode(kind: str, value: Any) -> str:
    if kind == "bool":
        return "yes" if value else ""
    if kind == "date":
        return value.isoformat() if isinstance(value, dt.date) else ""
    if kind == "float":
        return _format_number(value)
    return "" if value is None else str(value)


@dataclass(frozen=True, slots=True)
class Column:
    attr: str
    header: str
    kind: str = "str"


@dataclass(frozen=True)
class TableSpec(Generic[E]):
    entity: str
    columns: Tuple[Column, ...]
    factory: Callable[..., E]

    def headers(self) -> List[str]:
        return [column.header for column in self.columns]

    def decode(self, cells: Mapping[str, str]) -> E:
        values = {
            column.attr: _decode(column.kind, cells.get(column.header.casefold(), ""))
            for column in self.columns
        }
        return self.factory(**values)

    def encode(self, entity: E) -> Dict[str, str]:
        return {
            column.header: _encode(column.kind, getattr(entity, column.attr))
            for column in self.columns
        }


class InvoiceTableSpec(TableSpec[Invoice]):
    """Invoices spread up to ten line items over ``LineN_Description``/``LineN_Price``."""

    def headers(self) -> List[str]:
        headers = super().headers()
        for n in range(1, MAX_LINE_ITEMS + 1):
            headers.extend([f"Line{n}_Description", f"Line{n}_Price"])
        return headers

    def decode(self, cells: Mapping[str, str]) -> Invoice:
        invoice = super().decode(cells)
        for n in range(1, MAX_LINE_ITEMS + 1):
            desc = (cells.get(f"line{n}_description", "") or "").strip()
            price = _decode("float", cells.get(f"line{n}_price", ""))
            if desc or price is not None:
                invoice.line_items.append(LineItem(description=desc, price=price or 0.0))
        return invoice

    def encode(self, entity: Invoice) -> Dict[str, str]:
        cells = super().encode(entity)
        # total is derived; whatever the sheet held before is overwritten
        cells["Total"] = _format_number(entity.total)
        for n in range(1, MAX_LINE_ITEMS + 1):
            item = entity.line_items[n - 1] if n <= len(entity.line_items) else None
            cells[f"Line{n}_Description"] = item.description if item else ""
            cells[f"Line{n}_Price"] = _format_number(item.price) if item else ""
        return cells


def _invoice_factory(**values: Any) -> Invoice:
    values.pop("total", None)
    return Invoice(**values)


CLIENTS = TableSpec(
    "clients",
    (
        Column("id", "ID"),
        Column("code", "Code"),
        Column("name", "Name"),
        Column("contact_name", "Contact Name"),
        Column("contact_method", "Contact Method"),
        Column("auth_code", "Auth Code"),
        Column("channel_id", "Channel ID"),
        Column("card_message_id", "Card Message ID"),
        Column("description", "Description"),
        Column("notes", "Notes"),
        Column("active", "Active"),
        Column("archived", "Archived", "bool"),
        Column("created_at", "Created At"),
    ),
    Client,
)

JOBS = TableSpec(
    "jobs",
    (
        Column("id", "ID"),
        Column("client_code", "Client Code"),
        Column("client_id", "Client ID"),
        Column("title", "Title"),
        Column("status", "Status"),
        Column("thread_id", "Thread ID"),
        Column("thread_card_message_id", "Thread Message ID"),
        Column("description", "Description"),
        Column("priority", "Priority"),
        Column("assignee_id", "Assignee ID"),
        Column("deadline", "Deadline", "date"),
        Column("budget", "Budget", "float"),
        Column("notes", "Notes"),
        Column("created_at", "Created At"),
    ),
    Job,
)

TASKS = TableSpec(
    "tasks",
    (
        Column("id", "ID"),
        Column("job_id", "Job ID"),
        Column("title", "Title"),
        Column("description", "Description"),
        Column("status", "Status"),
        Column("assignee_id", "Assignee ID"),
        Column("deadline", "Deadline", "date"),
        Column("priority", "Priority"),
        Column("created_at", "Created At"),
        Column("completed_at", "Completed At"),
    ),
    Task,
)

INVOICES = InvoiceTableSpec(
    "invoices",
    (
        Column("id", "ID"),
        Column("client_code", "Client Code"),
        Column("client_id", "Client ID"),
        Column("job_id", "Job ID"),
        Column("status", "Status"),
        Column("due_at", "Due Date", "date"),
        Column("total", "Total", "float"),
        Column("notes", "Notes"),
        Column("terms", "Terms"),
        Column("issued_at", "Issued At"),
    ),
    _invoice_factory,
)

TABLES: Tuple[TableSpec[Any], ...] = (CLIENTS, JOBS, TASKS, INVOICES)


@dataclass
class _Sheet:
    worksheet: Any
    header: List[str]
    rows: List[Tuple[int, Dict[str, str]]]

    def row_values(self, cells: Mapping[str, str]) -> List[str]:
        return [str(cells.get(h.strip().casefold(), "")) for h in self.header]


class IdCollisionError(RuntimeError):
    pass


class SheetRecordStore:
    """Record store over the four CRM tabs of one spreadsheet.

    Reads used for reconciliation pass ``fresh=True`` and always hit the sheet;
    other reads go through the injected :class:`CacheService`. Every write
    invalidates the table's bucket.
    """

    def __init__(
        self,
        sheet_id: str,
        *,
        cache: CacheService,
        tabs: Mapping[str, str] | None = None,
        worksheet_opener: WorksheetOpener | None = None,
        entity_ttl_sec: float = 300.0,
        invoice_ttl_sec: float = 600.0,
        invoice_number_start: int = 1,
        id_attempts: int = 3,
    ) -> None:
        self._sheet_id = sheet_id
        self._tabs = {spec.entity: spec.entity.capitalize() for spec in TABLES}
        self._tabs.update(tabs or {})
        self._opener = worksheet_opener or self._default_opener
        self._invoice_start = invoice_number_start
        self._id_attempts = max(1, id_attempts)
        self._locks = {spec.entity: asyncio.Lock() for spec in TABLES}
        self.cache = cache
        for spec in TABLES:
            ttl = invoice_ttl_sec if spec is INVOICES else entity_ttl_sec
            cache.register(spec.entity, ttl, self._loader(spec))

    # ------------------------------------------------------------------
    # plumbing
    # ------------------------------------------------------------------

    async def _default_opener(self, tab: str) -> Any:
        return await async_core.aget_worksheet(self._sheet_id, tab)

    def _loader(self, spec: TableSpec[Any]) -> Callable[[], Awaitable[List[Any]]]:
        async def load() -> List[Any]:
            return await self._load_all(spec)

        return load

    async def _read(self, spec: TableSpec[Any]) -> _Sheet:
        worksheet = await self._opener(self._tabs[spec.entity])
        values = await async_core.acall_with_backoff(worksheet.get_all_values)
        if not values:
            return _Sheet(worksheet=worksheet, header=[], rows=[])
        header = [str(cell).strip() for cell in values[0]]
        keys = [cell.casefold() for cell in header]
        rows: List[Tuple[int, Dict[str, str]]] = []
        for row_number, raw in enumerate(values[1:], start=2):
            if not any(str(cell).strip() for cell in raw):
                continue
            cells: Dict[str, str] = {}
            for idx, key in enumerate(keys):
                if key and key not in cells:
                    cells[key] = str(raw[idx]) if idx < len(raw) else ""
            rows.append((row_number, cells))
        return _Sheet(worksheet=worksheet, header=header, rows=rows)

    async def _load_all(self, spec: TableSpec[E]) -> List[E]:
        sheet = await self._read(spec)
        return [spec.decode(cells) for _, cells in sheet.rows]

    async def _ensure_header(self, spec: TableSpec[Any], sheet: _Sheet) -> None:
        if sheet.header:
            return
        sheet.header = spec.headers()
        await async_core.acall_with_backoff(
            sheet.worksheet.append_row, sheet.header, value_input_option="RAW"
        )

    @staticmethod
    def _merge_cells(
        sheet: _Sheet, existing: Mapping[str, str], encoded: Mapping[str, str]
    ) -> Dict[str, str]:
        merged = dict(existing)
        for header, value in encoded.items():
            merged[header.casefold()] = value
        return merged

    async def _write_row(self, sheet: _Sheet, row_number: int, values: Sequence[str]) -> None:
        start = rowcol_to_a1(row_number, 1)
        end = rowcol_to_a1(row_number, max(1, len(values)))
        await async_core.acall_with_backoff(
            sheet.worksheet.update,
            range_name=f"{start}:{end}",
            values=[list(values)],
            value_input_option="RAW",
        )

    async def _list(self, spec: TableSpec[E], fresh: bool) -> List[E]:
        if fresh:
            items = await self._load_all(spec)
            self.cache.prime(spec.entity, items)
            return list(items)
        return list(await self.cache.get(spec.entity))

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------

    async def list_clients(self, *, fresh: bool = False) -> List[Client]:
        return await self._list(CLIENTS, fresh)

    async def list_jobs(self, *, fresh: bool = False) -> List[Job]:
        return await self._list(JOBS, fresh)

    async def list_tasks(self, *, fresh: bool = False) -> List[Task]:
        return await self._list(TASKS, fresh)

    async def list_invoices(self, *, fresh: bool = False) -> List[Invoice]:
        return await self._list(INVOICES, fresh)

    async def snapshot(self, *, fresh: bool = True) -> CrmSnapshot:
        clients, jobs, tasks, invoices = await asyncio.gather(
            self.list_clients(fresh=fresh),
            self.list_jobs(fresh=fresh),
            self.list_tasks(fresh=fresh),
            self.list_invoices(fresh=fresh),
        )
        return CrmSnapshot(clients=clients, jobs=jobs, tasks=tasks, invoices=invoices)

    async def get_client(self, client_id: str) -> Optional[Client]:
        return _find(await self.list_clients(fresh=True), client_id)

    async def get_job(self, job_id: str) -> Optional[Job]:
        return _find(await self.list_jobs(fresh=True), job_id)

    async def get_task(self, task_id: str) -> Optional[Task]:
        return _find(await self.list_tasks(fresh=True), task_id)

    async def get_invoice(self, invoice_id: str) -> Optional[Invoice]:
        return _find(await self.list_invoices(fresh=True), invoice_id)

    # ------------------------------------------------------------------
    # creates
    # ------------------------------------------------------------------

    async def _append_unique(
        self,
        spec: TableSpec[E],
        *,
        key_attr: str,
        allocate: Callable[[List[E]], str],
        build: Callable[[str, List[E]], E],
        counts: Callable[[E], bool] = lambda _entity: True,
    ) -> E:
        """Allocate a key, append the row, then re-read to make sure no other
        writer appended the same key in between; on a lost race our row is
        removed and allocation starts over."""

        key_header = next(c.header for c in spec.columns if c.attr == key_attr).casefold()
        async with self._locks[spec.entity]:
            for attempt in range(1, self._id_attempts + 1):
                sheet = await self._read(spec)
                await self._ensure_header(spec, sheet)
                existing = [spec.decode(cells) for _, cells in sheet.rows]
                key = allocate([e for e in existing if counts(e)])
                entity = build(key, existing)
                row = sheet.row_values({k.casefold(): v for k, v in spec.encode(entity).items()})
                await async_core.acall_with_backoff(
                    sheet.worksheet.append_row, row, value_input_option="RAW"
                )

                check = await self._read(spec)
                matches = [
                    (row_number, cells)
                    for row_number, cells in check.rows
                    if cells.get(key_header, "").strip() == key and counts(spec.decode(cells))
                ]
                if len(matches) <= 1 or check.row_values(matches[0][1]) == row:
                    self.cache.invalidate(spec.entity)
                    return entity

                ours = [n for n, cells in matches[1:] if check.row_values(cells) == row]
                if ours:
                    await async_core.acall_with_backoff(check.worksheet.delete_rows, ours[-1])
                log.warning(
                    "id collision on create; retrying",
                    extra={"entity": spec.entity, "key": key, "attempt": attempt},
                )
            self.cache.invalidate(spec.entity)
        raise IdCollisionError(f"could not allocate a unique {key_attr} for {spec.entity}")

    async def create_client(
        self,
        *,
        name: str,
        contact_name: str = "",
        contact_method: str = "",
        code: str | None = None,
        description: str = "",
        notes: str = "",
        active: str = "yes",
    ) -> Client:
        def allocate(clients: List[Client]) -> str:
            return ids.allocate_client_code(
                name, (c.code for c in clients), requested=code
            )

        def build(new_code: str, existing: List[Client]) -> Client:
            return Client(
                id=ids.new_client_id(),
                code=new_code,
                name=name.strip(),
                contact_name=contact_name.strip(),
                contact_method=contact_method.strip(),
                auth_code=ids.generate_auth_code(c.auth_code for c in existing),
                description=description.strip(),
                notes=notes.strip(),
                active=active,
                created_at=_now_iso(),
            )

        return await self._append_unique(
            CLIENTS,
            key_attr="code",
            allocate=allocate,
            build=build,
            counts=lambda c: not c.archived,
        )

    async def create_job(self, client: Client, **fields: Any) -> Job:
        def allocate(jobs: List[Job]) -> str:
            return ids.next_job_id(client.code, (j.id for j in jobs))

        def build(job_id: str, _existing: List[Job]) -> Job:
            values = {"status": "open", **fields}
            return Job(
                id=job_id,
                client_id=client.id,
                client_code=client.code,
                created_at=_now_iso(),
                **values,
            )

        return await self._append_unique(JOBS, key_attr="id", allocate=allocate, build=build)

    async def create_task(self, job: Job, **fields: Any) -> Task:
        def allocate(tasks: List[Task]) -> str:
            return ids.next_task_id(job.id, (t.id for t in tasks))

        def build(task_id: str, _existing: List[Task]) -> Task:
            values = {"status": "open", **fields}
            return Task(id=task_id, job_id=job.id, created_at=_now_iso(), **values)

        return await self._append_unique(TASKS, key_attr="id", allocate=allocate, build=build)

    async def create_invoice(
        self,
        client: Client,
        job: Optional[Job] = None,
        *,
        line_items: Iterable[LineItem] = (),
        **fields: Any,
    ) -> Invoice:
        items = list(line_items)
        if len(items) > MAX_LINE_ITEMS:
            raise ValueError(f"an invoice holds at most {MAX_LINE_ITEMS} line items")

        def allocate(invoices: List[Invoice]) -> str:
            return ids.next_invoice_id((i.id for i in invoices), start=self._invoice_start)

        def build(invoice_id: str, _existing: List[Invoice]) -> Invoice:
            values = {"status": "draft", **fields}
            return Invoice(
                id=invoice_id,
                client_id=client.id,
                client_code=client.code,
                job_id=job.id if job else "",
                issued_at=_now_iso(),
                line_items=items,
                **values,
            )

        return await self._append_unique(
            INVOICES, key_attr="id", allocate=allocate, build=build
        )

    # ------------------------------------------------------------------
    # updates / deletes
    # ------------------------------------------------------------------

    async def _update(self, spec: TableSpec[E], entity_id: str, fields: Mapping[str, Any]) -> Optional[E]:
        allowed = {c.attr for c in spec.columns} | {"line_items"}
        unknown = set(fields) - allowed
        if "id" in fields or unknown:
            raise TypeError(f"cannot update {sorted(unknown | ({'id'} & set(fields)))} on {spec.entity}")
        if not entity_id:
            return None
        async with self._locks[spec.entity]:
            sheet = await self._read(spec)
            for row_number, cells in sheet.rows:
                if cells.get("id", "").strip() != entity_id:
                    continue
                current = spec.decode(cells)
                updated = dataclasses.replace(current, **fields)
                merged = self._merge_cells(sheet, cells, spec.encode(updated))
                await self._write_row(sheet, row_number, sheet.row_values(merged))
                self.cache.invalidate(spec.entity)
                return updated
        return None

    async def update_client(self, client_id: str, **fields: Any) -> Optional[Client]:
        return await self._update(CLIENTS, client_id, fields)

    async def update_job(self, job_id: str, **fields: Any) -> Optional[Job]:
        return await self._update(JOBS, job_id, fields)

    async def update_task(self, task_id: str, **fields: Any) -> Optional[Task]:
        return await self._update(TASKS, task_id, fields)

    async def update_invoice(self, invoice_id: str, **fields: Any) -> Optional[Invoice]:
        if "total" in fields:
            raise TypeError("invoice total is derived from its line items")
        items = fields.get("line_items")
        if items is not None and len(items) > MAX_LINE_ITEMS:
            raise ValueError(f"an invoice holds at most {MAX_LINE_ITEMS} line items")
        return await self._update(INVOICES, invoice_id, fields)

    async def delete_tasks(self, task_ids: Iterable[str]) -> int:
        wanted = {task_id for task_id in task_ids if task_id}
        if not wanted:
            return 0
        async with self._locks[TASKS.entity]:
            sheet = await self._read(TASKS)
            doomed = [n for n, cells in sheet.rows if cells.get("id", "").strip() in wanted]
            # bottom-up so earlier row numbers stay valid
            for row_number in sorted(doomed, reverse=True):
                await async_core.acall_with_backoff(sheet.worksheet.delete_rows, row_number)
            self.cache.invalidate(TASKS.entity)
        if doomed:
            log.info("tasks deleted", extra={"count": len(doomed)})
        return len(doomed)

    # ------------------------------------------------------------------
    # maintenance
    # ------------------------------------------------------------------

    async def ensure_headers(self) -> Dict[str, str]:
        results: Dict[str, str] = {}
        for spec in TABLES:
            results[spec.entity] = await async_core.aensure_worksheet(
                self._sheet_id, self._tabs[spec.entity], spec.headers()
            )
        return results

    async def client_rows(self) -> List[Tuple[int, Client]]:
        """Clients with their sheet row numbers (repair needs rows without an ID)."""

        sheet = await self._read(CLIENTS)
        return [(n, CLIENTS.decode(cells)) for n, cells in sheet.rows]

    async def rewrite_client_row(self, row_number: int, client: Client) -> None:
        async with self._locks[CLIENTS.entity]:
            sheet = await self._read(CLIENTS)
            existing = dict(next((cells for n, cells in sheet.rows if n == row_number), {}))
            merged = self._merge_cells(sheet, existing, CLIENTS.encode(client))
            await self._write_row(sheet, row_number, sheet.row_values(merged))
            self.cache.invalidate(CLIENTS.entity)


def _find(items: Iterable[E], entity_id: str) -> Optional[E]:
    if not entity_id:
        return None
    for item in items:
        if getattr(item, "id", None) == entity_id:
            return item
    return None


__all__ = [
    "CLIENTS",
    "INVOICES",
    "IdCollisionError",
    "JOBS",
    "TABLES",
    "TASKS",
    "SheetRecordStore",
]
