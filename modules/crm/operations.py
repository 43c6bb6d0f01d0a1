"""Validated CRM mutations behind the slash commands.

Every mutation writes to the record store and then hands the guild to the
sync queue. Creations the user is waiting on (a new client's channel, a new
job's thread) wait for that run; everything else is debounced.
"""

from __future__ import annotations

import dataclasses
import datetime as dt
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import discord

from modules.crm import ids
from modules.crm.boards import BOARDS
from modules.crm.channels import ChannelResolver, DuplicateGroup
from modules.crm.dates import parse_natural_date
from modules.crm.errors import NotFound, ValidationError
from modules.crm.models import (
    INVOICE_STATUSES,
    JOB_STATUSES,
    MAX_LINE_ITEMS,
    PRIORITIES,
    TASK_STATUSES,
    Client,
    Invoice,
    Job,
    LineItem,
    Task,
)
from modules.crm.naming import ChannelName, client_channel
from modules.crm.sync import SyncQueue

log = logging.getLogger("crm.operations")

AUTOCOMPLETE_LIMIT = 25

CLIENT_EDIT_FIELDS = ("name", "code", "contact_name", "contact_method", "description", "notes")
JOB_EDIT_FIELDS = ("title", "status", "description", "priority", "assignee_id", "deadline", "budget", "notes")


def _now_iso() -> str:
    return dt.datetime.now(dt.timezone.utc).isoformat(timespec="seconds")


def _clean(value: Optional[str]) -> str:
    return (value or "").strip()


def _require_text(value: Optional[str], label: str) -> str:
    text = _clean(value)
    if not text:
        raise ValidationError(f"{label} is required")
    return text


def parse_date_input(text: Optional[str], label: str = "date") -> Optional[dt.date]:
    """Blank means "no date"; anything else must parse."""

    raw = _clean(text)
    if not raw:
        return None
    parsed = parse_natural_date(raw)
    if parsed is None:
        raise ValidationError(
            f"couldn't understand {label} {raw!r}; try `2025-12-15`, `Dec 15`, `friday` or `in 2 weeks`"
        )
    return parsed


def _choice(value: Optional[str], allowed: Sequence[str], label: str) -> str:
    text = _clean(value).lower()
    if text not in allowed:
        raise ValidationError(f"{label} must be one of: {', '.join(allowed)}")
    return text


def _optional_choice(value: Optional[str], allowed: Sequence[str], label: str) -> str:
    return _choice(value, allowed, label) if _clean(value) else ""


def _price(value: float | None, label: str = "price") -> float:
    if value is None:
        raise ValidationError(f"{label} is required")
    if value < 0:
        raise ValidationError(f"{label} cannot be negative")
    return round(float(value), 2)


@dataclass
class RepairReport:
    processed: int = 0
    ids_fixed: int = 0
    auth_codes_fixed: int = 0
    links_cleared: int = 0
    errors: List[str] = field(default_factory=list)
    dry_run: bool = False

    @property
    def changed(self) -> int:
        return self.ids_fixed + self.auth_codes_fixed + self.links_cleared


class CrmService:
    def __init__(
        self,
        store,
        queue: SyncQueue,
        resolver: ChannelResolver,
    ) -> None:
        self.store = store
        self.queue = queue
        self.resolver = resolver

    # ------------------------------------------------------------------
    # lookups
    # ------------------------------------------------------------------

    async def resolve_client(self, query: str, *, include_archived: bool = False) -> Client:
        """Match by id, then code, then exact name (all case-insensitive)."""

        needle = _clean(query).casefold()
        if not needle:
            raise ValidationError("client is required")
        clients = [
            c for c in await self.store.list_clients(fresh=True) if include_archived or not c.archived
        ]
        for attr in ("id", "code", "name"):
            for client in clients:
                if _clean(getattr(client, attr)).casefold() == needle:
                    return client
        raise NotFound(f"no client matches {query!r}")

    async def resolve_job(self, job_id: str) -> Job:
        job = await self.store.get_job(_clean(job_id))
        if job is None:
            raise NotFound(f"no job with ID {job_id!r}")
        return job

    async def resolve_task(self, task_id: str) -> Task:
        task = await self.store.get_task(_clean(task_id))
        if task is None:
            raise NotFound(f"no task with ID {task_id!r}")
        return task

    async def resolve_invoice(self, invoice_id: str) -> Invoice:
        invoice = await self.store.get_invoice(_clean(invoice_id))
        if invoice is None:
            raise NotFound(f"no invoice #{invoice_id}")
        return invoice

    # ------------------------------------------------------------------
    # clients and leads
    # ------------------------------------------------------------------

    async def create_client(
        self,
        guild: discord.Guild,
        *,
        name: str,
        contact_name: str = "",
        contact_method: str = "",
        code: Optional[str] = None,
        description: str = "",
        notes: str = "",
        lead: bool = False,
    ) -> Client:
        name = _require_text(name, "name")
        if code is not None and _clean(code) and not ids.normalize_code(code):
            raise ValidationError("code must contain letters or digits")
        client = await self.store.create_client(
            name=name,
            contact_name=_clean(contact_name),
            contact_method=_clean(contact_method),
            code=_clean(code) or None,
            description=_clean(description),
            notes=_clean(notes),
            active="" if lead else "yes",
        )
        log.info(
            "client created",
            extra={"client_id": client.id, "code": client.code, "lead": lead},
        )
        if lead:
            self.queue.request(guild, "lead:create")
            return client
        await self.queue.run_now(guild, "client:create")
        return await self.store.get_client(client.id) or client

    async def edit_client(self, guild: discord.Guild, query: str, **fields: Optional[str]) -> Client:
        client = await self.resolve_client(query)
        changes: Dict[str, str] = {}
        for key, value in fields.items():
            if key not in CLIENT_EDIT_FIELDS:
                raise ValidationError(f"unknown client field {key!r}")
            if value is None:
                continue
            changes[key] = _clean(value)
        if "name" in changes and not changes["name"]:
            raise ValidationError("name cannot be blank")
        if "code" in changes:
            new_code = ids.normalize_code(changes["code"])
            if not new_code:
                raise ValidationError("code must contain letters or digits")
            taken = {
                ids.normalize_code(c.code)
                for c in await self.store.list_clients(fresh=True)
                if not c.archived and c.id != client.id
            }
            if new_code in taken:
                raise ValidationError(f"code {new_code} is already used by another client")
            changes["code"] = new_code
        if not changes:
            raise ValidationError("nothing to change")
        updated = await self.store.update_client(client.id, **changes)
        if updated is None:
            raise NotFound(f"client {client.id} no longer exists")
        if "code" in changes:
            for job in await self.store.list_jobs(fresh=True):
                if job.client_id == client.id and job.client_code != updated.code:
                    await self.store.update_job(job.id, client_code=updated.code)
        self.queue.request(guild, "client:edit")
        return updated

    async def archive_client(self, guild: discord.Guild, query: str) -> Client:
        client = await self.resolve_client(query)
        updated = await self.store.update_client(client.id, archived=True)
        if updated is None:
            raise NotFound(f"client {client.id} no longer exists")
        log.info("client archived", extra={"client_id": client.id, "code": client.code})
        self.queue.request(guild, "client:archive")
        return updated

    async def list_leads(self) -> List[Client]:
        clients = await self.store.list_clients()
        return [c for c in clients if c.is_lead and not c.archived and c.name.strip()]

    async def convert_lead(self, guild: discord.Guild, query: str) -> Client:
        """Promote a lead to an active client and give it a channel right away."""

        lead = await self.resolve_client(query)
        if lead.is_active:
            raise ValidationError(f"{lead.display_name} is already an active client")
        changes: Dict[str, Any] = {"active": "yes"}
        if not lead.auth_code:
            existing = [c.auth_code for c in await self.store.list_clients(fresh=True)]
            changes["auth_code"] = ids.generate_auth_code(existing)
        client = await self.store.update_client(lead.id, **changes)
        if client is None:
            raise NotFound(f"client {lead.id} no longer exists")
        log.info("lead converted", extra={"client_id": client.id, "code": client.code})
        await self.queue.run_now(guild, "lead:convert")
        return await self.store.get_client(client.id) or client

    # ------------------------------------------------------------------
    # jobs
    # ------------------------------------------------------------------

    async def create_job(
        self,
        guild: discord.Guild,
        client_query: str,
        *,
        title: str,
        description: str = "",
        priority: Optional[str] = None,
        deadline: Optional[str] = None,
        budget: Optional[float] = None,
        assignee_id: Optional[int] = None,
    ) -> Job:
        client = await self.resolve_client(client_query)
        if not client.is_active:
            raise ValidationError(f"{client.display_name} is a lead; convert it before adding jobs")
        if budget is not None and budget < 0:
            raise ValidationError("budget cannot be negative")
        job = await self.store.create_job(
            client,
            title=_require_text(title, "title"),
            description=_clean(description),
            priority=_optional_choice(priority, PRIORITIES, "priority"),
            deadline=parse_date_input(deadline, "deadline"),
            budget=budget,
            assignee_id=str(assignee_id) if assignee_id else "",
        )
        log.info("job created", extra={"job_id": job.id, "client_id": client.id})
        await self.queue.run_now(guild, "job:create")
        return await self.store.get_job(job.id) or job

    async def edit_job(self, guild: discord.Guild, job_id: str, **fields: Any) -> Job:
        job = await self.resolve_job(job_id)
        changes: Dict[str, Any] = {}
        for key, value in fields.items():
            if key not in JOB_EDIT_FIELDS:
                raise ValidationError(f"unknown job field {key!r}")
            if value is None:
                continue
            if key == "title":
                changes[key] = _require_text(value, "title")
            elif key == "status":
                changes[key] = _choice(value, JOB_STATUSES, "status")
            elif key == "priority":
                changes[key] = _optional_choice(value, PRIORITIES, "priority")
            elif key == "deadline":
                changes[key] = parse_date_input(value, "deadline")
            elif key == "budget":
                if value < 0:
                    raise ValidationError("budget cannot be negative")
                changes[key] = float(value)
            elif key == "assignee_id":
                changes[key] = str(value) if value else ""
            else:
                changes[key] = _clean(value)
        if not changes:
            raise ValidationError("nothing to change")
        updated = await self.store.update_job(job.id, **changes)
        if updated is None:
            raise NotFound(f"job {job.id} no longer exists")
        self.queue.request(guild, "job:edit")
        return updated

    async def complete_job(self, guild: discord.Guild, job_id: str) -> Tuple[Job, int]:
        """Mark the job completed; returns it with the number of tasks the next GC pass removes."""

        job = await self.resolve_job(job_id)
        if not job.is_open:
            raise ValidationError(f"job {job.id} is already {job.status}")
        updated = await self.store.update_job(job.id, status="completed")
        if updated is None:
            raise NotFound(f"job {job.id} no longer exists")
        pending = [t for t in await self.store.list_tasks(fresh=True) if t.job_id == job.id]
        log.info("job completed", extra={"job_id": job.id, "tasks": len(pending)})
        self.queue.request(guild, "job:complete")
        return updated, len(pending)

    # ------------------------------------------------------------------
    # tasks
    # ------------------------------------------------------------------

    async def add_task(
        self,
        guild: discord.Guild,
        job_id: str,
        *,
        title: str,
        description: str = "",
        deadline: Optional[str] = None,
        priority: Optional[str] = None,
        assignee_id: Optional[int] = None,
    ) -> Task:
        job = await self.resolve_job(job_id)
        if not job.is_open:
            raise ValidationError(f"job {job.id} is {job.status}; reopen it before adding tasks")
        task = await self.store.create_task(
            job,
            title=_require_text(title, "title"),
            description=_clean(description),
            deadline=parse_date_input(deadline, "deadline"),
            priority=_optional_choice(priority, PRIORITIES, "priority"),
            assignee_id=str(assignee_id) if assignee_id else "",
        )
        self.queue.request(guild, "task:add")
        return task

    async def _update_task(self, guild: discord.Guild, task: Task, trigger: str, **changes: Any) -> Task:
        updated = await self.store.update_task(task.id, **changes)
        if updated is None:
            raise NotFound(f"task {task.id} no longer exists")
        self.queue.request(guild, trigger)
        return updated

    async def set_task_status(
        self,
        guild: discord.Guild,
        task_id: str,
        status: str,
        *,
        actor_id: Optional[int] = None,
    ) -> Task:
        """``actor_id`` restricts the change to tasks assigned to that user."""

        task = await self.resolve_task(task_id)
        if actor_id is not None and task.assignee_id != str(actor_id):
            raise ValidationError("you can only update tasks assigned to you")
        new_status = _choice(status, TASK_STATUSES, "status")
        completed_at = _now_iso() if new_status == "completed" else ""
        return await self._update_task(
            guild, task, f"task:{new_status}", status=new_status, completed_at=completed_at
        )

    async def assign_task(self, guild: discord.Guild, task_id: str, user_id: Optional[int]) -> Task:
        task = await self.resolve_task(task_id)
        return await self._update_task(
            guild, task, "task:assign", assignee_id=str(user_id) if user_id else ""
        )

    async def set_task_deadline(self, guild: discord.Guild, task_id: str, when: Optional[str]) -> Task:
        task = await self.resolve_task(task_id)
        return await self._update_task(
            guild, task, "task:deadline", deadline=parse_date_input(when, "deadline")
        )

    async def list_tasks(
        self,
        *,
        job_id: Optional[str] = None,
        assignee_id: Optional[int] = None,
    ) -> List[Task]:
        tasks = [t for t in await self.store.list_tasks() if t.is_open]
        if job_id:
            tasks = [t for t in tasks if t.job_id == _clean(job_id)]
        if assignee_id is not None:
            tasks = [t for t in tasks if t.assignee_id == str(assignee_id)]
        return tasks

    # ------------------------------------------------------------------
    # invoices
    # ------------------------------------------------------------------

    async def create_invoice(
        self,
        guild: discord.Guild,
        client_query: str,
        job_id: Optional[str],
        *,
        due: Optional[str] = None,
        notes: str = "",
        terms: str = "",
    ) -> Invoice:
        client = await self.resolve_client(client_query)
        job = None
        if _clean(job_id):
            job = await self.resolve_job(job_id or "")
            if job.client_id != client.id:
                raise ValidationError(f"job {job.id} does not belong to {client.display_name}")
        invoice = await self.store.create_invoice(
            client,
            job,
            due_at=parse_date_input(due, "due date"),
            notes=_clean(notes),
            terms=_clean(terms),
        )
        log.info("invoice created", extra={"invoice_id": invoice.id, "client_id": client.id})
        self.queue.request(guild, "invoice:create")
        return invoice

    async def add_invoice_item(
        self, guild: discord.Guild, invoice_id: str, description: str, price: float
    ) -> Invoice:
        invoice = await self.resolve_invoice(invoice_id)
        if len(invoice.line_items) >= MAX_LINE_ITEMS:
            raise ValidationError(f"invoice #{invoice.id} already has {MAX_LINE_ITEMS} line items")
        items = list(invoice.line_items)
        items.append(LineItem(description=_require_text(description, "description"), price=_price(price)))
        return await self._set_items(guild, invoice, items)

    async def remove_invoice_item(self, guild: discord.Guild, invoice_id: str, index: int) -> Invoice:
        """``index`` is 1-based, as shown to users."""

        invoice = await self.resolve_invoice(invoice_id)
        if not 1 <= index <= len(invoice.line_items):
            raise ValidationError(
                f"invoice #{invoice.id} has {len(invoice.line_items)} line items; pick 1-{len(invoice.line_items)}"
                if invoice.line_items
                else f"invoice #{invoice.id} has no line items"
            )
        items = list(invoice.line_items)
        del items[index - 1]
        return await self._set_items(guild, invoice, items)

    async def _set_items(self, guild: discord.Guild, invoice: Invoice, items: List[LineItem]) -> Invoice:
        updated = await self.store.update_invoice(invoice.id, line_items=items)
        if updated is None:
            raise NotFound(f"invoice #{invoice.id} no longer exists")
        self.queue.request(guild, "invoice:items")
        return updated

    async def set_invoice_status(self, guild: discord.Guild, invoice_id: str, status: str) -> Invoice:
        invoice = await self.resolve_invoice(invoice_id)
        updated = await self.store.update_invoice(
            invoice.id, status=_choice(status, INVOICE_STATUSES, "status")
        )
        if updated is None:
            raise NotFound(f"invoice #{invoice.id} no longer exists")
        self.queue.request(guild, "invoice:status")
        return updated

    # ------------------------------------------------------------------
    # repair
    # ------------------------------------------------------------------

    async def repair_clients(self, *, dry_run: bool = False) -> RepairReport:
        """Fill missing ids and auth codes; clear half-set channel/card pairs."""

        report = RepairReport(dry_run=dry_run)
        rows = await self.store.client_rows()
        report.processed = len(rows)
        auth_codes = {c.auth_code for _, c in rows if c.auth_code}
        for row_number, client in rows:
            changes: Dict[str, Any] = {}
            if not client.id:
                changes["id"] = ids.new_client_id()
                report.ids_fixed += 1
            if not client.auth_code:
                code = ids.generate_auth_code(auth_codes)
                auth_codes.add(code)
                changes["auth_code"] = code
                report.auth_codes_fixed += 1
            if client.card_message_id and not client.channel_id:
                # a card id without its channel can never be fetched again
                changes["card_message_id"] = ""
                report.links_cleared += 1
            if not changes or dry_run:
                continue
            try:
                await self.store.rewrite_client_row(row_number, dataclasses.replace(client, **changes))
            except Exception as exc:
                log.warning("client repair failed", extra={"row": row_number}, exc_info=True)
                report.errors.append(f"row {row_number} ({client.name or '?'}): {exc}")
        if report.changed and not dry_run:
            log.info(
                "clients repaired",
                extra={
                    "ids": report.ids_fixed,
                    "auth_codes": report.auth_codes_fixed,
                    "links": report.links_cleared,
                },
            )
        return report

    async def channel_names(self) -> List[ChannelName]:
        names = [spec.channel for spec in BOARDS]
        for client in await self.store.list_clients(fresh=True):
            if client.is_active and not client.archived and client.name:
                names.append(client_channel(client.code, client.name))
        return names

    async def repair_channels(
        self, guild: discord.Guild, *, dry_run: bool = False
    ) -> List[DuplicateGroup]:
        groups = await self.resolver.cleanup_duplicates(
            guild, await self.channel_names(), dry_run=dry_run
        )
        if groups and not dry_run:
            self.queue.request(guild, "repair:channels")
        return groups

    # ------------------------------------------------------------------
    # autocomplete
    # ------------------------------------------------------------------

    async def suggest_clients(self, current: str, *, leads: bool = False) -> List[Tuple[str, str]]:
        needle = _clean(current).casefold()
        out = []
        for client in await self.store.list_clients():
            if client.archived or not client.id or client.is_lead != leads:
                continue
            label = f"{client.code} — {client.name}"
            if needle and needle not in label.casefold():
                continue
            out.append((label[:100], client.id))
            if len(out) >= AUTOCOMPLETE_LIMIT:
                break
        return out

    async def suggest_jobs(self, current: str, *, open_only: bool = True) -> List[Tuple[str, str]]:
        needle = _clean(current).casefold()
        out = []
        for job in await self.store.list_jobs():
            if open_only and not job.is_open:
                continue
            label = f"{job.id} — {job.title}"
            if needle and needle not in label.casefold():
                continue
            out.append((label[:100], job.id))
            if len(out) >= AUTOCOMPLETE_LIMIT:
                break
        return out

    async def suggest_tasks(
        self, current: str, *, assignee_id: Optional[int] = None, open_only: bool = False
    ) -> List[Tuple[str, str]]:
        needle = _clean(current).casefold()
        out = []
        for task in await self.store.list_tasks():
            if open_only and not task.is_open:
                continue
            if assignee_id is not None and task.assignee_id != str(assignee_id):
                continue
            label = f"{task.id} — {task.title} ({task.status})"
            if needle and needle not in label.casefold():
                continue
            out.append((label[:100], task.id))
            if len(out) >= AUTOCOMPLETE_LIMIT:
                break
        return out

    async def suggest_invoices(self, current: str) -> List[Tuple[str, str]]:
        needle = _clean(current).casefold()
        out = []
        for invoice in await self.store.list_invoices():
            label = f"#{invoice.id} — {invoice.client_code} ({invoice.status}, ${invoice.total:,.2f})"
            if needle and needle not in label.casefold():
                continue
            out.append((label[:100], invoice.id))
            if len(out) >= AUTOCOMPLETE_LIMIT:
                break
        return out


__all__ = ["CrmService", "RepairReport", "parse_date_input"]
