"""Entity types for the CRM record store."""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from typing import Optional, Sequence

JOB_STATUSES = (
    "lead",
    "open",
    "contracted",
    "in-progress",
    "pending",
    "completed",
    "closed",
)
CLOSED_JOB_STATUSES = frozenset({"completed", "closed"})

TASK_STATUSES = ("open", "in-progress", "completed")
INVOICE_STATUSES = ("draft", "sent", "paid", "overdue", "cancelled")
UNPAID_INVOICE_STATUSES = frozenset({"draft", "sent", "overdue"})
PRIORITIES = ("low", "medium", "high", "urgent")

MAX_LINE_ITEMS = 10


def _norm(value: str | None) -> str:
    return (value or "").strip().lower()


@dataclass(slots=True)
class Client:
    id: str
    code: str
    name: str
    contact_name: str = ""
    contact_method: str = ""
    auth_code: str = ""
    channel_id: str = ""
    card_message_id: str = ""
    description: str = ""
    notes: str = ""
    active: str = ""
    archived: bool = False
    created_at: str = ""

    @property
    def is_active(self) -> bool:
        return _norm(self.active) == "yes"

    @property
    def is_lead(self) -> bool:
        return not self.is_active

    @property
    def display_name(self) -> str:
        return self.name or self.code or self.id


@dataclass(slots=True)
class Job:
    id: str
    client_id: str
    client_code: str = ""
    title: str = ""
    status: str = "open"
    thread_id: str = ""
    thread_card_message_id: str = ""
    description: str = ""
    priority: str = ""
    assignee_id: str = ""
    deadline: Optional[dt.date] = None
    budget: Optional[float] = None
    notes: str = ""
    created_at: str = ""

    @property
    def is_open(self) -> bool:
        return _norm(self.status) not in CLOSED_JOB_STATUSES


@dataclass(slots=True)
class Task:
    id: str
    job_id: str
    title: str = ""
    description: str = ""
    status: str = "open"
    assignee_id: str = ""
    deadline: Optional[dt.date] = None
    priority: str = ""
    created_at: str = ""
    completed_at: str = ""

    @property
    def is_open(self) -> bool:
        return _norm(self.status) != "completed"


@dataclass(slots=True)
class LineItem:
    description: str
    price: float


@dataclass(slots=True)
class Invoice:
    id: str
    client_id: str
    job_id: str = ""
    client_code: str = ""
    status: str = "draft"
    due_at: Optional[dt.date] = None
    notes: str = ""
    terms: str = ""
    issued_at: str = ""
    line_items: list[LineItem] = field(default_factory=list)

    @property
    def total(self) -> float:
        return round(sum(item.price for item in self.line_items), 2)

    @property
    def is_unpaid(self) -> bool:
        return _norm(self.status) in UNPAID_INVOICE_STATUSES


@dataclass(slots=True)
class CrmSnapshot:
    """One consistent read of every table, used to render boards."""

    clients: Sequence[Client] = ()
    jobs: Sequence[Job] = ()
    tasks: Sequence[Task] = ()
    invoices: Sequence[Invoice] = ()

    def client_by_id(self, client_id: str) -> Optional[Client]:
        for client in self.clients:
            if client.id == client_id:
                return client
        return None

    def job_by_id(self, job_id: str) -> Optional[Job]:
        for job in self.jobs:
            if job.id == job_id:
                return job
        return None

    def active_clients(self) -> list[Client]:
        return [c for c in self.clients if c.is_active and not c.archived]

    def leads(self) -> list[Client]:
        return [c for c in self.clients if c.is_lead and not c.archived and c.name.strip()]

    def open_jobs(self) -> list[Job]:
        return [j for j in self.jobs if j.is_open]

    def open_tasks(self) -> list[Task]:
        return [t for t in self.tasks if t.is_open]


__all__ = [
    "CLOSED_JOB_STATUSES",
    "Client",
    "CrmSnapshot",
    "INVOICE_STATUSES",
    "Invoice",
    "JOB_STATUSES",
    "Job",
    "LineItem",
    "MAX_LINE_ITEMS",
    "PRIORITIES",
    "TASK_STATUSES",
    "Task",
    "UNPAID_INVOICE_STATUSES",
]
