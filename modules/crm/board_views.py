"""Embed renderers for client/job cards and the CRM boards.

Renderers are pure: same snapshot and date in, same embed out. Nothing here
stamps the current time, so an unchanged board compares equal and is not
re-sent.
"""

from __future__ import annotations

import datetime as dt
from typing import Dict, Iterable, List, Optional, Sequence

import discord

from modules.common.embeds import (
    HEALTHY_COLOUR,
    URGENT_COLOUR,
    WARNING_COLOUR,
    get_embed_colour,
)
from modules.crm.dates import days_until, format_date
from modules.crm.models import Client, CrmSnapshot, Invoice, Job, Task

FIELD_LIMIT = 25
FIELD_VALUE_LIMIT = 1024
FIELD_NAME_LIMIT = 256
DESCRIPTION_LIMIT = 4096

PRIORITY_ICONS = {"urgent": "🚨", "high": "🔴", "medium": "🟡", "low": "🟢"}
DIVIDER = "═══════════════════════════════════"


def _clip(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 1] + "…"


def channel_url(guild_id: int, channel_id: str | int) -> str:
    return f"https://discord.com/channels/{guild_id}/{channel_id}"


def link(label: str, guild_id: int, channel_id: str | int | None) -> str:
    if not channel_id:
        return label
    return f"[{label}]({channel_url(guild_id, channel_id)})"


def mention(user_id: str | None, default: str = "Unassigned") -> str:
    return f"<@{user_id}>" if user_id else default


def priority_icon(priority: str | None) -> str:
    return PRIORITY_ICONS.get((priority or "").strip().lower(), "⚪")


def money(value: float | None) -> str:
    if value is None:
        return "—"
    return f"${value:,.2f}"


def _add_fields(embed: discord.Embed, fields: Sequence[tuple[str, str]], *, noun: str) -> None:
    """Add fields, folding anything past the field limit into one summary line."""

    if len(fields) > FIELD_LIMIT:
        shown = list(fields[: FIELD_LIMIT - 1])
        hidden = len(fields) - len(shown)
        shown.append(("…", f"… and {hidden} more {noun}"))
    else:
        shown = list(fields)
    for name, value in shown:
        embed.add_field(
            name=_clip(name or "\u200b", FIELD_NAME_LIMIT),
            value=_clip(value or "\u200b", FIELD_VALUE_LIMIT),
            inline=False,
        )


def _join_lines(lines: Sequence[str], *, limit: int, noun: str, sep: str = "\n") -> str:
    out: List[str] = []
    used = 0
    for index, line in enumerate(lines):
        remaining = len(lines) - index
        summary = f"… and {remaining} more {noun}"
        cost = len(line) + (len(sep) if out else 0)
        # keep room for the summary unless this is the last line
        reserve = 0 if remaining == 1 else len(sep) + len(summary)
        if used + cost + reserve > limit:
            out.append(summary)
            break
        out.append(line)
        used += cost
    return sep.join(out)


def deadline_marker(deadline: dt.date | None, today: dt.date) -> str:
    if deadline is None:
        return ""
    days = days_until(deadline, today)
    if days is None:
        return ""
    if days < 0:
        return f" — ⚠️ **OVERDUE** ({format_date(deadline)})"
    if days == 0:
        return " — 📅 **DUE TODAY**"
    if days == 1:
        return " — 📅 Due tomorrow"
    if days <= 3:
        return f" — 📅 Due in {days} days"
    return f" — 📅 {format_date(deadline)}"


def _sort_by_deadline(tasks: Iterable[Task]) -> List[Task]:
    # stable: equal deadlines keep record order, undated tasks go last
    return sorted(tasks, key=lambda t: (t.deadline is None, t.deadline or dt.date.max))


# ---------------------------------------------------------------------------
# cards
# ---------------------------------------------------------------------------


def render_client_card(client: Client, jobs: Iterable[Job], guild_id: int) -> discord.Embed:
    open_jobs = [j for j in jobs if j.client_id == client.id and j.is_open]
    contact = " | ".join(part for part in (client.contact_name, client.contact_method) if part)
    parts = [
        f"**{client.name} — {client.code or client.id}**",
        client.description or "_(no description)_",
        f"*{contact or '—'}*",
        "",
    ]
    if client.auth_code:
        parts.append(f"**Auth Code:** `{client.auth_code}`")
    parts.append(f"**Notes:** *{client.notes.strip() or '—'}*")
    parts.extend(["", "**Open Jobs**"])

    job_lines = []
    for job in open_jobs:
        label = link(job.title or job.id, guild_id, job.thread_id)
        if not job.thread_id:
            label = f"**{label}**"
        due = f" — *due {format_date(job.deadline)}*" if job.deadline else ""
        desc = f"\n*{job.description}*" if job.description else ""
        job_lines.append(f"{label}{due}{desc}")
    parts.append(
        _join_lines(job_lines, limit=DESCRIPTION_LIMIT // 2, noun="jobs", sep="\n\n")
        if job_lines
        else "_none_"
    )
    parts.extend(["", f"*Client ID: {client.id}*"])

    return discord.Embed(
        colour=get_embed_colour("client"),
        description=_clip("\n".join(parts), DESCRIPTION_LIMIT),
    )


def render_job_card(job: Job, client: Optional[Client]) -> discord.Embed:
    embed = discord.Embed(
        title=_clip(f"{job.id} — {job.title or 'Untitled'}", FIELD_NAME_LIMIT),
        colour=get_embed_colour("task"),
        description=_clip(job.description or "—", DESCRIPTION_LIMIT),
    )
    client_label = "—"
    if client is not None:
        client_label = f"{client.name} `{client.code}`" if client.code else client.name
    embed.add_field(name="Client", value=client_label, inline=True)
    embed.add_field(name="Status", value=job.status or "—", inline=True)
    embed.add_field(
        name="Priority",
        value=f"{priority_icon(job.priority)} {job.priority}" if job.priority else "—",
        inline=True,
    )
    embed.add_field(name="Deadline", value=format_date(job.deadline) or "—", inline=True)
    embed.add_field(name="Budget", value=money(job.budget), inline=True)
    embed.add_field(name="Assignee", value=mention(job.assignee_id, "—"), inline=True)
    if job.notes:
        embed.add_field(name="Notes", value=_clip(job.notes, FIELD_VALUE_LIMIT), inline=False)
    embed.set_footer(text=f"Job ID: {job.id}")
    return embed


# ---------------------------------------------------------------------------
# boards
# ---------------------------------------------------------------------------


def render_client_board(snapshot: CrmSnapshot, guild_id: int, today: dt.date) -> discord.Embed:
    embed = discord.Embed(
        title="👥 Client Board",
        colour=get_embed_colour("client"),
        description="Active clients with channels, contacts and open invoices",
    )
    clients = snapshot.active_clients()
    if not clients:
        embed.description = "_No active clients_"
        return embed

    open_jobs: Dict[str, int] = {}
    for job in snapshot.open_jobs():
        open_jobs[job.client_id] = open_jobs.get(job.client_id, 0) + 1
    open_invoices: Dict[str, int] = {}
    for invoice in snapshot.invoices:
        if invoice.is_unpaid:
            open_invoices[invoice.client_id] = open_invoices.get(invoice.client_id, 0) + 1

    fields = []
    for client in clients:
        channel = f"<#{client.channel_id}>" if client.channel_id else "_pending_"
        contact = f"{client.contact_name or 'N/A'} ({client.contact_method or 'N/A'})"
        fields.append(
            (
                f"{client.code or '???'} — {client.name or 'Unnamed Client'}",
                f"Channel: {channel}\nContact: {contact}\n"
                f"Open Jobs: {open_jobs.get(client.id, 0)}\n"
                f"Open Invoices: {open_invoices.get(client.id, 0)}",
            )
        )
    _add_fields(embed, fields, noun="clients")
    embed.set_footer(text=f"{len(clients)} active clients")
    return embed


def render_job_board(snapshot: CrmSnapshot, guild_id: int, today: dt.date) -> discord.Embed:
    embed = discord.Embed(
        title="🛠️ Job Board",
        colour=get_embed_colour("job"),
        description="Open jobs grouped by client",
    )
    jobs = snapshot.open_jobs()
    if not jobs:
        embed.description = "_No open jobs_"
        return embed

    grouped: Dict[str, List[Job]] = {}
    for job in jobs:
        grouped.setdefault(job.client_id, []).append(job)

    def group_key(client_id: str) -> tuple[str, str]:
        client = snapshot.client_by_id(client_id)
        name = client.display_name if client else grouped[client_id][0].client_code
        return ((name or "").casefold(), client_id)

    fields = []
    for client_id in sorted(grouped, key=group_key):
        client = snapshot.client_by_id(client_id)
        header = (
            f"👤 {client.code} — {client.name}"
            if client
            else f"👤 {grouped[client_id][0].client_code or 'Unknown client'}"
        )
        lines = []
        for job in grouped[client_id]:
            title = link(job.title or "Untitled", guild_id, job.thread_id)
            extras = [job.status or "open"]
            if job.priority:
                extras.append(f"{priority_icon(job.priority)} {job.priority}")
            if job.deadline:
                extras.append(f"due {format_date(job.deadline)}")
            lines.append(f"• **{job.id}** {title} ({', '.join(extras)})")
        fields.append((header, _join_lines(lines, limit=FIELD_VALUE_LIMIT, noun="jobs")))
    _add_fields(embed, fields, noun="clients")
    embed.set_footer(text=f"{len(jobs)} open jobs")
    return embed


def _task_line(task: Task, snapshot: CrmSnapshot, guild_id: int, today: dt.date) -> str:
    job = snapshot.job_by_id(task.job_id)
    client = snapshot.client_by_id(job.client_id) if job else None
    client_label = link(client.name, guild_id, client.channel_id) if client else "Unknown Client"
    job_label = link(job.title or job.id, guild_id, job.thread_id) if job else "Unknown Job"
    return (
        f"{priority_icon(task.priority)} **{task.title}** `{task.id}` — "
        f"{mention(task.assignee_id)}{deadline_marker(task.deadline, today)}\n"
        f"   {client_label} • {job_label}"
    )


def _task_counts(tasks: Sequence[Task], today: dt.date) -> Dict[str, int]:
    counts = {"overdue": 0, "today": 0, "soon": 0, "week": 0}
    for task in tasks:
        days = days_until(task.deadline, today)
        if days is None:
            continue
        if days < 0:
            counts["overdue"] += 1
        elif days == 0:
            counts["today"] += 1
        elif days <= 3:
            counts["soon"] += 1
        elif days <= 7:
            counts["week"] += 1
    return counts


def _urgency_colour(counts: Dict[str, int], default: discord.Colour) -> discord.Colour:
    if counts["overdue"]:
        return URGENT_COLOUR
    if counts["today"]:
        return WARNING_COLOUR
    return default


def render_task_list(
    tasks: Sequence[Task],
    snapshot: CrmSnapshot,
    guild_id: int,
    today: dt.date,
    *,
    title: str = "📋 Task Board",
    empty: str = "_No active tasks_",
) -> discord.Embed:
    """Deadline-sorted task listing used by the task board and task commands."""

    ordered = _sort_by_deadline(tasks)
    counts = _task_counts(ordered, today)
    embed = discord.Embed(title=title, colour=_urgency_colour(counts, get_embed_colour("task")))
    if not ordered:
        embed.description = empty
        return embed
    lines = [_task_line(task, snapshot, guild_id, today) for task in ordered]
    embed.description = _join_lines(lines, limit=DESCRIPTION_LIMIT, noun="tasks", sep="\n\n")
    footer = f"{len(ordered)} active tasks"
    if counts["overdue"]:
        footer += f" • {counts['overdue']} overdue"
    if counts["today"]:
        footer += f" • {counts['today']} due today"
    if counts["soon"]:
        footer += f" • {counts['soon']} due soon"
    embed.set_footer(text=footer)
    return embed


def render_task_board(snapshot: CrmSnapshot, guild_id: int, today: dt.date) -> discord.Embed:
    return render_task_list(snapshot.open_tasks(), snapshot, guild_id, today)


def _invoice_value(invoice: Invoice, snapshot: CrmSnapshot) -> str:
    client = snapshot.client_by_id(invoice.client_id)
    job = snapshot.job_by_id(invoice.job_id) if invoice.job_id else None
    due = f" (due {format_date(invoice.due_at)})" if invoice.due_at else ""
    return (
        f"Client: {f'{client.code} — {client.name}' if client else invoice.client_code or 'Unknown'}\n"
        f"Job: {job.title if job else invoice.job_id or '—'}\n"
        f"Status: {invoice.status or 'draft'}{due}\n"
        f"Total: {money(invoice.total)}"
    )


def render_invoice_board(snapshot: CrmSnapshot, guild_id: int, today: dt.date) -> discord.Embed:
    embed = discord.Embed(
        title="🧾 Invoice Board",
        colour=get_embed_colour("invoice"),
        description="Invoices with status, due dates and totals",
    )
    invoices = list(snapshot.invoices)
    if not invoices:
        embed.description = "_No invoices_"
        return embed
    fields = [(f"#{invoice.id}", _invoice_value(invoice, snapshot)) for invoice in invoices]
    _add_fields(embed, fields, noun="invoices")
    unpaid = sum(invoice.total for invoice in invoices if invoice.is_unpaid)
    embed.set_footer(text=f"{len(invoices)} invoices • {money(unpaid)} unpaid")
    return embed


def render_admin_board(snapshot: CrmSnapshot, guild_id: int, today: dt.date) -> discord.Embed:
    open_tasks = snapshot.open_tasks()
    open_jobs = snapshot.open_jobs()
    unpaid = [invoice for invoice in snapshot.invoices if invoice.is_unpaid]
    counts = _task_counts(open_tasks, today)

    sections = [
        "📊 **Quick Stats**",
        f"• **{len(snapshot.active_clients())}** active clients",
        f"• **{len(snapshot.leads())}** new inquiries",
        f"• **{len(open_jobs)}** open jobs",
        f"• **{len(open_tasks)}** active tasks",
        f"• **{counts['overdue']}** overdue tasks",
        f"• **{len(unpaid)}** unpaid invoices ({money(sum(i.total for i in unpaid))})",
        "",
        "⚡ **Task Priority Overview**",
    ]
    urgency = [
        ("🚨", counts["overdue"], "overdue tasks"),
        ("📅", counts["today"], "due today"),
        ("⏰", counts["soon"], "due within 3 days"),
        ("📌", counts["week"], "due this week"),
    ]
    urgency_lines = [f"{icon} **{n}** {label}" for icon, n, label in urgency if n]
    sections.extend(urgency_lines or ["✅ Nothing due this week"])

    critical = [
        task
        for task in _sort_by_deadline(open_tasks)
        if task.deadline is not None and (days_until(task.deadline, today) or 0) <= 7
    ][:8]
    if critical:
        sections.extend(["", "🎯 **Critical Tasks (Next 7 Days)**"])
        for task in critical:
            job = snapshot.job_by_id(task.job_id)
            client = snapshot.client_by_id(job.client_id) if job else None
            days = days_until(task.deadline, today) or 0
            icon = "🚨" if days < 0 else "📅" if days == 0 else "⏰" if days <= 3 else "📌"
            sections.append(
                f"{icon} **{task.title}** ({client.name if client else 'Unknown'}) - "
                f"{format_date(task.deadline)}"
            )

    workload: Dict[str, int] = {}
    for task in open_tasks:
        job = snapshot.job_by_id(task.job_id)
        if job is not None:
            workload[job.client_id] = workload.get(job.client_id, 0) + 1
    busiest = sorted(workload.items(), key=lambda item: -item[1])[:5]
    if busiest:
        sections.extend(["", "👥 **Busiest Clients**"])
        for client_id, task_count in busiest:
            client = snapshot.client_by_id(client_id)
            if client is None:
                continue
            jobs = sum(1 for j in open_jobs if j.client_id == client_id)
            sections.append(
                f"• {link(client.name, guild_id, client.channel_id)}: "
                f"{jobs} jobs, {task_count} tasks"
            )

    sections.extend(["", "💡 *Use /sync to refresh all boards*"])
    return discord.Embed(
        title="🔐 Admin Dashboard",
        colour=_urgency_colour(counts, HEALTHY_COLOUR),
        description=_clip("\n".join(sections), DESCRIPTION_LIMIT),
    )


def render_lead_board(snapshot: CrmSnapshot, guild_id: int, today: dt.date) -> discord.Embed:
    embed = discord.Embed(
        title="🆕 Inquiry Board",
        colour=get_embed_colour("lead"),
        description=f"New inquiries waiting to be converted to active clients\n\n{DIVIDER}",
    )
    leads = snapshot.leads()
    if not leads:
        embed.add_field(
            name="No inquiries found",
            value="All inquiries have been converted to active clients! 🎉",
            inline=False,
        )
        return embed

    fields = []
    for lead in leads:
        lines = []
        contact = " | ".join(p for p in (lead.contact_name, lead.contact_method) if p)
        if contact:
            lines.append(f"**Contact:** {contact}")
        if lead.description.strip():
            lines.append(f"**Description:** {lead.description.strip()}")
        if lead.notes.strip():
            lines.append(f"**Notes:** {lead.notes.strip()}")
        system = [f"ID: {lead.id}"] if lead.id else []
        if lead.auth_code:
            system.append(f"Auth: {lead.auth_code}")
        if lead.created_at:
            system.append(f"Created: {lead.created_at[:10]}")
        if system:
            lines.append(f"**System:** {' | '.join(system)}")
        fields.append((f"{lead.code or 'NO-CODE'} — {lead.name}", "\n".join(lines)))
    fields.append(
        (
            "💡 How to Convert Inquiries",
            "Use `/lead convert` to turn an inquiry into an active client. "
            "This creates their channel and adds them to the client board.",
        )
    )
    _add_fields(embed, fields, noun="inquiries")
    embed.set_footer(text=f"{len(leads)} inquiries")
    return embed


__all__ = [
    "FIELD_LIMIT",
    "FIELD_VALUE_LIMIT",
    "channel_url",
    "deadline_marker",
    "link",
    "render_admin_board",
    "render_client_board",
    "render_client_card",
    "render_invoice_board",
    "render_job_board",
    "render_job_card",
    "render_lead_board",
    "render_task_board",
    "render_task_list",
]
