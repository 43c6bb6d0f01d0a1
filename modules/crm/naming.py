"""Canonical and legacy names for the CRM category, channels and threads."""

from __future__ import annotations

import re
from dataclasses import dataclass

CRM_CATEGORY = "🗂️ | CRM"
LEGACY_CATEGORY_NAMES = ("🗂️|CRM", "🗂️-crm", "CRM")

CLIENT_CHANNEL_ICON = "🪪"

CHANNEL_NAME_LIMIT = 100
THREAD_NAME_LIMIT = 100

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")


@dataclass(frozen=True, slots=True)
class ChannelName:
    canonical: str
    legacy: tuple[str, ...] = ()

    def matches(self, name: str | None) -> bool:
        return name == self.canonical or name in self.legacy


def _board(icon: str, slug: str) -> ChannelName:
    return ChannelName(
        canonical=f"{icon}-{slug}",
        legacy=(f"{icon} | {slug}", f"{icon}|{slug}", f"{icon}・{slug}", slug),
    )


CLIENT_BOARD = _board("👥", "client-board")
JOB_BOARD = _board("🛠️", "job-board")
TASK_BOARD = _board("📋", "task-board")
INVOICE_BOARD = _board("🧾", "invoice-board")
ADMIN_BOARD = _board("📊", "admin-board")
LEAD_BOARD = _board("🆕", "inquiry-board")


def slugify(text: str | None) -> str:
    """``"Acme Co."`` -> ``"acme-co"``."""

    return _NON_ALNUM_RE.sub("-", (text or "").lower()).strip("-")


def clean_code(code: str | None) -> str:
    return _NON_ALNUM_RE.sub("", (code or "").lower())


def client_channel_name(code: str, name: str) -> str:
    parts = [CLIENT_CHANNEL_ICON, clean_code(code) or "client"]
    slug = slugify(name)
    if slug:
        parts.append(slug)
    return "-".join(parts)[:CHANNEL_NAME_LIMIT]


def client_channel(code: str, name: str) -> ChannelName:
    """Canonical client channel name plus the forms older deployments produced."""

    canonical = client_channel_name(code, name)
    raw_code = (code or "").strip().lower()
    slug = slugify(name)
    legacy = {
        f"{CLIENT_CHANNEL_ICON}-{raw_code}-{slug}"[:CHANNEL_NAME_LIMIT],
        f"{CLIENT_CHANNEL_ICON} | {raw_code}-{slug}"[:CHANNEL_NAME_LIMIT],
        f"{raw_code}-{slug}"[:CHANNEL_NAME_LIMIT],
    }
    legacy.discard(canonical)
    return ChannelName(canonical=canonical, legacy=tuple(sorted(legacy)))


def job_thread_name(job_id: str, title: str) -> str:
    title = " ".join((title or "").split()) or "Untitled"
    return f"{job_id} — {title}"[:THREAD_NAME_LIMIT]


__all__ = [
    "ADMIN_BOARD",
    "CLIENT_BOARD",
    "CRM_CATEGORY",
    "ChannelName",
    "INVOICE_BOARD",
    "JOB_BOARD",
    "LEAD_BOARD",
    "LEGACY_CATEGORY_NAMES",
    "TASK_BOARD",
    "clean_code",
    "client_channel",
    "client_channel_name",
    "job_thread_name",
    "slugify",
]
