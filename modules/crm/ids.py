"""Identifier allocation for clients, jobs, tasks and invoices.

Sequential ids are computed from the highest existing sequence, never from a
row count, so gaps left by deleted tasks cannot produce a duplicate. The store
re-checks every allocated id after writing it (see ``SheetRecordStore``).
"""

from __future__ import annotations

import re
import secrets
import string
import uuid
from typing import Iterable

AUTH_CODE_ALPHABET = string.ascii_letters + string.digits
AUTH_CODE_LENGTH = 8

JOB_SEQ_WIDTH = 3
INVOICE_ID_WIDTH = 6

_CODE_CHARS_RE = re.compile(r"[^A-Z0-9]")
_LETTERS_RE = re.compile(r"[^A-Z]")


def new_client_id() -> str:
    return str(uuid.uuid4())


def generate_auth_code(existing: Iterable[str] = ()) -> str:
    taken = {code for code in existing if code}
    while True:
        code = "".join(secrets.choice(AUTH_CODE_ALPHABET) for _ in range(AUTH_CODE_LENGTH))
        if code not in taken:
            return code


def normalize_code(code: str | None) -> str:
    return _CODE_CHARS_RE.sub("", (code or "").upper())


def code_from_name(name: str | None) -> str:
    """First four letters of the name, padded with ``X``; ``GENX`` when there are none."""

    letters = _LETTERS_RE.sub("", (name or "").upper())
    if not letters:
        return "GENX"
    return letters[:4].ljust(4, "X")


def allocate_client_code(
    name: str,
    taken_codes: Iterable[str],
    *,
    requested: str | None = None,
) -> str:
    """Return a code unique among ``taken_codes`` (compared case-insensitively).

    A collision keeps the first three characters and appends a counter:
    ``ACME`` -> ``ACM1``, ``ACM2``, ...
    """

    taken = {normalize_code(code) for code in taken_codes if code}
    base = normalize_code(requested) or code_from_name(name)
    if base not in taken:
        return base
    stem = base[:3]
    counter = 1
    while True:
        candidate = f"{stem}{counter}"
        if candidate not in taken:
            return candidate
        counter += 1


def _max_sequence(prefix: str, existing_ids: Iterable[str]) -> int:
    highest = 0
    for value in existing_ids:
        if not value or not value.startswith(prefix):
            continue
        tail = value[len(prefix):]
        if tail.isdigit():
            highest = max(highest, int(tail))
    return highest


def next_job_id(client_code: str, existing_ids: Iterable[str]) -> str:
    """``ABCD`` with ``ABCD-001`` and ``ABCD-002`` on file -> ``ABCD-003``."""

    prefix = f"{client_code}-"
    seq = _max_sequence(prefix, existing_ids) + 1
    return f"{prefix}{seq:0{JOB_SEQ_WIDTH}d}"


def next_task_id(job_id: str, existing_ids: Iterable[str]) -> str:
    prefix = f"{job_id}-T"
    seq = _max_sequence(prefix, existing_ids) + 1
    return f"{prefix}{seq}"


def next_invoice_id(existing_ids: Iterable[str], *, start: int = 1) -> str:
    highest = _max_sequence("", existing_ids)
    seq = max(highest + 1, start)
    return f"{seq:0{INVOICE_ID_WIDTH}d}"


__all__ = [
    "allocate_client_code",
    "code_from_name",
    "generate_auth_code",
    "new_client_id",
    "next_invoice_id",
    "next_job_id",
    "next_task_id",
    "normalize_code",
]
