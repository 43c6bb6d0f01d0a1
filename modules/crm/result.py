"""Per-entity outcomes and the aggregate report of one sync run."""

from __future__ import annotations

import asyncio
import datetime as dt
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Dict, Generic, List, Optional, TypeVar

from modules.crm.errors import ReconcileError, classify_error

T = TypeVar("T")

log = logging.getLogger("crm.sync")

PHASES = ("load", "gc", "clients", "jobs", "boards")


@dataclass(slots=True)
class Result(Generic[T]):
    """Outcome of reconciling one entity: either ``value`` or ``error``."""

    subject: str
    value: Optional[T] = None
    error: Optional[ReconcileError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, subject: str, value: T | None = None) -> "Result[T]":
        return cls(subject=subject, value=value)

    @classmethod
    def failure(cls, subject: str, error: BaseException) -> "Result[T]":
        return cls(subject=subject, error=classify_error(error))


async def capture(subject: str, awaitable: Awaitable[T]) -> Result[T]:
    """Await ``awaitable`` and fold any failure into a :class:`Result`."""

    try:
        value = await awaitable
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        result: Result[T] = Result.failure(subject, exc)
        log.warning(
            "reconcile step failed",
            extra={"subject": subject, "error": result.error.describe()},
            exc_info=exc if result.error.kind == "error" else None,
        )
        return result
    return Result.success(subject, value)


@dataclass
class SyncReport:
    guild_id: int
    trigger: str
    started_at: dt.datetime = field(default_factory=lambda: dt.datetime.now(dt.timezone.utc))
    finished_at: Optional[dt.datetime] = None
    phases: Dict[str, List[Result[Any]]] = field(
        default_factory=lambda: {name: [] for name in PHASES}
    )

    def add(self, phase: str, result: Result[Any]) -> Result[Any]:
        self.phases.setdefault(phase, []).append(result)
        return result

    def finish(self) -> "SyncReport":
        self.finished_at = dt.datetime.now(dt.timezone.utc)
        return self

    @property
    def failures(self) -> List[Result[Any]]:
        return [r for results in self.phases.values() for r in results if not r.ok]

    @property
    def ok(self) -> bool:
        return not self.failures

    @property
    def duration_ms(self) -> int:
        end = self.finished_at or dt.datetime.now(dt.timezone.utc)
        return int((end - self.started_at).total_seconds() * 1000)

    def counts(self, phase: str) -> tuple[int, int]:
        """Return ``(succeeded, attempted)`` for ``phase``."""

        results = self.phases.get(phase, [])
        return sum(1 for r in results if r.ok), len(results)

    def tasks_purged(self) -> int:
        for result in self.phases.get("gc", []):
            if result.ok and isinstance(result.value, int):
                return result.value
        return 0

    def summary(self) -> str:
        parts = [f"trigger={self.trigger}"]
        for phase in ("clients", "jobs", "boards"):
            done, total = self.counts(phase)
            parts.append(f"{phase}={done}/{total}")
        parts.append(f"tasks_purged={self.tasks_purged()}")
        parts.append(f"failures={len(self.failures)}")
        parts.append(f"duration={self.duration_ms}ms")
        return "🧭 Sync — finished • " + " • ".join(parts)

    def failure_lines(self, limit: int = 10) -> List[str]:
        lines = []
        for result in self.failures[:limit]:
            assert result.error is not None
            lines.append(f"• {result.subject}: {result.error.describe()}")
        hidden = len(self.failures) - limit
        if hidden > 0:
            lines.append(f"• … and {hidden} more")
        return lines


__all__ = ["PHASES", "Result", "SyncReport", "capture"]
