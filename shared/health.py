"""Process-wide health registry behind ``/ready`` and ``/health``.

Components report themselves (``runtime``, ``discord``, ``sheets``, ``sync``);
readiness only looks at :data:`REQUIRED`. A component may attach a short
detail string, e.g. the last sync summary, which the health endpoints echo.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Dict, Optional

__all__ = [
    "REQUIRED",
    "components_snapshot",
    "overall_ready",
    "set_component",
]

REQUIRED = frozenset({"runtime", "discord"})


@dataclass(frozen=True)
class _State:
    ok: bool
    ts: float
    detail: Optional[str] = None


_components: Dict[str, _State] = {}


def set_component(name: str, ok: bool, detail: Optional[str] = None) -> None:
    _components[name] = _State(ok=bool(ok), ts=time.time(), detail=detail)


def components_snapshot() -> Dict[str, Dict[str, object]]:
    """Every reported component plus any required one that never reported."""

    snapshot: Dict[str, Dict[str, object]] = {}
    for name in sorted(set(_components) | REQUIRED):
        state = _components.get(name)
        if state is None:
            snapshot[name] = {"ok": False, "ts": 0.0}
            continue
        entry: Dict[str, object] = {"ok": state.ok, "ts": state.ts}
        if state.detail:
            entry["detail"] = state.detail
        snapshot[name] = entry
    return snapshot


def overall_ready() -> bool:
    return all(name in _components and _components[name].ok for name in REQUIRED)
