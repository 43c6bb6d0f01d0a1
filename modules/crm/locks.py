"""Per-record asyncio locks that do not outlive their users."""

from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass, field
from typing import AsyncIterator, Dict, Generic, Hashable, TypeVar

K = TypeVar("K", bound=Hashable)


@dataclass
class _Slot:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class KeyedLocks(Generic[K]):
    """One lock per key; a key's entry is dropped once nobody holds or awaits it."""

    def __init__(self) -> None:
        self._slots: Dict[K, _Slot] = {}

    def __len__(self) -> int:
        return len(self._slots)

    @contextlib.asynccontextmanager
    async def hold(self, key: K) -> AsyncIterator[bool]:
        """Hold the lock for *key*; yields True when another holder had to finish first.

        A caller that waited should re-read whatever the previous holder may
        have written.
        """

        slot = self._slots.get(key)
        if slot is None:
            slot = self._slots[key] = _Slot()
        waited = slot.lock.locked()
        slot.users += 1
        try:
            async with slot.lock:
                yield waited
        finally:
            slot.users -= 1
            if slot.users == 0 and self._slots.get(key) is slot:
                del self._slots[key]


__all__ = ["KeyedLocks"]
