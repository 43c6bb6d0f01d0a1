"""TTL cache over async loaders, one named bucket per CRM entity."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional

log = logging.getLogger("crm.cache")

Loader = Callable[[], Awaitable[Any]]


@dataclass
class _Bucket:
    name: str
    ttl_sec: float
    loader: Loader
    value: Any = None
    loaded: bool = False
    refreshed_at: Optional[float] = None
    inflight: Optional[asyncio.Future] = field(default=None, repr=False)
    last_result: Optional[str] = None
    last_error: Optional[str] = None
    hits: int = 0
    misses: int = 0

    def age(self, now: float) -> Optional[float]:
        return None if self.refreshed_at is None else now - self.refreshed_at

    def fresh(self, now: float) -> bool:
        age = self.age(now)
        return self.loaded and age is not None and age < self.ttl_sec

    def store(self, value: Any, now: float) -> None:
        self.value = value
        self.loaded = True
        self.refreshed_at = now


def _size(value: Any) -> Optional[int]:
    return len(value) if isinstance(value, (dict, list, set, tuple)) else None


class CacheService:
    """Named TTL buckets over async loaders.

    Instances are owned by whoever wires the application together; nothing in
    here is global, so tests build one per case. ``get`` serves a fresh value,
    reloads a stale one (one in-flight load per bucket), and falls back to the
    last good value when a reload fails.
    """

    def __init__(self, *, clock: Callable[[], float] = time.monotonic):
        self._buckets: Dict[str, _Bucket] = {}
        self._clock = clock

    def register(self, name: str, ttl_sec: float, loader: Loader) -> None:
        self._buckets[name] = _Bucket(name, ttl_sec, loader)

    def _bucket(self, name: str) -> _Bucket:
        try:
            return self._buckets[name]
        except KeyError:
            raise KeyError(f"unknown cache bucket: {name}") from None

    async def get(self, name: str) -> Any:
        bucket = self._bucket(name)
        if bucket.fresh(self._clock()):
            bucket.hits += 1
            return bucket.value
        bucket.misses += 1
        try:
            await self._reload(bucket)
        except Exception:
            if not bucket.loaded:
                raise
            log.warning(
                "serving stale cache after failed reload",
                extra={"bucket": name, "error": bucket.last_error},
            )
        return bucket.value

    async def refresh_now(self, name: str) -> Any:
        """Reload *name* regardless of age; a failure propagates to the caller."""

        bucket = self._bucket(name)
        await self._reload(bucket)
        return bucket.value

    async def _reload(self, bucket: _Bucket) -> None:
        if bucket.inflight is None or bucket.inflight.done():
            bucket.inflight = asyncio.ensure_future(self._load(bucket))
        await asyncio.shield(bucket.inflight)

    async def _load(self, bucket: _Bucket) -> None:
        started = time.monotonic()
        try:
            value = await bucket.loader()
        except Exception as exc:
            bucket.last_result = "fail"
            bucket.last_error = str(exc).strip() or type(exc).__name__
            raise
        else:
            bucket.store(value, self._clock())
            bucket.last_result = "ok"
            bucket.last_error = None
        finally:
            log.info(
                "[refresh] bucket=%s duration=%dms result=%s count=%s error=%s",
                bucket.name,
                (time.monotonic() - started) * 1000,
                bucket.last_result,
                _size(bucket.value) if bucket.last_result == "ok" else "-",
                bucket.last_error or "-",
            )

    def prime(self, name: str, value: Any) -> None:
        """Adopt a value read elsewhere (a forced fresh read) as the cached entry."""

        self._bucket(name).store(value, self._clock())

    def invalidate(self, name: str) -> None:
        self._bucket(name).refreshed_at = None

    def invalidate_all(self) -> None:
        for bucket in self._buckets.values():
            bucket.refreshed_at = None

    def stats(self) -> Dict[str, Dict[str, Any]]:
        now = self._clock()
        out: Dict[str, Dict[str, Any]] = {}
        for name, bucket in self._buckets.items():
            age = bucket.age(now)
            out[name] = {
                "ttl_sec": bucket.ttl_sec,
                "fresh": bucket.fresh(now),
                "age_sec": None if age is None else round(age, 1),
                "items": _size(bucket.value) if bucket.loaded else None,
                "hits": bucket.hits,
                "misses": bucket.misses,
                "last_result": bucket.last_result,
                "last_error": bucket.last_error,
            }
        return out


__all__ = ["CacheService"]
