"""Run blocking gspread calls off the event loop.

All Sheets I/O shares one small thread pool, so a full reconciliation pass
never has more than ``_MAX_WORKERS`` requests in flight against the quota.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, ParamSpec, TypeVar

P = ParamSpec("P")
T = TypeVar("T")

log = logging.getLogger("crm.sheets.io")

_MAX_WORKERS = 4
_pool: ThreadPoolExecutor | None = None
_pool_lock = threading.Lock()


def _executor() -> ThreadPoolExecutor:
    global _pool
    with _pool_lock:
        if _pool is None:
            _pool = ThreadPoolExecutor(max_workers=_MAX_WORKERS, thread_name_prefix="sheets-io")
            log.info("sheets executor started", extra={"workers": _MAX_WORKERS})
        return _pool


def shutdown_executor(wait: bool = True) -> None:
    """Stop the pool; the next :func:`arun` starts a fresh one."""

    global _pool
    with _pool_lock:
        pool, _pool = _pool, None
    if pool is not None:
        pool.shutdown(wait=wait)
        log.info("sheets executor stopped")


async def arun(
    func: Callable[P, T],
    *args: P.args,
    timeout: float | None = None,
    **kwargs: P.kwargs,
) -> T:
    """Await ``func(*args, **kwargs)`` on the Sheets pool, optionally bounded by *timeout*."""

    call = functools.partial(func, *args, **kwargs)
    future = asyncio.get_running_loop().run_in_executor(_executor(), call)
    return await asyncio.wait_for(future, timeout)


__all__ = ["arun", "shutdown_executor"]
