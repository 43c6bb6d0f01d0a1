"""Process wiring: health server, background jobs and the CRM context."""

from __future__ import annotations

import asyncio
import logging
import math
import os
import random
import time
from typing import Any, Awaitable, Callable, Optional

from aiohttp import web
from discord.ext import commands

from shared import health as healthmod
from modules.common.logs import log as human_log
from shared.config import (
    get_bot_name,
    get_env_name,
    get_log_channel_id,
    get_port,
    get_sync_interval_min,
    is_guild_allowed,
)
from shared.logging import get_trace_id, set_trace_id, setup_logging
from shared.redaction import sanitize_text
from shared.sheets.async_adapter import shutdown_executor

log = logging.getLogger("crm.runtime")

# Gateway heartbeat slower than this marks /healthz unhealthy.
LATENCY_UNHEALTHY_SEC = 30.0

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


def _identity() -> dict[str, Any]:
    return {
        "bot": get_bot_name(),
        "env": get_env_name(),
        "version": os.getenv("BOT_VERSION", "dev"),
    }


async def create_app(*, runtime: "Runtime | None" = None) -> web.Application:
    """Build the aiohttp app serving ``/``, ``/ready``, ``/health`` and ``/healthz``.

    Without a runtime the liveness probe only reflects the process itself; with
    one it also folds in the gateway state and whether a sync is in flight.
    """

    access = setup_logging(static_fields={"env": get_env_name(), "bot": get_bot_name()})
    healthmod.set_component("runtime", True)

    @web.middleware
    async def trace_requests(request: web.Request, handler: Handler) -> web.StreamResponse:
        trace = set_trace_id()
        started = time.perf_counter()
        status = 500
        try:
            response = await handler(request)
        except web.HTTPException as exc:
            status = exc.status
            raise
        else:
            status = response.status
            response.headers["X-Trace-Id"] = trace
            return response
        finally:
            access.info(
                "http_request",
                extra={
                    "trace": trace,
                    "method": request.method,
                    "path": request.path,
                    "status": status,
                    "ms": int((time.perf_counter() - started) * 1000),
                },
            )

    async def liveness() -> tuple[dict[str, Any], bool]:
        if runtime is None:
            return {"ok": True, **_identity()}, True
        return runtime.liveness()

    async def root(_: web.Request) -> web.Response:
        return web.json_response({"ok": True, **_identity(), "trace": get_trace_id()})

    async def ready(_: web.Request) -> web.Response:
        return web.json_response(
            {"ok": healthmod.overall_ready(), "components": healthmod.components_snapshot()}
        )

    async def health(_: web.Request) -> web.Response:
        payload, alive = await liveness()
        components = healthmod.components_snapshot()
        ok = alive and all(entry["ok"] for entry in components.values())
        payload.update(
            ok=ok,
            ready=healthmod.overall_ready(),
            components=components,
            endpoint="health",
        )
        return web.json_response(payload, status=200 if ok else 503)

    async def healthz(_: web.Request) -> web.Response:
        payload, alive = await liveness()
        payload["endpoint"] = "healthz"
        return web.json_response(payload, status=200 if alive else 503)

    app = web.Application(middlewares=[trace_requests])
    app.router.add_get("/", root)
    app.router.add_get("/ready", ready)
    app.router.add_get("/health", health)
    app.router.add_get("/healthz", healthz)
    return app


def _trim_message(message: str, *, limit: int = 1800) -> str:
    message = message.strip()
    if len(message) <= limit:
        return message
    return f"{message[: limit - 1]}…"


def _next_delay(interval: float, jitter: float) -> float:
    """Seconds until the next run: *interval* spread by ±*jitter* of itself."""

    spread = interval * jitter
    return max(1.0, interval + random.uniform(-spread, spread))


class Scheduler:
    """Owns the bot's background tasks so shutdown can cancel them together."""

    def __init__(self) -> None:
        self._tasks: list[asyncio.Task] = []

    def spawn(self, coro: Awaitable, *, name: Optional[str] = None) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.append(task)
        return task

    def every(
        self,
        seconds: float,
        job: Callable[[], Awaitable[None]],
        *,
        name: str,
        jitter: float = 0.05,
    ) -> asyncio.Task:
        """Run *job* forever, sleeping roughly *seconds* before each call.

        A failing run is logged and the loop carries on; only cancellation
        stops it.
        """

        interval = max(1.0, float(seconds))

        async def loop() -> None:
            while True:
                await asyncio.sleep(_next_delay(interval, jitter))
                try:
                    await job()
                except asyncio.CancelledError:
                    raise
                except Exception:
                    log.exception("recurring job error", extra={"job_name": name})

        return self.spawn(loop(), name=name)

    async def shutdown(self) -> None:
        pending = [t for t in self._tasks if not t.done()]
        self._tasks.clear()
        for task in pending:
            task.cancel()
        for outcome in await asyncio.gather(*pending, return_exceptions=True):
            if isinstance(outcome, Exception):
                log.error("background task failed during shutdown", exc_info=outcome)


class Runtime:
    """Holds the bot together with its health server, scheduler and CRM context."""

    def __init__(self, bot: commands.Bot) -> None:
        self.bot = bot
        self.scheduler = Scheduler()
        self.crm = None
        self._web_app: Optional[web.Application] = None
        self._web_runner: Optional[web.AppRunner] = None
        self._web_site: Optional[web.TCPSite] = None
        self._sync_job: Optional[asyncio.Task] = None

    # -- health server -------------------------------------------------

    async def start_webserver(self, *, port: Optional[int] = None) -> None:
        if self._web_site is not None:
            return
        port = port or get_port()
        self._web_app = await create_app(runtime=self)
        self._web_runner = web.AppRunner(self._web_app)
        await self._web_runner.setup()
        self._web_site = web.TCPSite(self._web_runner, host="0.0.0.0", port=port)
        await self._web_site.start()
        human_log.human("info", f"web server listening • port={port}")

    async def shutdown_webserver(self) -> None:
        site, runner = self._web_site, self._web_runner
        self._web_app = self._web_runner = self._web_site = None
        if site is not None:
            await site.stop()
        if runner is not None:
            await runner.cleanup()

    def _latency(self) -> Optional[float]:
        try:
            value = float(self.bot.latency)
        except (AttributeError, TypeError, ValueError):
            return None
        return None if math.isnan(value) or math.isinf(value) else value

    def _sync_running(self) -> bool:
        queue = getattr(self.crm, "queue", None)
        if queue is None:
            return False
        return any(queue.is_running(guild.id) for guild in self.bot.guilds)

    def liveness(self) -> tuple[dict[str, Any], bool]:
        latency = self._latency()
        closed = self.bot.is_closed()
        alive = not closed and (latency is None or latency < LATENCY_UNHEALTHY_SEC)
        payload = {
            "ok": alive,
            **_identity(),
            "latency_seconds": None if latency is None else round(latency, 3),
            "closed": closed,
            "sync_running": self._sync_running(),
        }
        return payload, alive

    # -- log channel ---------------------------------------------------

    async def send_log_message(self, message: str) -> None:
        """Post *message* to the ops log channel; failures only reach the logs."""

        channel_id = get_log_channel_id()
        content = _trim_message(sanitize_text(message))
        if not channel_id or not content:
            return
        await self.bot.wait_until_ready()
        try:
            channel = self.bot.get_channel(channel_id) or await self.bot.fetch_channel(channel_id)
            await channel.send(content)
        except Exception:
            log.exception("log channel post failed", extra={"channel_id": channel_id})

    # -- reconciliation ------------------------------------------------

    def sync_guilds(self) -> list:
        return [g for g in self.bot.guilds if is_guild_allowed(g.id)]

    async def periodic_sync(self) -> None:
        """Full reconciliation of every allowed guild; the self-healing pass."""

        if self.crm is None or not self.bot.is_ready():
            return
        for guild in self.sync_guilds():
            try:
                await self.crm.queue.run_now(guild, "periodic")
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                log.exception("periodic sync failed", extra={"guild_id": guild.id})
                await self.send_log_message(f"❌ Periodic sync failed for {guild.name}: {exc}")

    def schedule_periodic_sync(self) -> asyncio.Task:
        if self._sync_job is None or self._sync_job.done():
            minutes = get_sync_interval_min()
            self._sync_job = self.scheduler.every(
                minutes * 60, self.periodic_sync, name="crm_periodic_sync"
            )
            human_log.human("info", f"🧭 Sync — scheduled • every={minutes}m")
        return self._sync_job

    # -- lifecycle -----------------------------------------------------

    async def load_extensions(self) -> None:
        """Build the CRM context and register its command cogs."""

        from cogs import crm_admin, crm_clients, crm_invoices, crm_jobs
        from modules.crm.context import build_context

        self.crm = build_context(notify=self.send_log_message)
        for module in (crm_admin, crm_clients, crm_jobs, crm_invoices):
            await module.setup(self.bot, self.crm)
            log.info("cog loaded", extra={"feature_module": module.__name__})

    async def start(self, token: str) -> None:
        await self.start_webserver()
        await self.load_extensions()
        self.schedule_periodic_sync()
        await self.bot.start(token)

    async def close(self) -> None:
        if self.crm is not None:
            await self.crm.close()
        await self.shutdown_webserver()
        await self.scheduler.shutdown()
        shutdown_executor(wait=False)
