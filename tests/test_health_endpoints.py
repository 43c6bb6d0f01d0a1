import asyncio

from aiohttp.test_utils import TestClient, TestServer

from modules.common import runtime as rt


class _Gateway:
    def __init__(self, *, latency: float = 0.05, closed: bool = False) -> None:
        self.latency = latency
        self.guilds = []
        self._closed = closed

    def is_closed(self) -> bool:
        return self._closed


def _probe(bot, *paths):
    """GET each path against the runtime's app; returns ``[(status, json), ...]``."""

    async def runner():
        app = await rt.create_app(runtime=rt.Runtime(bot=bot))
        results = []
        async with TestClient(TestServer(app)) as client:
            for path in paths:
                resp = await client.get(path)
                results.append((resp.status, await resp.json()))
        return results

    return asyncio.run(runner())


def test_all_probes_pass_once_discord_is_connected(clean_health):
    clean_health.set_component("discord", True)

    paths = ("/", "/health", "/healthz", "/ready")
    results = dict(zip(paths, _probe(_Gateway(), *paths)))

    assert all(status == 200 and body["ok"] is True for status, body in results.values())
    root = results["/"][1]
    assert {"bot", "env", "version", "trace"} <= set(root)
    liveness = results["/healthz"][1]
    assert liveness["latency_seconds"] == 0.05
    assert liveness["sync_running"] is False
    assert set(results["/health"][1]["components"]) == {"discord", "runtime"}


def test_not_ready_until_discord_connects(clean_health):
    (ready, health, healthz) = _probe(_Gateway(), "/ready", "/health", "/healthz")

    assert ready[1]["ok"] is False
    assert ready[1]["components"]["discord"] == {"ok": False, "ts": 0.0}
    assert health[0] == 503
    assert healthz[0] == 200


def test_closed_or_lagging_gateway_fails_liveness(clean_health):
    clean_health.set_component("discord", True)

    (closed,) = _probe(_Gateway(closed=True), "/healthz")
    (lagging,) = _probe(_Gateway(latency=45.0), "/healthz")

    assert closed[0] == 503 and closed[1]["closed"] is True
    assert lagging[0] == 503 and lagging[1]["latency_seconds"] == 45.0


def test_sync_detail_is_echoed_by_health(clean_health):
    clean_health.set_component("discord", True)
    clean_health.set_component("sync", False, detail="jobs board failed")

    (health,) = _probe(_Gateway(), "/health")

    assert health[0] == 503
    assert health[1]["components"]["sync"]["detail"] == "jobs board failed"
