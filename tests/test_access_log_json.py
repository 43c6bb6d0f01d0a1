import asyncio
import logging

from aiohttp.test_utils import TestClient, TestServer

from modules.common import runtime as rt
from shared.logging import JsonFormatter


class _Collector(logging.Handler):
    def __init__(self) -> None:
        super().__init__(level=logging.INFO)
        self.records = []

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(record)


def test_every_request_is_logged_with_its_trace(clean_health):
    collector = _Collector()

    async def runner():
        app = await rt.create_app()
        access = logging.getLogger("aiohttp.access")
        access.addHandler(collector)
        try:
            async with TestServer(app) as server:
                async with TestClient(server) as client:
                    resp = await client.get("/healthz")
                    return resp.status, resp.headers.get("X-Trace-Id")
        finally:
            access.removeHandler(collector)

    status, trace = asyncio.run(runner())

    assert status == 200
    assert trace
    (record,) = [r for r in collector.records if r.getMessage() == "http_request"]
    assert (record.method, record.path, record.status) == ("GET", "/healthz", 200)
    assert record.trace == trace
    assert isinstance(record.ms, int)

    access = logging.getLogger("aiohttp.access")
    assert not access.propagate
    assert access.handlers
    assert all(isinstance(h.formatter, JsonFormatter) for h in access.handlers if h is not collector)
