"""Simulated measurement endpoint and in-memory fakes shared by the tests."""

import asyncio
import time
from typing import Dict, List, Optional, Sequence

from aiohttp import WSMsgType, web

from meter.api import Endpoint
from meter.errors import LatencyError
from meter.latency import LatencySample
from meter.throughput import ThroughputResult

_BLOCK = b"\x00" * 65536


# ---------------------------------------------------------------------------
# Simulated endpoint (aiohttp server)
# ---------------------------------------------------------------------------

def make_endpoint_app(
    header_delay: float = 0.0,
    chunk_delay: float = 0.0,
    status: int = 200,
    truncate: int = 0,
    read_delay: float = 0.0,
    pong_delays: Sequence[float] = (),
) -> web.Application:
    """
    Serves both URL layouts:

    * cloudflare: ``GET /__down?bytes=N``, ``POST /__up``
    * ookla:      ``GET /download?size=N``, ``POST /upload``, ``GET /ws``

    ``app["uploaded"]`` collects the byte count of every upload body.
    ``truncate`` makes downloads end that many bytes early.
    ``read_delay`` makes uploads drain 64 KiB per step, sleeping in between.
    ``pong_delays[i]`` holds back the reply to the i-th PING on a socket.
    """
    app = web.Application()
    app["uploaded"] = []
    app["downloads"] = []

    async def _send(request: web.Request, size: int) -> web.StreamResponse:
        app["downloads"].append(size)
        if header_delay:
            await asyncio.sleep(header_delay)
        if status != 200:
            return web.Response(status=status, text="nope")
        resp = web.StreamResponse()
        if not truncate:
            resp.content_length = size
        await resp.prepare(request)
        remaining = max(size - truncate, 0)
        while remaining > 0:
            n = min(len(_BLOCK), remaining)
            await resp.write(_BLOCK[:n])
            remaining -= n
            if chunk_delay:
                await asyncio.sleep(chunk_delay)
        await resp.write_eof()
        return resp

    async def cf_down(request: web.Request) -> web.StreamResponse:
        return await _send(request, int(request.query.get("bytes", "0")))

    async def ookla_down(request: web.Request) -> web.StreamResponse:
        return await _send(request, int(request.query.get("size", "0")))

    async def receive(request: web.Request) -> web.Response:
        if status != 200:
            return web.Response(status=status, text="nope")
        total = 0
        if read_delay:
            while True:
                chunk = await request.content.read(len(_BLOCK))
                if not chunk:
                    break
                total += len(chunk)
                await asyncio.sleep(read_delay)
        else:
            async for chunk in request.content.iter_any():
                total += len(chunk)
        app["uploaded"].append(total)
        return web.Response(text="ok")

    async def ws(request: web.Request) -> web.WebSocketResponse:
        sock = web.WebSocketResponse()
        await sock.prepare(request)
        await sock.send_str("HELLO 2.11 (2.11.0) 2024-01-01.0000.abcdef")
        await sock.send_str("YOURIP 127.0.0.1")
        await sock.send_str("CAPABILITIES SERVER_HOST_AUTH UPLOAD_STATS")
        pings = 0
        async for msg in sock:
            if msg.type == WSMsgType.TEXT and msg.data.startswith("PING"):
                if pings < len(pong_delays):
                    await asyncio.sleep(pong_delays[pings])
                pings += 1
                await sock.send_str(f"PONG {int(time.time() * 1000)}")
        return sock

    app.router.add_get("/__down", cf_down)
    app.router.add_post("/__up", receive)
    app.router.add_get("/download", ookla_down)
    app.router.add_post("/upload", receive)
    app.router.add_get("/ws", ws)
    return app


# ---------------------------------------------------------------------------
# In-memory fakes for the orchestrator
# ---------------------------------------------------------------------------

class FakeProber:
    """Returns canned RTTs per endpoint id; ids in *unreachable* always fail.

    ``fail_calls`` lists 1-based call numbers that fail regardless of endpoint.
    """

    def __init__(
        self,
        rtts: Optional[Dict[str, List[float]]] = None,
        unreachable: Sequence[str] = (),
        fail_calls: Sequence[int] = (),
        log: Optional[list] = None,
    ) -> None:
        self.rtts = rtts or {}
        self.unreachable = set(unreachable)
        self.fail_calls = set(fail_calls)
        self.calls = 0
        self.log = log if log is not None else []

    async def probe(self, endpoint, sample_count=10, deadline=5.0, interface=None):
        self.calls += 1
        self.log.append(("probe", endpoint.id, sample_count))
        if endpoint.id in self.unreachable or self.calls in self.fail_calls:
            raise LatencyError(f"all probes to {endpoint.id} failed", attempts=sample_count)
        return LatencySample(
            endpoint=endpoint,
            rtts=list(self.rtts.get(endpoint.id, [10.0, 12.0, 9.0])),
            attempts=sample_count,
        )


class FakeTester:
    """Canned throughput results; queued exceptions are raised in order."""

    def __init__(
        self,
        download_mbps: float = 100.0,
        upload_mbps: float = 20.0,
        download_errors: Sequence[Optional[Exception]] = (),
        upload_errors: Sequence[Optional[Exception]] = (),
        log: Optional[list] = None,
    ) -> None:
        self.download_mbps = download_mbps
        self.upload_mbps = upload_mbps
        self.download_errors = list(download_errors)
        self.upload_errors = list(upload_errors)
        self.log = log if log is not None else []

    async def measure_download(self, endpoint, size_bytes, deadline, interface=None):
        self.log.append(("download", endpoint.id, size_bytes))
        if self.download_errors:
            exc = self.download_errors.pop(0)
            if exc is not None:
                raise exc
        return ThroughputResult(mbps=self.download_mbps, bytes_transferred=size_bytes, elapsed=1.0)

    async def measure_upload(self, endpoint, size_bytes, deadline, interface=None):
        self.log.append(("upload", endpoint.id, size_bytes))
        if self.upload_errors:
            exc = self.upload_errors.pop(0)
            if exc is not None:
                raise exc
        return ThroughputResult(mbps=self.upload_mbps, bytes_transferred=size_bytes, elapsed=1.0)


def endpoint(ident: str) -> Endpoint:
    return Endpoint(id=ident, url=f"https://{ident.lower()}.example.net", name=ident)
