"""
Round-trip latency probing.

A probe burst is ``sample_count`` sequential small round trips against one
endpoint.  ``cloudflare`` endpoints are probed with zero-byte HTTP GETs
over a keep-alive connection that is warmed up first (the warm-up is not
recorded, so TCP/TLS setup never shows up as latency).  ``ookla``
endpoints are probed over their WebSocket:

    1. Connect to  wss://{hostname}:{port}/ws
    2. Receive  HELLO {version} / YOURIP {ip} / CAPABILITIES ...
    3. Send     PING {timestamp_ms}
    4. Receive  PONG {server_timestamp}
    5. Repeat 3-4 for the desired number of samples.

A failed probe is skipped, not retried; a PONG arriving after its PING
timed out is dropped rather than credited to the next PING.  The burst
fails only when no probe succeeded.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import aiohttp
import websockets
import websockets.exceptions

from .api import KIND_OOKLA, Endpoint
from .binding import local_addr
from .constants import (
    DEFAULT_PING_COUNT,
    PROBE_TIMEOUT,
    WS_CONNECT_TIMEOUT,
    WS_HANDSHAKE_TIMEOUT,
    WS_MSG_TIMEOUT,
)
from .errors import LatencyError
from .stats import calculate_jitter, calculate_ping

logger = logging.getLogger(__name__)

_PROBE_ERRORS = (
    asyncio.TimeoutError,
    aiohttp.ClientError,
    websockets.exceptions.WebSocketException,
    ConnectionError,
    OSError,
)


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------

@dataclass
class LatencySample:
    """Round-trip times (ms) of the successful probes of one burst."""

    endpoint: Endpoint
    rtts: List[float] = field(default_factory=list)
    attempts: int = 0
    last_error: Optional[str] = None
    server_version: str = ""

    @property
    def ping_ms(self) -> float:
        return calculate_ping(self.rtts)

    @property
    def jitter_ms(self) -> float:
        return calculate_jitter(self.rtts)

    @property
    def min_ms(self) -> float:
        return min(self.rtts) if self.rtts else 0.0

    @property
    def packet_loss(self) -> float:
        """Percentage of attempted probes that got no answer."""
        if self.attempts <= 0:
            return 0.0
        return (self.attempts - len(self.rtts)) / self.attempts * 100

    def to_dict(self) -> dict:
        return {
            "server_id": self.endpoint.id,
            "rtts": [round(r, 3) for r in self.rtts],
            "ping_ms": round(self.ping_ms, 3),
            "jitter_ms": round(self.jitter_ms, 3),
            "min_ms": round(self.min_ms, 3),
            "attempts": self.attempts,
            "packet_loss": round(self.packet_loss, 1),
        }


# ---------------------------------------------------------------------------
# Prober
# ---------------------------------------------------------------------------

class LatencyProber:
    """Issue probe bursts against endpoints and collect RTTs."""

    def __init__(self, probe_timeout: float = PROBE_TIMEOUT) -> None:
        self.probe_timeout = probe_timeout

    async def probe(
        self,
        endpoint: Endpoint,
        sample_count: int = DEFAULT_PING_COUNT,
        deadline: float = PROBE_TIMEOUT,
        interface: Optional[str] = None,
    ) -> LatencySample:
        """Run one burst.  Raises ``LatencyError`` if every probe failed."""
        bind = local_addr(interface)
        sample = LatencySample(endpoint=endpoint)
        end_time = time.perf_counter() + deadline

        try:
            if endpoint.kind == KIND_OOKLA:
                await self._probe_ws(endpoint, sample, sample_count, end_time, bind)
            else:
                await self._probe_http(endpoint, sample, sample_count, end_time, bind)
        except _PROBE_ERRORS as exc:
            sample.last_error = str(exc) or exc.__class__.__name__
            logger.debug("Probe burst to %s aborted: %s", endpoint.label, sample.last_error)

        if not sample.rtts:
            raise LatencyError(
                f"all {sample.attempts} probe(s) to {endpoint.label} failed"
                + (f" ({sample.last_error})" if sample.last_error else ""),
                attempts=sample.attempts,
                last_error=sample.last_error,
            )

        logger.debug(
            "%s: %d/%d probes, ping %.1f ms, jitter %.2f ms",
            endpoint.label, len(sample.rtts), sample.attempts,
            sample.ping_ms, sample.jitter_ms,
        )
        return sample

    def _remaining(self, end_time: float) -> float:
        return min(self.probe_timeout, end_time - time.perf_counter())

    # -- HTTP ---------------------------------------------------------------

    async def _probe_http(
        self,
        endpoint: Endpoint,
        sample: LatencySample,
        count: int,
        end_time: float,
        bind: Optional[Tuple[str, int]],
    ) -> None:
        connector = aiohttp.TCPConnector(limit=1, local_addr=bind)
        timeout = aiohttp.ClientTimeout(total=None, connect=self.probe_timeout)
        url = endpoint.probe_url

        async with aiohttp.ClientSession(
            headers=endpoint.headers,
            connector=connector,
            timeout=timeout,
        ) as session:
            # Warm-up: open the keep-alive connection outside the timed probes.
            remaining = self._remaining(end_time)
            if remaining > 0:
                try:
                    await asyncio.wait_for(self._http_round_trip(session, url), remaining)
                except (asyncio.TimeoutError, aiohttp.ClientError) as exc:
                    logger.debug("Warm-up request to %s failed: %s", endpoint.label, exc)

            for _ in range(count):
                remaining = self._remaining(end_time)
                if remaining <= 0:
                    break
                sample.attempts += 1
                try:
                    rtt = await asyncio.wait_for(self._http_round_trip(session, url), remaining)
                except (asyncio.TimeoutError, aiohttp.ClientError) as exc:
                    sample.last_error = str(exc) or exc.__class__.__name__
                    continue
                sample.rtts.append(rtt)

    @staticmethod
    async def _http_round_trip(session: aiohttp.ClientSession, url: str) -> float:
        start = time.perf_counter()
        async with session.get(url) as resp:
            resp.raise_for_status()
            await resp.read()
        return (time.perf_counter() - start) * 1000

    # -- WebSocket ----------------------------------------------------------

    async def _probe_ws(
        self,
        endpoint: Endpoint,
        sample: LatencySample,
        count: int,
        end_time: float,
        bind: Optional[Tuple[str, int]],
    ) -> None:
        extra = {"local_addr": bind} if bind else {}
        async with websockets.connect(
            endpoint.probe_url,
            additional_headers=endpoint.headers,
            ping_interval=None,
            close_timeout=2,
            open_timeout=min(WS_CONNECT_TIMEOUT, max(end_time - time.perf_counter(), 0.1)),
            **extra,
        ) as ws:
            await self._read_handshake(ws, sample)

            # PONGs owed to PINGs that already timed out
            stale = 0
            for _ in range(count):
                remaining = self._remaining(end_time)
                if remaining <= 0:
                    break
                sample.attempts += 1
                rtt, stale = await self._ping_once(ws, remaining, sample, stale)
                if rtt is not None:
                    sample.rtts.append(rtt)

    @staticmethod
    async def _read_handshake(ws, sample: LatencySample) -> None:
        """Consume HELLO / YOURIP / CAPABILITIES messages."""
        start = time.perf_counter()
        received = 0

        while time.perf_counter() - start < WS_HANDSHAKE_TIMEOUT:
            try:
                msg = await asyncio.wait_for(ws.recv(), timeout=WS_MSG_TIMEOUT)
            except asyncio.TimeoutError:
                break

            if msg.startswith("HELLO"):
                parts = msg.split()
                if len(parts) >= 2:
                    sample.server_version = parts[1]

            received += 1
            if received >= 3:
                break

    @staticmethod
    async def _ping_once(
        ws, timeout: float, sample: LatencySample, stale: int = 0,
    ) -> Tuple[Optional[float], int]:
        """Send PING and wait for its PONG.

        The first *stale* PONGs belong to earlier PINGs that timed out and are
        dropped.  Returns the RTT in ms (``None`` on timeout) and the number of
        PONGs still owed afterwards.
        """
        send_time = time.perf_counter() * 1000
        deadline = time.perf_counter() + timeout
        await ws.send(f"PING {int(send_time)}")

        while True:
            try:
                left = max(deadline - time.perf_counter(), 0)
                msg = await asyncio.wait_for(ws.recv(), timeout=left)
            except asyncio.TimeoutError:
                sample.last_error = "ping timeout"
                return None, stale + 1

            if not str(msg).startswith("PONG"):
                sample.last_error = f"unexpected response: {str(msg)[:50]}"
                continue
            if stale:
                logger.debug("Dropping late PONG (%d still owed)", stale - 1)
                stale -= 1
                continue
            return time.perf_counter() * 1000 - send_time, 0
