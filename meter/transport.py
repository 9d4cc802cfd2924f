"""
Timed HTTP transfers against a measurement endpoint.

One ``transfer()`` call is one download or one upload.  Only the body
phase is timed: for downloads the clock starts once the response headers
have arrived; for uploads it runs from the first chunk written until the
response status arrives, i.e. until the server has read the whole body.
DNS, TCP/TLS setup and request dispatch never count against the rate.

An upload cut by the deadline only counts bytes that left this host:
whatever still sits in the transport buffer or the kernel send queue is
subtracted.

With ``connections > 1`` the requested size is split across parallel
connections that share one deadline; their byte counts and timing windows
are merged into a single ``TransferResult``.
"""
from __future__ import annotations

import asyncio
import enum
import logging
import os
import struct
import sys
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

import aiohttp
from aiohttp.payload import Payload

from .api import Endpoint
from .binding import local_addr
from .constants import (
    CHUNK_SIZE,
    DEFAULT_CONNECTIONS,
    MAX_CONNECTIONS,
    MIN_CONNECTIONS,
    UPLOAD_BUFFER_SIZE,
)
from .errors import TransportError, TransportErrorKind

if sys.platform.startswith("linux"):
    import fcntl
    import termios

    _TIOCOUTQ: Optional[int] = termios.TIOCOUTQ
else:
    _TIOCOUTQ = None

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


class Direction(str, enum.Enum):
    DOWNLOAD = "download"
    UPLOAD = "upload"


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------

@dataclass
class TransferResult:
    """Bytes moved and seconds spent in the body phase of one transfer."""

    bytes_transferred: int = 0
    elapsed: float = 0.0
    connections: int = 1

    def to_dict(self) -> dict:
        return {
            "bytes": self.bytes_transferred,
            "elapsed_s": round(self.elapsed, 4),
            "connections": self.connections,
        }


# ---------------------------------------------------------------------------
# Shared progress
# ---------------------------------------------------------------------------

class _Progress:
    """Byte count and timing window shared by the workers of one transfer."""

    def __init__(self, total: int, on_progress: Optional[ProgressCallback] = None) -> None:
        self.total = total
        self.bytes = 0
        self.started: Optional[float] = None
        self.finished: Optional[float] = None
        self.transports: List[asyncio.BaseTransport] = []
        self._on_progress = on_progress

    def begin(self) -> None:
        if self.started is None:
            self.started = time.perf_counter()

    def add(self, n: int) -> None:
        self.bytes += n
        if self._on_progress:
            self._on_progress(self.bytes, self.total)

    def end(self) -> None:
        now = time.perf_counter()
        self.finished = now if self.finished is None else max(self.finished, now)

    def elapsed(self, until: Optional[float] = None) -> float:
        if self.started is None:
            return 0.0
        end = until if until is not None else (self.finished or time.perf_counter())
        return max(end - self.started, 0.0)

    def unsent(self) -> int:
        """Upload bytes counted by ``add`` that are still queued on this host."""
        return sum(_queued_bytes(t) for t in self.transports)

    def delivered(self, unsent: int = 0) -> int:
        return max(self.bytes - unsent, 0)


def _queued_bytes(transport: Optional[asyncio.BaseTransport]) -> int:
    """Bytes held by the transport buffer plus the kernel send queue (Linux)."""
    if transport is None:
        return 0
    queued = transport.get_write_buffer_size()
    sock = transport.get_extra_info("socket")
    if sock is None or _TIOCOUTQ is None:
        return queued
    try:
        raw = fcntl.ioctl(sock.fileno(), _TIOCOUTQ, b"\0\0\0\0")
    except OSError:
        return queued
    return queued + struct.unpack("i", raw)[0]


def _split(size_bytes: int, parts: int) -> List[int]:
    """Split *size_bytes* into at most *parts* non-empty shares."""
    base, extra = divmod(size_bytes, parts)
    shares = [base + (1 if i < extra else 0) for i in range(parts)]
    return [s for s in shares if s > 0]


def _as_transport_error(exc: BaseException, endpoint: Endpoint) -> TransportError:
    if isinstance(exc, TransportError):
        return exc
    if isinstance(exc, aiohttp.ClientConnectorError):
        return TransportError(
            TransportErrorKind.CONNECTION_REFUSED,
            f"cannot connect to {endpoint.label}: {exc}",
        )
    if isinstance(exc, asyncio.TimeoutError):
        return TransportError(TransportErrorKind.TIMEOUT, f"{endpoint.label} stopped responding")
    if isinstance(exc, aiohttp.ClientError):
        return TransportError(
            TransportErrorKind.PROTOCOL_ERROR,
            f"{endpoint.label}: {exc.__class__.__name__}: {exc}",
        )
    if isinstance(exc, OSError):
        return TransportError(
            TransportErrorKind.CONNECTION_REFUSED,
            f"cannot connect to {endpoint.label}: {exc}",
        )
    raise exc


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class TransportClient:
    """
    Performs single timed downloads and uploads.

    The upload payload is cycled from a pre-generated random buffer so that
    generating data never competes with the measurement.
    """

    def __init__(
        self,
        connections: int = DEFAULT_CONNECTIONS,
        chunk_size: int = CHUNK_SIZE,
    ) -> None:
        self.connections = max(MIN_CONNECTIONS, min(connections, MAX_CONNECTIONS))
        self._data_buffer = os.urandom(UPLOAD_BUFFER_SIZE)
        self._chunk_size = min(chunk_size, len(self._data_buffer))
        self.on_progress: Optional[ProgressCallback] = None

    async def transfer(
        self,
        direction: Direction,
        endpoint: Endpoint,
        size_bytes: int,
        deadline: float,
        interface: Optional[str] = None,
    ) -> TransferResult:
        """Move *size_bytes* in *direction* within *deadline* seconds.

        Raises ``TransportError``.  On ``TIMEOUT`` the error carries the
        partial byte count and the partial body-phase duration.
        """
        if size_bytes <= 0:
            raise ValueError("size_bytes must be positive")
        if deadline <= 0:
            raise ValueError("deadline must be positive")

        bind = local_addr(interface)
        shares = _split(size_bytes, self.connections)
        progress = _Progress(size_bytes, self.on_progress)
        worker = self._download if direction is Direction.DOWNLOAD else self._upload

        logger.debug(
            "%s %d bytes via %s (%d connection(s), deadline %.1fs, bind %s)",
            direction.value, size_bytes, endpoint.label, len(shares), deadline, bind,
        )

        connector = aiohttp.TCPConnector(
            limit=len(shares),
            limit_per_host=len(shares),
            local_addr=bind,
            enable_cleanup_closed=True,
        )
        timeout = aiohttp.ClientTimeout(total=None, connect=deadline)
        headers = {**endpoint.headers, "Accept-Encoding": "identity"}

        async with aiohttp.ClientSession(
            headers=headers,
            connector=connector,
            timeout=timeout,
        ) as session:
            tasks = [
                asyncio.create_task(worker(session, endpoint, share, progress))
                for share in shares
            ]
            try:
                done, pending = await asyncio.wait(
                    tasks, timeout=deadline, return_when=asyncio.FIRST_EXCEPTION
                )
                # must be read before cancellation tears the connections down
                unsent = progress.unsent() if pending else 0
            finally:
                stopped = time.perf_counter()
                for t in tasks:
                    if not t.done():
                        t.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)

        for t in done:
            exc = t.exception()
            if exc is not None:
                err = _as_transport_error(exc, endpoint)
                err.bytes_transferred = progress.delivered(unsent)
                err.elapsed = progress.elapsed(stopped)
                raise err

        if pending:
            if unsent:
                logger.debug("%d upload bytes still queued locally at the deadline", unsent)
            raise TransportError(
                TransportErrorKind.TIMEOUT,
                f"{direction.value} from {endpoint.label} exceeded the {deadline:.1f}s deadline",
                bytes_transferred=progress.delivered(unsent),
                elapsed=progress.elapsed(stopped),
            )

        result = TransferResult(
            bytes_transferred=progress.bytes,
            elapsed=progress.elapsed(),
            connections=len(shares),
        )
        logger.debug(
            "%s finished: %d bytes in %.3fs", direction.value,
            result.bytes_transferred, result.elapsed,
        )
        return result

    # -- Workers ------------------------------------------------------------

    async def _download(
        self,
        session: aiohttp.ClientSession,
        endpoint: Endpoint,
        size: int,
        progress: _Progress,
    ) -> None:
        async with session.get(endpoint.download_url(size)) as resp:
            if resp.status >= 400:
                raise TransportError(
                    TransportErrorKind.PROTOCOL_ERROR,
                    f"HTTP {resp.status} from {endpoint.label}",
                )
            progress.begin()
            remaining = size
            while remaining > 0:
                chunk = await resp.content.read(min(self._chunk_size, remaining))
                if not chunk:
                    break
                remaining -= len(chunk)
                progress.add(len(chunk))
            progress.end()
            if remaining > 0:
                raise TransportError(
                    TransportErrorKind.PROTOCOL_ERROR,
                    f"{endpoint.label} closed the body after {size - remaining} of {size} bytes",
                )

    async def _upload(
        self,
        session: aiohttp.ClientSession,
        endpoint: Endpoint,
        size: int,
        progress: _Progress,
    ) -> None:
        headers = {
            "Content-Type": "application/octet-stream",
            "Content-Length": str(size),
        }
        body = _UploadBody(self._data_buffer, size, self._chunk_size, progress)
        async with session.post(endpoint.upload_url, data=body, headers=headers) as resp:
            # the status line only comes back once the server read the body
            progress.end()
            if resp.status >= 400:
                raise TransportError(
                    TransportErrorKind.PROTOCOL_ERROR,
                    f"HTTP {resp.status} from {endpoint.label}",
                )
            await resp.read()


class _UploadBody(Payload):
    """Exactly *size* bytes cycled from *buffer*, counted as the writer takes them.

    The connection's transport is recorded on the progress so a deadline cut
    can tell written bytes from bytes that actually left the host.
    """

    def __init__(self, buffer: bytes, size: int, chunk_size: int, progress: _Progress) -> None:
        super().__init__(buffer, content_type="application/octet-stream")
        self._buffer = buffer
        self._size = size
        self._chunk_size = chunk_size
        self._progress = progress

    def decode(self, encoding: str = "utf-8", errors: str = "strict") -> str:
        raise TypeError("upload body is binary")

    async def write(self, writer) -> None:
        transport = getattr(writer, "transport", None)
        if transport is not None:
            self._progress.transports.append(transport)

        buffer = self._buffer
        buffer_size = len(buffer)
        pos = 0
        remaining = self._size

        self._progress.begin()
        while remaining > 0:
            n = min(self._chunk_size, remaining)
            end = pos + n
            if end > buffer_size:
                chunk = buffer[pos:] + buffer[: end - buffer_size]
                pos = end - buffer_size
            else:
                chunk = buffer[pos:end]
                pos = end % buffer_size
            await writer.write(chunk)
            remaining -= n
            self._progress.add(n)
