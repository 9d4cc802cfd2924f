"""
Download / upload throughput measurement.

Thin layer over ``TransportClient`` that turns a transfer into a rate and
applies the partial-transfer policy, identically for both directions:

* timeout with zero bytes moved   -> the ``TransportError`` propagates;
* timeout with some bytes moved   -> a *degraded* result computed from the
  partial bytes over the partial elapsed time (an understated estimate is
  kept rather than discarding the iteration);
* any other transport error       -> propagates.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from .api import Endpoint
from .errors import TransportError, TransportErrorKind
from .stats import calculate_mbps
from .transport import Direction, TransportClient

logger = logging.getLogger(__name__)


@dataclass
class ThroughputResult:
    """Rate for one direction of one iteration."""

    mbps: float = 0.0
    bytes_transferred: int = 0
    elapsed: float = 0.0
    degraded: bool = False

    @classmethod
    def from_transfer(cls, bytes_transferred: int, elapsed: float,
                      degraded: bool = False) -> ThroughputResult:
        return cls(
            mbps=calculate_mbps(bytes_transferred, elapsed),
            bytes_transferred=bytes_transferred,
            elapsed=elapsed,
            degraded=degraded,
        )

    def to_dict(self) -> dict:
        return {
            "mbps": round(self.mbps, 2),
            "bytes": self.bytes_transferred,
            "elapsed_s": round(self.elapsed, 4),
            "degraded": self.degraded,
        }


class ThroughputTester:
    """Measures Mbps in one direction via a ``TransportClient``."""

    def __init__(self, transport: Optional[TransportClient] = None) -> None:
        self.transport = transport or TransportClient()

    async def measure_download(
        self,
        endpoint: Endpoint,
        size_bytes: int,
        deadline: float,
        interface: Optional[str] = None,
    ) -> ThroughputResult:
        return await self._measure(Direction.DOWNLOAD, endpoint, size_bytes, deadline, interface)

    async def measure_upload(
        self,
        endpoint: Endpoint,
        size_bytes: int,
        deadline: float,
        interface: Optional[str] = None,
    ) -> ThroughputResult:
        return await self._measure(Direction.UPLOAD, endpoint, size_bytes, deadline, interface)

    async def _measure(
        self,
        direction: Direction,
        endpoint: Endpoint,
        size_bytes: int,
        deadline: float,
        interface: Optional[str],
    ) -> ThroughputResult:
        try:
            transfer = await self.transport.transfer(
                direction, endpoint, size_bytes, deadline, interface
            )
        except TransportError as exc:
            if exc.kind is not TransportErrorKind.TIMEOUT or exc.bytes_transferred <= 0:
                raise
            result = ThroughputResult.from_transfer(
                exc.bytes_transferred, exc.elapsed, degraded=True
            )
            logger.warning(
                "%s from %s timed out after %d of %d bytes; using partial rate %.2f Mbps",
                direction.value, endpoint.label, exc.bytes_transferred, size_bytes, result.mbps,
            )
            return result

        return ThroughputResult.from_transfer(transfer.bytes_transferred, transfer.elapsed)
