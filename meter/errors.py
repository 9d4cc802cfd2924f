"""
Measurement error taxonomy.

Every failure the engine reports is a ``MeterError`` subclass so callers
can catch one type and still inspect the specific kind.
"""
from __future__ import annotations

import enum
from typing import List, Optional


class MeterError(Exception):
    """Base class for engine failures.

    ``stage`` names the measurement step that failed.  ``samples`` and
    ``failures`` are filled in by the orchestrator when a run is cut short,
    so callers can still report partial data.
    """

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.stage: Optional[str] = None
        self.samples: List = []
        self.failures: List = []


class TransportErrorKind(str, enum.Enum):
    TIMEOUT = "timeout"
    CONNECTION_REFUSED = "connection_refused"
    PROTOCOL_ERROR = "protocol_error"


class TransportError(MeterError):
    """A download or upload could not complete.

    On ``TIMEOUT`` the bytes and seconds observed before the deadline are
    carried along; the throughput tester decides whether they are usable.
    """

    def __init__(
        self,
        kind: TransportErrorKind,
        message: str = "",
        bytes_transferred: int = 0,
        elapsed: float = 0.0,
    ) -> None:
        super().__init__(message or kind.value)
        self.kind = kind
        self.bytes_transferred = bytes_transferred
        self.elapsed = elapsed

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.message}"


class LatencyError(MeterError):
    """Every probe in a burst failed."""

    def __init__(self, message: str = "all probes failed", attempts: int = 0,
                 last_error: Optional[str] = None) -> None:
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error


class SelectorError(MeterError):
    """No candidate server answered a latency probe."""

    def __init__(self, message: str = "no reachable server") -> None:
        super().__init__(message)


class AggregationError(MeterError):
    """There are no samples to aggregate (every iteration failed)."""

    def __init__(self, message: str = "no samples") -> None:
        super().__init__(message)
