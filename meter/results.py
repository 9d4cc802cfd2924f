"""
Per-iteration samples and their aggregate.

Samples and the aggregate are frozen: the formatting, history and export
layers only ever read them.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, Optional, Tuple

from .errors import AggregationError
from .stats import calculate_mean


@dataclass(frozen=True)
class Sample:
    """One iteration's metrics against one server."""

    download_mbps: float
    upload_mbps: float
    ping_ms: float
    jitter_ms: float
    server_id: str
    timestamp: datetime
    iteration: int = 1
    degraded: bool = False

    def __post_init__(self) -> None:
        for name in ("download_mbps", "upload_mbps", "ping_ms", "jitter_ms"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be non-negative")

    def to_row(self) -> Dict[str, Any]:
        """Flat record in export field order."""
        return {
            "timestamp": self.timestamp.isoformat(),
            "download_speed_mbps": round(self.download_mbps, 2),
            "upload_speed_mbps": round(self.upload_mbps, 2),
            "ping_ms": round(self.ping_ms, 2),
            "server_id": self.server_id,
            "jitter_ms": round(self.jitter_ms, 2),
        }

    def to_dict(self) -> Dict[str, Any]:
        row = self.to_row()
        row["iteration"] = self.iteration
        row["degraded"] = self.degraded
        return row


@dataclass(frozen=True)
class IterationFailure:
    """An iteration (or one server of it) that produced no sample."""

    iteration: int
    server_id: str
    stage: str
    kind: str
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "iteration": self.iteration,
            "server_id": self.server_id,
            "stage": self.stage,
            "kind": self.kind,
            "message": self.message,
        }


@dataclass(frozen=True)
class AggregateResult:
    """Samples in iteration order plus their means."""

    samples: Tuple[Sample, ...]
    mean_download_mbps: float
    mean_upload_mbps: float
    mean_ping_ms: float
    mean_jitter_ms: float
    failures: Tuple[IterationFailure, ...] = field(default_factory=tuple)
    iterations: int = 0

    @property
    def degraded(self) -> bool:
        """True when a sample is partial or an iteration was lost."""
        return bool(self.failures) or any(s.degraded for s in self.samples)

    @property
    def server_ids(self) -> Tuple[str, ...]:
        seen: Dict[str, None] = {}
        for s in self.samples:
            seen.setdefault(s.server_id, None)
        return tuple(seen)

    def per_server(self) -> Dict[str, AggregateResult]:
        """Independent aggregate per server id, in first-seen order."""
        return {
            sid: aggregate(
                [s for s in self.samples if s.server_id == sid],
                failures=[f for f in self.failures if f.server_id == sid],
                iterations=self.iterations,
            )
            for sid in self.server_ids
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": {
                "download_mbps": round(self.mean_download_mbps, 2),
                "upload_mbps": round(self.mean_upload_mbps, 2),
                "ping_ms": round(self.mean_ping_ms, 2),
                "jitter_ms": round(self.mean_jitter_ms, 2),
                "iterations": self.iterations,
                "samples": len(self.samples),
                "degraded": self.degraded,
            },
            "samples": [s.to_dict() for s in self.samples],
            "failures": [f.to_dict() for f in self.failures],
        }


def aggregate(
    samples: Iterable[Sample],
    failures: Iterable[IterationFailure] = (),
    iterations: Optional[int] = None,
) -> AggregateResult:
    """Fold samples into an ``AggregateResult``.

    Raises ``AggregationError`` when *samples* is empty: a fully failed run
    is an error, not a row of zeros.
    """
    ordered = tuple(samples)
    if not ordered:
        err = AggregationError("no samples: every iteration failed")
        err.failures = list(failures)
        raise err

    return AggregateResult(
        samples=ordered,
        mean_download_mbps=calculate_mean([s.download_mbps for s in ordered]),
        mean_upload_mbps=calculate_mean([s.upload_mbps for s in ordered]),
        mean_ping_ms=calculate_mean([s.ping_ms for s in ordered]),
        mean_jitter_ms=calculate_mean([s.jitter_ms for s in ordered]),
        failures=tuple(failures),
        iterations=iterations if iterations is not None else len({s.iteration for s in ordered}),
    )
