"""
Network measurement statistics.

Pure functions -- no I/O, no side effects.  Everything here is
deterministic and easy to unit-test.
"""
from __future__ import annotations

import statistics
from typing import Sequence


# ---------------------------------------------------------------------------
# Derived metrics
# ---------------------------------------------------------------------------

def calculate_mbps(bytes_transferred: int, elapsed_seconds: float) -> float:
    """Megabits per second: ``bytes * 8 / (seconds * 1e6)``.

    A non-positive duration yields 0.0 rather than infinity.
    """
    if elapsed_seconds <= 0 or bytes_transferred <= 0:
        return 0.0
    return (bytes_transferred * 8) / (elapsed_seconds * 1_000_000)


def calculate_ping(samples: Sequence[float]) -> float:
    """Mean round-trip time.  The mean (not the minimum) reflects typical latency."""
    if not samples:
        return 0.0
    return statistics.mean(samples)


def calculate_jitter(samples: Sequence[float]) -> float:
    """Mean absolute difference between consecutive samples (Ookla method)."""
    if len(samples) < 2:
        return 0.0
    diffs = [abs(samples[i] - samples[i - 1]) for i in range(1, len(samples))]
    return statistics.mean(diffs)


def calculate_mean(values: Sequence[float]) -> float:
    if not values:
        return 0.0
    return statistics.mean(values)


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------

def format_speed(speed_mbps: float) -> str:
    """Human-readable speed string."""
    if speed_mbps >= 1000:
        return f"{speed_mbps / 1000:.2f} Gbps"
    return f"{speed_mbps:.2f} Mbps"


def format_latency(latency_ms: float) -> str:
    """Human-readable latency string."""
    if latency_ms >= 1000:
        return f"{latency_ms / 1000:.2f} s"
    return f"{latency_ms:.1f} ms"
