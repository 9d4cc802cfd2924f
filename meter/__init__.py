"""Measurement engine -- timed transfers, latency probes, and aggregation."""

from .api import Endpoint, SpeedtestAPI
from .config import TestConfig
from .errors import (
    AggregationError,
    LatencyError,
    MeterError,
    SelectorError,
    TransportError,
    TransportErrorKind,
)
from .latency import LatencyProber, LatencySample
from .orchestrator import IterationOrchestrator, run_test
from .results import AggregateResult, IterationFailure, Sample, aggregate
from .selector import ServerSelector, pick_best
from .stats import calculate_jitter, calculate_mbps, calculate_ping
from .throughput import ThroughputResult, ThroughputTester
from .transport import Direction, TransferResult, TransportClient

__all__ = [
    "AggregateResult",
    "AggregationError",
    "Direction",
    "Endpoint",
    "IterationFailure",
    "IterationOrchestrator",
    "LatencyError",
    "LatencyProber",
    "LatencySample",
    "MeterError",
    "Sample",
    "SelectorError",
    "ServerSelector",
    "SpeedtestAPI",
    "TestConfig",
    "ThroughputResult",
    "ThroughputTester",
    "TransferResult",
    "TransportClient",
    "TransportError",
    "TransportErrorKind",
    "aggregate",
    "calculate_jitter",
    "calculate_mbps",
    "calculate_ping",
    "pick_best",
    "run_test",
]
