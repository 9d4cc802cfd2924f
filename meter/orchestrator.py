"""
Iteration orchestration.

Each iteration walks a fixed sequence of steps::

    SelectServer -> ProbeLatency -> MeasureDownload -> MeasureUpload -> EmitSample

Iterations, and the steps inside them, are awaited strictly one after
another so that no transfer ever overlaps another one.  In multi-server
mode the selection step yields every configured server and the remaining
steps run once per server.

Failure policy:

* ``SelectorError`` ends the run (no reachable server, nothing to measure);
* an interface that cannot be bound ends the run before the first step
  with ``TransportError`` (kind ``CONNECTION_REFUSED``);
* ``LatencyError`` / ``TransportError`` abort the current iteration, which
  is retried once (``TestConfig.retry_failed``) and then recorded as an
  ``IterationFailure`` while the run moves on;
* a run that produced no sample at all raises ``AggregationError``.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional, Tuple, TypeVar

from .api import Endpoint
from .binding import resolve_interface
from .config import TestConfig
from .constants import SELECTION_TIMEOUT
from .errors import LatencyError, MeterError, SelectorError, TransportError
from .latency import LatencyProber
from .results import AggregateResult, IterationFailure, Sample, aggregate
from .selector import ServerSelector
from .throughput import ThroughputTester
from .transport import TransportClient

logger = logging.getLogger(__name__)

STAGE_SELECT = "select_server"
STAGE_LATENCY = "probe_latency"
STAGE_DOWNLOAD = "measure_download"
STAGE_UPLOAD = "measure_upload"
STAGE_EMIT = "emit_sample"

StageCallback = Callable[[int, str, Optional[Endpoint]], None]
Clock = Callable[[], datetime]

T = TypeVar("T")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _failure_kind(exc: MeterError) -> str:
    if isinstance(exc, TransportError):
        return exc.kind.value
    if isinstance(exc, LatencyError):
        return "all_probes_failed"
    return exc.__class__.__name__


class IterationOrchestrator:
    """
    Runs ``config.iterations`` measurement cycles and aggregates them.

    Collaborators default to the real network implementations; tests pass
    fakes that honour the same method signatures.
    """

    def __init__(
        self,
        prober: Optional[LatencyProber] = None,
        tester: Optional[ThroughputTester] = None,
        selector: Optional[ServerSelector] = None,
        clock: Clock = _utcnow,
    ) -> None:
        self.prober = prober
        self.tester = tester
        self.selector = selector
        self.clock = clock
        self.on_stage: Optional[StageCallback] = None

    async def run(self, config: TestConfig) -> AggregateResult:
        prober = self.prober or LatencyProber()
        tester = self.tester or ThroughputTester(TransportClient(config.connections))
        selector = self.selector or ServerSelector(prober, config.selection_ping_count)

        samples: List[Sample] = []
        failures: List[IterationFailure] = []

        # a missing interface would fail every step of every iteration alike
        try:
            source = resolve_interface(config.interface)
        except TransportError as exc:
            exc.stage = STAGE_SELECT
            raise
        if source:
            logger.info("Binding to %s (%s)", config.interface, source)

        for iteration in range(1, config.iterations + 1):
            logger.info("Iteration %d/%d", iteration, config.iterations)
            try:
                endpoints = await self._step(
                    iteration, STAGE_SELECT, None,
                    self._select(config, selector),
                )
            except SelectorError as exc:
                exc.samples = list(samples)
                exc.failures = list(failures)
                raise

            for endpoint in endpoints:
                sample, failure = await self._attempt(iteration, endpoint, config, prober, tester)
                if sample is not None:
                    samples.append(sample)
                if failure is not None:
                    failures.append(failure)

        return aggregate(samples, failures, iterations=config.iterations)

    # -- Steps --------------------------------------------------------------

    async def _select(self, config: TestConfig, selector: ServerSelector) -> List[Endpoint]:
        if config.all_servers:
            return selector.select_all(config.servers)
        chosen = await selector.select(
            config.servers,
            min(config.timeout, SELECTION_TIMEOUT),
            config.interface,
        )
        return [chosen]

    async def _attempt(
        self,
        iteration: int,
        endpoint: Endpoint,
        config: TestConfig,
        prober: LatencyProber,
        tester: ThroughputTester,
    ) -> Tuple[Optional[Sample], Optional[IterationFailure]]:
        """Measure once, retrying once on failure when configured."""
        tries = 2 if config.retry_failed else 1
        for attempt in range(1, tries + 1):
            try:
                return await self._measure(iteration, endpoint, config, prober, tester), None
            except MeterError as exc:
                last = exc
                if attempt < tries:
                    logger.warning(
                        "Iteration %d on %s failed at %s (%s); retrying",
                        iteration, endpoint.label, exc.stage, exc,
                    )

        logger.warning(
            "Iteration %d on %s skipped after failure at %s: %s",
            iteration, endpoint.label, last.stage, last,
        )
        return None, IterationFailure(
            iteration=iteration,
            server_id=endpoint.id,
            stage=last.stage or "",
            kind=_failure_kind(last),
            message=str(last),
        )

    async def _measure(
        self,
        iteration: int,
        endpoint: Endpoint,
        config: TestConfig,
        prober: LatencyProber,
        tester: ThroughputTester,
    ) -> Sample:
        latency = await self._step(
            iteration, STAGE_LATENCY, endpoint,
            prober.probe(endpoint, config.ping_count, config.timeout, config.interface),
        )
        download = await self._step(
            iteration, STAGE_DOWNLOAD, endpoint,
            tester.measure_download(
                endpoint, config.download_size_bytes, config.timeout, config.interface
            ),
        )
        upload = await self._step(
            iteration, STAGE_UPLOAD, endpoint,
            tester.measure_upload(
                endpoint, config.upload_size_bytes, config.timeout, config.interface
            ),
        )

        self._notify(iteration, STAGE_EMIT, endpoint)
        sample = Sample(
            download_mbps=download.mbps,
            upload_mbps=upload.mbps,
            ping_ms=latency.ping_ms,
            jitter_ms=latency.jitter_ms,
            server_id=endpoint.id,
            timestamp=self.clock(),
            iteration=iteration,
            degraded=download.degraded or upload.degraded,
        )
        logger.info(
            "Iteration %d on %s: down %.2f Mbps, up %.2f Mbps, ping %.1f ms, jitter %.2f ms",
            iteration, endpoint.label, sample.download_mbps, sample.upload_mbps,
            sample.ping_ms, sample.jitter_ms,
        )
        return sample

    async def _step(
        self,
        iteration: int,
        stage: str,
        endpoint: Optional[Endpoint],
        awaitable: Awaitable[T],
    ) -> T:
        self._notify(iteration, stage, endpoint)
        try:
            return await awaitable
        except MeterError as exc:
            exc.stage = stage
            raise

    def _notify(self, iteration: int, stage: str, endpoint: Optional[Endpoint]) -> None:
        logger.debug("Iteration %d: %s", iteration, stage)
        if self.on_stage:
            self.on_stage(iteration, stage, endpoint)


def run_test(config: TestConfig, **kwargs) -> AggregateResult:
    """Blocking convenience wrapper around ``IterationOrchestrator.run``."""
    return asyncio.run(IterationOrchestrator(**kwargs).run(config))
