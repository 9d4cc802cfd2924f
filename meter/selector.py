"""
Server selection.

Single-server mode probes every candidate briefly and keeps the one with
the lowest mean ping; multi-server mode keeps all of them in input order.
"""
from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Tuple

from .api import Endpoint
from .constants import DEFAULT_SELECTION_PING_COUNT, SELECTION_TIMEOUT
from .errors import MeterError, SelectorError, TransportError
from .latency import LatencyProber

logger = logging.getLogger(__name__)


def pick_best(pairs: Sequence[Tuple[Endpoint, Optional[float]]]) -> Endpoint:
    """Return the endpoint with the lowest ping; ties go to the first listed.

    A ``None`` ping marks an unreachable candidate.
    """
    best: Optional[Tuple[Endpoint, float]] = None
    for endpoint, ping in pairs:
        if ping is None:
            continue
        if best is None or ping < best[1]:
            best = (endpoint, ping)
    if best is None:
        raise SelectorError(f"none of {len(pairs)} candidate server(s) is reachable")
    return best[0]


class ServerSelector:
    """Chooses which endpoint(s) an iteration measures against."""

    def __init__(
        self,
        prober: Optional[LatencyProber] = None,
        ping_count: int = DEFAULT_SELECTION_PING_COUNT,
    ) -> None:
        self.prober = prober or LatencyProber()
        self.ping_count = ping_count
        self.last_pings: List[Tuple[Endpoint, Optional[float]]] = []

    async def select(
        self,
        candidates: Sequence[Endpoint],
        probe_deadline: float = SELECTION_TIMEOUT,
        interface: Optional[str] = None,
    ) -> Endpoint:
        """Probe every candidate (sequentially) and return the fastest."""
        pairs: List[Tuple[Endpoint, Optional[float]]] = []
        for endpoint in candidates:
            try:
                sample = await self.prober.probe(
                    endpoint, self.ping_count, probe_deadline, interface
                )
            except TransportError:
                # local binding failed; no other candidate can do better
                raise
            except MeterError as exc:
                logger.info("Server %s unreachable: %s", endpoint.label, exc)
                pairs.append((endpoint, None))
            else:
                pairs.append((endpoint, sample.ping_ms))

        self.last_pings = pairs
        chosen = pick_best(pairs)
        logger.info("Selected server %s", chosen.label)
        return chosen

    @staticmethod
    def select_all(candidates: Sequence[Endpoint]) -> List[Endpoint]:
        return list(candidates)
