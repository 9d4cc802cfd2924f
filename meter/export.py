"""
ClickHouse export over the HTTP interface.

One row per ``Sample`` goes into ``internet_speed`` (created on first use)::

    timestamp, download_speed_mbps, upload_speed_mbps, ping_ms, server_id, jitter_ms

Rows are sent as ``JSONEachRow`` in the request body, so no value is ever
spliced into SQL text.
"""
from __future__ import annotations

import asyncio
import json
import logging
from datetime import timezone
from typing import Iterable, Optional

import aiohttp

from .results import AggregateResult, Sample

logger = logging.getLogger(__name__)

TABLE = "internet_speed"

CREATE_TABLE_SQL = f"""
CREATE TABLE IF NOT EXISTS {TABLE} (
    id UUID DEFAULT generateUUIDv4(),
    timestamp DateTime DEFAULT now(),
    download_speed_mbps Float32,
    upload_speed_mbps Float32,
    ping_ms Float32,
    server_id String,
    jitter_ms Float32
) ENGINE = MergeTree()
PARTITION BY toYYYYMM(timestamp)
ORDER BY (timestamp, id)
SETTINGS index_granularity = 8192
""".strip()

INSERT_SQL = (
    f"INSERT INTO {TABLE} "
    "(timestamp, download_speed_mbps, upload_speed_mbps, ping_ms, server_id, jitter_ms) "
    "FORMAT JSONEachRow"
)


class ExportError(Exception):
    """ClickHouse rejected a query or could not be reached."""


def sample_to_row(sample: Sample) -> dict:
    row = sample.to_row()
    row["timestamp"] = sample.timestamp.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
    return row


class ClickHouseExporter:
    """Async context-manager writing samples to ClickHouse."""

    def __init__(
        self,
        url: str,
        database: str = "default",
        user: Optional[str] = None,
        password: Optional[str] = None,
        timeout: float = 10.0,
    ) -> None:
        self.url = url.rstrip("/") + "/"
        self.database = database
        self.user = user
        self.password = password
        self.timeout = timeout
        self._session: Optional[aiohttp.ClientSession] = None

    # -- Context manager ----------------------------------------------------

    async def __aenter__(self) -> ClickHouseExporter:
        headers = {}
        if self.user:
            headers["X-ClickHouse-User"] = self.user
        if self.password:
            headers["X-ClickHouse-Key"] = self.password
        self._session = aiohttp.ClientSession(
            headers=headers,
            timeout=aiohttp.ClientTimeout(total=self.timeout),
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        if self._session:
            await self._session.close()
            self._session = None

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            raise RuntimeError(
                "ClickHouseExporter must be used as an async context manager "
                "(async with ClickHouseExporter(url) as exporter: ...)"
            )
        return self._session

    # -- Queries ------------------------------------------------------------

    async def _query(self, sql: str, body: bytes = b"") -> str:
        session = self._ensure_session()
        params = {"database": self.database, "query": sql}
        try:
            async with session.post(self.url, params=params, data=body) as resp:
                text = await resp.text()
                if resp.status >= 400:
                    raise ExportError(f"ClickHouse HTTP {resp.status}: {text.strip()[:200]}")
                return text
        except asyncio.TimeoutError as exc:
            raise ExportError(
                f"ClickHouse at {self.url} did not answer within {self.timeout:.1f}s"
            ) from exc
        except aiohttp.ClientError as exc:
            raise ExportError(f"Cannot reach ClickHouse at {self.url}: {exc}") from exc

    async def ensure_table(self) -> None:
        await self._query(CREATE_TABLE_SQL)

    async def insert(self, samples: Iterable[Sample]) -> int:
        rows = [json.dumps(sample_to_row(s)) for s in samples]
        if not rows:
            return 0
        await self._query(INSERT_SQL, ("\n".join(rows) + "\n").encode("utf-8"))
        return len(rows)

    async def export(self, result: AggregateResult) -> int:
        """Create the table if needed and insert every sample.  Returns row count."""
        await self.ensure_table()
        count = await self.insert(result.samples)
        logger.info("Exported %d row(s) to ClickHouse table %s", count, TABLE)
        return count
