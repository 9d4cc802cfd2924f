"""
Measurement endpoints and speedtest.net server discovery.

An ``Endpoint`` is the only thing the engine needs to know about a remote
server: its id, a base URL, and which URL layout it speaks.  Two layouts
are understood:

``cloudflare``
    ``GET {url}/__down?bytes=N``, ``POST {url}/__up``; latency is probed
    with a zero-byte download.

``ookla``
    ``GET {url}/download?size=N``, ``POST {url}/upload``; latency is probed
    over the ``/ws`` WebSocket (PING / PONG).

Server discovery goes through a single ``aiohttp.ClientSession`` managed via
the async-context-manager protocol (``async with SpeedtestAPI() as api: ...``).
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from urllib.parse import urlsplit

import aiohttp

from .constants import (
    COMMON_HEADERS,
    DEFAULT_SERVER_ID,
    DEFAULT_SERVER_URL,
    OOKLA_HEADERS,
    SPEEDTEST_SERVERS_URL,
)

KIND_CLOUDFLARE = "cloudflare"
KIND_OOKLA = "ookla"
KINDS = (KIND_CLOUDFLARE, KIND_OOKLA)


# ---------------------------------------------------------------------------
# Data models
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Endpoint:
    """A single measurement endpoint."""

    id: str
    url: str
    name: str = ""
    kind: str = KIND_CLOUDFLARE

    def __post_init__(self) -> None:
        if self.kind not in KINDS:
            raise ValueError(f"Unknown endpoint kind {self.kind!r} (expected one of {KINDS})")
        parts = urlsplit(self.url)
        if parts.scheme not in ("http", "https") or not parts.netloc:
            raise ValueError(f"Endpoint URL must be http(s)://host[:port], got {self.url!r}")
        object.__setattr__(self, "url", self.url.rstrip("/"))

    # -- Constructors -------------------------------------------------------

    @classmethod
    def parse(cls, value: str) -> Endpoint:
        """Build an endpoint from ``[id=]url[#kind]``.

        Without an explicit id the URL's hostname is used.
        """
        ident = ""
        kind = KIND_CLOUDFLARE
        if "#" in value:
            value, kind = value.rsplit("#", 1)
        if "=" in value.split("://", 1)[0]:
            ident, value = value.split("=", 1)
        if "://" not in value:
            value = f"https://{value}"
        host = urlsplit(value).hostname or value
        return cls(id=ident or host, url=value, name=host, kind=kind)

    @classmethod
    def from_server_dict(cls, data: dict) -> Endpoint:
        """Build an Ookla endpoint from one entry of the speedtest.net server list."""
        host_raw = data.get("host", "")
        hostname = data.get("hostname") or host_raw.split(":")[0]
        port = int(data.get("port", 8080))
        name = data.get("name", "")
        sponsor = data.get("sponsor", "")
        label = f"{name} ({sponsor})" if sponsor else name
        return cls(
            id=str(data.get("id", hostname)),
            url=f"https://{hostname}:{port}",
            name=label,
            kind=KIND_OOKLA,
        )

    @classmethod
    def default(cls) -> Endpoint:
        return cls(id=DEFAULT_SERVER_ID, url=DEFAULT_SERVER_URL, name="Cloudflare")

    # -- Derived URLs -------------------------------------------------------

    def download_url(self, size_bytes: int) -> str:
        if self.kind == KIND_OOKLA:
            return f"{self.url}/download?size={size_bytes}"
        return f"{self.url}/__down?bytes={size_bytes}"

    @property
    def upload_url(self) -> str:
        if self.kind == KIND_OOKLA:
            return f"{self.url}/upload"
        return f"{self.url}/__up"

    @property
    def probe_url(self) -> str:
        """Small round-trip resource used for latency probes."""
        if self.kind == KIND_OOKLA:
            scheme = "wss" if self.url.startswith("https") else "ws"
            return f"{scheme}://{self.url.split('://', 1)[1]}/ws"
        return self.download_url(0)

    @property
    def headers(self) -> Dict[str, str]:
        return dict(OOKLA_HEADERS if self.kind == KIND_OOKLA else COMMON_HEADERS)

    @property
    def label(self) -> str:
        return self.name or self.id

    # -- Serialisation ------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "url": self.url,
            "kind": self.kind,
        }


# ---------------------------------------------------------------------------
# API client
# ---------------------------------------------------------------------------

class SpeedtestAPI:
    """Async context-manager wrapping the speedtest.net server list."""

    def __init__(self) -> None:
        self._session: Optional[aiohttp.ClientSession] = None
        self.servers: List[Endpoint] = []

    # -- Context manager ----------------------------------------------------

    async def __aenter__(self) -> SpeedtestAPI:
        self._session = aiohttp.ClientSession(headers=OOKLA_HEADERS)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        if self._session:
            await self._session.close()
            self._session = None

    # -- Internal helpers ---------------------------------------------------

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            raise RuntimeError(
                "SpeedtestAPI must be used as an async context manager "
                "(async with SpeedtestAPI() as api: ...)"
            )
        return self._session

    # -- Public methods -----------------------------------------------------

    async def fetch_servers(self, limit: int = 10) -> List[Endpoint]:
        """Return up to *limit* nearby servers, sorted by distance."""
        session = self._ensure_session()

        params = {
            "engine": "js",
            "https_functional": "true",
            "limit": str(limit),
        }

        async with session.get(SPEEDTEST_SERVERS_URL, params=params) as resp:
            resp.raise_for_status()
            data = await resp.json()

        self.servers = [Endpoint.from_server_dict(s) for s in data]
        return self.servers
