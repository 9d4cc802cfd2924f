"""
Run configuration and persisted user defaults.

``TestConfig`` is the immutable description of one run.  User defaults
are read from / written to ``~/.netspeed/config.json``.

Supported keys::

    download_size = 100      # MB
    upload_size = 20         # MB
    timeout = 30.0           # seconds per step
    iterations = 1
    interface = ""           # e.g. "eth0" or a local IP
    servers = []             # "[id=]url[#kind]" strings
    ping_count = 10
    connections = 1
    format = "text"
"""
from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from .api import Endpoint
from .constants import (
    DEFAULT_CONNECTIONS,
    DEFAULT_DOWNLOAD_SIZE_MB,
    DEFAULT_ITERATIONS,
    DEFAULT_PING_COUNT,
    DEFAULT_SELECTION_PING_COUNT,
    DEFAULT_TIMEOUT,
    DEFAULT_UPLOAD_SIZE_MB,
    MAX_CONNECTIONS,
    MAX_ITERATIONS,
    MAX_PING_COUNT,
    MAX_TRANSFER_SIZE_MB,
    MB,
    MIN_CONNECTIONS,
    MIN_PING_COUNT,
)

_CONFIG_DIR = os.path.join(Path.home(), ".netspeed")
_CONFIG_FILE = "config.json"


# ---------------------------------------------------------------------------
# Run configuration
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TestConfig:
    """Everything one run needs.  Never mutated once built."""

    __test__ = False  # keep pytest from collecting it

    download_size_bytes: int = DEFAULT_DOWNLOAD_SIZE_MB * MB
    upload_size_bytes: int = DEFAULT_UPLOAD_SIZE_MB * MB
    timeout: float = DEFAULT_TIMEOUT
    iterations: int = DEFAULT_ITERATIONS
    servers: Tuple[Endpoint, ...] = field(default_factory=lambda: (Endpoint.default(),))
    interface: Optional[str] = None
    all_servers: bool = False
    ping_count: int = DEFAULT_PING_COUNT
    selection_ping_count: int = DEFAULT_SELECTION_PING_COUNT
    connections: int = DEFAULT_CONNECTIONS
    retry_failed: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "servers", tuple(self.servers))
        validate(self)


def validate(config: TestConfig) -> None:
    """Raise ``ValueError`` if any parameter is out of range."""
    if config.download_size_bytes <= 0:
        raise ValueError("Download size must be positive")
    if config.upload_size_bytes <= 0:
        raise ValueError("Upload size must be positive")
    if max(config.download_size_bytes, config.upload_size_bytes) > MAX_TRANSFER_SIZE_MB * MB:
        raise ValueError(f"Transfer sizes must not exceed {MAX_TRANSFER_SIZE_MB} MB")
    if config.timeout <= 0:
        raise ValueError("Timeout must be positive")
    if not 1 <= config.iterations <= MAX_ITERATIONS:
        raise ValueError(f"Iterations must be between 1 and {MAX_ITERATIONS}")
    if not config.servers:
        raise ValueError("At least one server is required")
    if not MIN_PING_COUNT <= config.ping_count <= MAX_PING_COUNT:
        raise ValueError(f"Ping count must be between {MIN_PING_COUNT} and {MAX_PING_COUNT}")
    if not MIN_PING_COUNT <= config.selection_ping_count <= MAX_PING_COUNT:
        raise ValueError(
            f"Selection ping count must be between {MIN_PING_COUNT} and {MAX_PING_COUNT}"
        )
    if not MIN_CONNECTIONS <= config.connections <= MAX_CONNECTIONS:
        raise ValueError(f"Connections must be between {MIN_CONNECTIONS} and {MAX_CONNECTIONS}")


# ---------------------------------------------------------------------------
# Persisted defaults
# ---------------------------------------------------------------------------

def _config_path() -> str:
    return os.path.join(_CONFIG_DIR, _CONFIG_FILE)


DEFAULTS: Dict[str, Any] = {
    "download_size": DEFAULT_DOWNLOAD_SIZE_MB,
    "upload_size": DEFAULT_UPLOAD_SIZE_MB,
    "timeout": DEFAULT_TIMEOUT,
    "iterations": DEFAULT_ITERATIONS,
    "interface": "",
    "servers": [],
    "ping_count": DEFAULT_PING_COUNT,
    "connections": DEFAULT_CONNECTIONS,
    "format": "text",
}


def load_config() -> Dict[str, Any]:
    """Load config from disk, returning defaults for missing keys."""
    path = _config_path()
    config = dict(DEFAULTS)

    if not os.path.isfile(path):
        return config

    try:
        with open(path, encoding="utf-8") as fh:
            user = json.load(fh)
        if isinstance(user, dict):
            config.update(user)
    except (json.JSONDecodeError, IOError):
        pass  # corrupt file; use defaults

    return config


def save_config(config: Dict[str, Any]) -> str:
    """Write *config* to disk.  Returns the file path."""
    path = _config_path()
    os.makedirs(os.path.dirname(path), exist_ok=True)

    with open(path, "w", encoding="utf-8") as fh:
        json.dump(config, fh, indent=2, ensure_ascii=False)

    return path


def get_config_value(key: str) -> Any:
    """Get a single config value."""
    return load_config().get(key, DEFAULTS.get(key))


def set_config_value(key: str, value: Any) -> str:
    """Set a single config value and persist.  Returns file path."""
    config = load_config()
    config[key] = value
    return save_config(config)
