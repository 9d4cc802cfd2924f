"""
Run history persistence.

Results are stored as JSON-lines in ``~/.netspeed/history.jsonl``.
Each line is one run: a timestamp plus ``AggregateResult.to_dict()``, so
the file can be appended to safely (no need to parse the whole file to add
a record).
"""
from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from .results import AggregateResult

logger = logging.getLogger(__name__)

_DEFAULT_DIR = os.path.join(Path.home(), ".netspeed")
_DEFAULT_FILE = "history.jsonl"
_MAX_DISPLAY = 20  # show last N entries in --history


def _history_path() -> str:
    return os.path.join(_DEFAULT_DIR, _DEFAULT_FILE)


# ---------------------------------------------------------------------------
# Write
# ---------------------------------------------------------------------------

def save_result(result: AggregateResult, timestamp: Optional[datetime] = None) -> str:
    """Append *result* as a single JSON line.  Returns the file path."""
    path = _history_path()
    os.makedirs(os.path.dirname(path), exist_ok=True)

    if timestamp is None:
        timestamp = result.samples[-1].timestamp if result.samples else datetime.now(timezone.utc)

    record: Dict[str, Any] = {"timestamp": timestamp.isoformat()}
    record.update(result.to_dict())

    with open(path, "a", encoding="utf-8") as fh:
        fh.write(json.dumps(record, ensure_ascii=False) + "\n")

    logger.debug("Appended run to %s", path)
    return path


# ---------------------------------------------------------------------------
# Read
# ---------------------------------------------------------------------------

def load_history(limit: int = _MAX_DISPLAY) -> List[Dict[str, Any]]:
    """Return the most recent *limit* runs, newest last."""
    path = _history_path()
    if not os.path.isfile(path):
        return []

    entries: List[Dict[str, Any]] = []
    with open(path, encoding="utf-8") as fh:
        for line in fh:
            line = line.strip()
            if not line:
                continue
            try:
                entries.append(json.loads(line))
            except json.JSONDecodeError:
                logger.debug("Skipping corrupt history line")
                continue

    return entries[-limit:]


# ---------------------------------------------------------------------------
# Display helpers
# ---------------------------------------------------------------------------

def format_history_table(entries: List[Dict[str, Any]]) -> List[dict]:
    """
    Transform raw history entries into a flat list of dicts suitable for
    tabular display.  Each dict has: timestamp, servers, samples, ping,
    jitter, download, upload, degraded.
    """
    rows = []
    for e in entries:
        ts_raw = e.get("timestamp", "")
        try:
            ts = datetime.fromisoformat(ts_raw).strftime("%Y-%m-%d %H:%M")
        except (ValueError, TypeError):
            ts = ts_raw[:16] if ts_raw else "?"

        summary = e.get("summary", {})
        samples = e.get("samples", [])
        servers = sorted({str(s.get("server_id", "?")) for s in samples})

        rows.append({
            "timestamp": ts,
            "servers": ", ".join(servers) or "?",
            "samples": summary.get("samples", len(samples)),
            "ping": summary.get("ping_ms", 0),
            "jitter": summary.get("jitter_ms", 0),
            "download": summary.get("download_mbps", 0),
            "upload": summary.get("upload_mbps", 0),
            "degraded": bool(summary.get("degraded", False)),
        })
    return rows


def sparkline(values: List[float]) -> str:
    """Single-line Unicode sparkline chart."""
    if not values:
        return ""
    bars = "▁▂▃▄▅▆▇█"
    lo, hi = min(values), max(values)
    span = hi - lo if hi > lo else 1.0
    return "".join(
        bars[min(int((v - lo) / span * (len(bars) - 1)), len(bars) - 1)]
        for v in values
    )
