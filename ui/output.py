"""
Output formatting -- plain text, JSON, YAML, and CSV renderings of an
``AggregateResult``, plus atomic file output.
"""
from __future__ import annotations

import csv
import io
import json
import os
from typing import Any, Dict

import yaml

from meter.results import AggregateResult

FORMATS = ("text", "json", "yaml", "csv")

CSV_FIELDS = [
    "timestamp",
    "download_speed_mbps",
    "upload_speed_mbps",
    "ping_ms",
    "server_id",
    "jitter_ms",
]


def create_result_dict(result: AggregateResult) -> Dict[str, Any]:
    """JSON-serialisable dict shared by the JSON and YAML renderers."""
    return result.to_dict()


def format_text_result(result: AggregateResult, verbose: bool = False) -> str:
    lines = [
        "Results:",
        f"Download: {result.mean_download_mbps:.2f} Mbps",
        f"Upload: {result.mean_upload_mbps:.2f} Mbps",
        f"Ping: {result.mean_ping_ms:.0f}ms",
        f"Jitter: {result.mean_jitter_ms:.2f}ms",
        f"Server: {', '.join(result.server_ids)}",
    ]

    if len(result.server_ids) > 1:
        lines.append("")
        lines.append("Per server:")
        for sid, part in result.per_server().items():
            lines.append(
                f"  {sid}: down {part.mean_download_mbps:.2f} Mbps, "
                f"up {part.mean_upload_mbps:.2f} Mbps, ping {part.mean_ping_ms:.0f}ms, "
                f"jitter {part.mean_jitter_ms:.2f}ms ({len(part.samples)} sample(s))"
            )

    if verbose or len(result.samples) > 1:
        lines.append("")
        lines.append(f"Iterations ({len(result.samples)} sample(s) of {result.iterations}):")
        for s in result.samples:
            flag = " (partial)" if s.degraded else ""
            lines.append(
                f"  #{s.iteration} {s.server_id}: "
                f"down {s.download_mbps:.2f} Mbps, up {s.upload_mbps:.2f} Mbps, "
                f"ping {s.ping_ms:.1f} ms, jitter {s.jitter_ms:.2f} ms{flag}"
            )

    for f in result.failures:
        lines.append(f"Iteration {f.iteration} on {f.server_id} failed at {f.stage}: {f.message}")

    return "\n".join(lines)


def format_json(result: AggregateResult) -> str:
    return json.dumps(create_result_dict(result), indent=2, ensure_ascii=False)


def format_yaml(result: AggregateResult) -> str:
    return yaml.safe_dump(create_result_dict(result), sort_keys=False, allow_unicode=True)


def format_csv(result: AggregateResult) -> str:
    """Header plus one row per sample, in export field order."""
    buf = io.StringIO()
    writer = csv.DictWriter(buf, fieldnames=CSV_FIELDS, lineterminator="\n")
    writer.writeheader()
    for s in result.samples:
        writer.writerow(s.to_row())
    return buf.getvalue()


def render(result: AggregateResult, fmt: str = "text", verbose: bool = False) -> str:
    if fmt == "json":
        return format_json(result)
    if fmt == "yaml":
        return format_yaml(result)
    if fmt == "csv":
        return format_csv(result)
    if fmt == "text":
        return format_text_result(result, verbose=verbose)
    raise ValueError(f"Unknown output format {fmt!r} (expected one of {FORMATS})")


def write_output(text: str, filepath: str) -> None:
    """Write *text* to *filepath* atomically (write-tmp then rename)."""
    dir_path = os.path.dirname(filepath) or "."
    tmp = os.path.join(dir_path, f".tmp_{os.path.basename(filepath)}")

    try:
        with open(tmp, "w", encoding="utf-8") as fh:
            fh.write(text)
        os.replace(tmp, filepath)
    except OSError as exc:
        # Clean up partial temp file
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise IOError(f"Failed to write output to {filepath}: {exc}") from exc
