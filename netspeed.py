#!/usr/bin/env python3
"""
netspeed -- internet connection speed testing from the terminal.

Usage::

    python netspeed.py                                  # rich dashboard
    python netspeed.py --format json                    # JSON to stdout
    python netspeed.py -f csv -o result.csv             # save to file
    python netspeed.py --iterations 5                   # average 5 runs
    python netspeed.py --server A=https://speed.cloudflare.com \\
                       --server https://host:8080#ookla --all-servers
    python netspeed.py --discover 5                     # nearby Ookla servers
    python netspeed.py -i eth0                          # bind to an interface
    python netspeed.py --history                        # show past results
    python netspeed.py --clickhouse-url http://ch:8123 --clickhouse-user u \\
                       --clickhouse-password p          # export rows
"""
from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Any, Dict, List, Optional, Sequence

import aiohttp

from meter.api import Endpoint, SpeedtestAPI
from meter.config import TestConfig, load_config, save_config
from meter.constants import MB
from meter.errors import MeterError, TransportError
from meter.export import ClickHouseExporter, ExportError
from meter.history import load_history, save_result
from meter.latency import LatencyProber
from meter.orchestrator import IterationOrchestrator
from meter.results import AggregateResult
from meter.selector import ServerSelector
from meter.throughput import ThroughputTester
from meter.transport import TransportClient
from ui.dashboard import (
    RunDisplay,
    console,
    print_failures,
    print_final_results,
    print_header,
    print_history,
    print_samples,
    print_server_selection,
)
from ui.logging_setup import configure_logging
from ui.output import FORMATS, render, write_output


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

def _pick(value: Any, default: Any) -> Any:
    return default if value is None else value


def parse_servers(specs: Sequence[str]) -> List[Endpoint]:
    """Turn ``[id=]url[#kind]`` strings into endpoints (``ValueError`` on bad input)."""
    return [Endpoint.parse(s) for s in specs]


def build_config(
    args: argparse.Namespace,
    defaults: Dict[str, Any],
    servers: Sequence[Endpoint],
) -> TestConfig:
    """Merge CLI flags over persisted defaults.  Raises ``ValueError``."""
    download_mb = _pick(args.download_size, defaults["download_size"])
    upload_mb = _pick(args.upload_size, defaults["upload_size"])
    return TestConfig(
        download_size_bytes=int(download_mb * MB),
        upload_size_bytes=int(upload_mb * MB),
        timeout=float(_pick(args.timeout, defaults["timeout"])),
        iterations=int(_pick(args.iterations, defaults["iterations"])),
        servers=tuple(servers) or (Endpoint.default(),),
        interface=_pick(args.interface, defaults["interface"]) or None,
        all_servers=args.all_servers,
        ping_count=int(_pick(args.ping_count, defaults["ping_count"])),
        connections=int(_pick(args.connections, defaults["connections"])),
    )


def _defaults_from(config: TestConfig, fmt: str) -> Dict[str, Any]:
    return {
        "download_size": config.download_size_bytes / MB,
        "upload_size": config.upload_size_bytes / MB,
        "timeout": config.timeout,
        "iterations": config.iterations,
        "interface": config.interface or "",
        "servers": [f"{s.id}={s.url}#{s.kind}" for s in config.servers],
        "ping_count": config.ping_count,
        "connections": config.connections,
        "format": fmt,
    }


# ---------------------------------------------------------------------------
# Core test runner
# ---------------------------------------------------------------------------

async def run_speedtest(args: argparse.Namespace) -> int:
    """Execute the full run and return the process exit status."""
    defaults = load_config()
    fmt = _pick(args.format, defaults["format"])
    if fmt not in FORMATS:
        raise ValueError(f"Unknown output format {fmt!r} (expected one of {FORMATS})")

    servers = parse_servers(args.server or defaults["servers"])
    if args.discover:
        try:
            async with SpeedtestAPI() as api:
                servers.extend(await api.fetch_servers(limit=args.discover))
        except aiohttp.ClientError as exc:
            console.print(f"[yellow]Server discovery failed: {exc}[/yellow]")

    config = build_config(args, defaults, servers)

    if args.save_defaults:
        path = save_config(_defaults_from(config, fmt))
        console.print(f"[green]Defaults saved to:[/green] {path}")

    show_ui = fmt == "text" and not args.output and console.is_terminal

    prober = LatencyProber()
    transport = TransportClient(connections=config.connections)
    selector = ServerSelector(prober, config.selection_ping_count)
    orchestrator = IterationOrchestrator(
        prober=prober,
        tester=ThroughputTester(transport),
        selector=selector,
    )

    display: Optional[RunDisplay] = None
    if show_ui:
        print_header()
        display = RunDisplay(config.iterations)
        transport.on_progress = display.on_transfer
        orchestrator.on_stage = display.on_stage
        display.start()

    try:
        result = await orchestrator.run(config)
    except MeterError as exc:
        if display:
            display.stop()
        _report_failure(exc)
        return 1
    if display:
        display.stop()

    # -- Output -------------------------------------------------------------
    if show_ui:
        if args.verbose and selector.last_pings and not config.all_servers:
            chosen = next((e for e in config.servers if e.id == result.samples[-1].server_id), None)
            print_server_selection(selector.last_pings, chosen)
        if args.verbose or len(result.samples) > 1:
            print_samples(result)
        print_failures(result.failures)
        print_final_results(result)
    else:
        text = render(result, fmt, verbose=args.verbose)
        if args.output:
            write_output(text, args.output)
            if fmt == "text":
                print(f"Results saved to: {args.output}", file=sys.stderr)
        else:
            print(text)

    # -- History / export ---------------------------------------------------
    if not args.no_history:
        save_result(result)

    if args.clickhouse_url:
        await _export(args, result)

    return 0


async def _export(args: argparse.Namespace, result: AggregateResult) -> None:
    try:
        async with ClickHouseExporter(
            args.clickhouse_url,
            database=args.clickhouse_db,
            user=args.clickhouse_user,
            password=args.clickhouse_password,
        ) as exporter:
            count = await exporter.export(result)
    except ExportError as exc:
        console.print(f"[red]Failed to export to ClickHouse: {exc}[/red]")
        return
    if args.verbose:
        console.print(f"[green]Exported {count} row(s) to ClickHouse[/green]")


def _report_failure(exc: MeterError) -> None:
    kind = exc.kind.value if isinstance(exc, TransportError) else exc.__class__.__name__
    where = f" at {exc.stage}" if exc.stage else ""
    console.print(f"[red]Error ({kind}){where}: {exc.message}[/red]")
    for f in exc.failures:
        console.print(f"[dim]  iteration {f.iteration} on {f.server_id}: {f.stage} {f.kind}[/dim]")
    if exc.samples:
        console.print(f"[yellow]{len(exc.samples)} sample(s) collected before the run stopped[/yellow]")


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="netspeed -- measure download, upload, latency and jitter",
    )
    # Output
    parser.add_argument("--verbose", "-v", action="store_true", help="Show detailed information")
    parser.add_argument("--format", "-f", choices=FORMATS, default=None, help="Output format (default: text)")
    parser.add_argument("--output", "-o", type=str, metavar="FILE", help="Write results to FILE")

    # Test parameters
    parser.add_argument("--download-size", type=float, metavar="MB", help="Download size in MB (default: 100)")
    parser.add_argument("--upload-size", type=float, metavar="MB", help="Upload size in MB (default: 20)")
    parser.add_argument("--timeout", type=float, metavar="SECS", help="Per-step timeout in seconds (default: 30)")
    parser.add_argument("--interface", "-i", type=str, metavar="NAME", help="Network interface or local IP to bind to")
    parser.add_argument("--iterations", type=int, metavar="N", help="Number of test iterations (default: 1)")
    parser.add_argument("--ping-count", type=int, metavar="N", help="Latency probes per iteration (default: 10)")
    parser.add_argument("--connections", type=int, metavar="N", help="Parallel connections per transfer (default: 1)")

    # Servers
    parser.add_argument("--server", action="append", metavar="URL", help="Server as [id=]url[#kind]; repeatable")
    parser.add_argument("--all-servers", action="store_true", help="Test every server instead of the fastest one")
    parser.add_argument("--discover", type=int, default=0, metavar="N", help="Add N nearby speedtest.net servers")

    # History
    parser.add_argument("--history", action="store_true", help="Show past test results and exit")
    parser.add_argument("--no-history", action="store_true", help="Do not record this run in the history file")
    parser.add_argument("--save-defaults", action="store_true", help="Persist the effective settings as defaults")

    # ClickHouse export
    parser.add_argument("--clickhouse-url", type=str, metavar="URL", help="ClickHouse HTTP URL for result export")
    parser.add_argument("--clickhouse-db", type=str, default="default", metavar="DB", help="ClickHouse database name")
    parser.add_argument("--clickhouse-user", type=str, metavar="USER", help="ClickHouse user")
    parser.add_argument("--clickhouse-password", type=str, metavar="PASSWORD", help="ClickHouse password")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose)

    if args.history:
        print_history(load_history())
        return

    try:
        status = asyncio.run(run_speedtest(args))
    except KeyboardInterrupt:
        console.print("\n[yellow]Test cancelled by user[/yellow]")
        sys.exit(1)
    except ValueError as exc:
        console.print(f"[red]Error: {exc}[/red]")
        sys.exit(1)
    except OSError as exc:
        console.print(f"[red]Error: {exc}[/red]")
        sys.exit(1)

    if status:
        sys.exit(status)


if __name__ == "__main__":
    main()
