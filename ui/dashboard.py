"""
Rich-based terminal dashboard for speed test runs.

All formatting helpers live in ``meter.stats`` -- this module only does
presentation via the ``rich`` library.
"""
from __future__ import annotations

from typing import List, Optional, Sequence, Tuple

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from meter.api import Endpoint
from meter.history import format_history_table, sparkline
from meter.orchestrator import (
    STAGE_DOWNLOAD,
    STAGE_EMIT,
    STAGE_LATENCY,
    STAGE_SELECT,
    STAGE_UPLOAD,
)
from meter.results import AggregateResult
from meter.stats import format_latency, format_speed

console = Console()

_STAGE_LABELS = {
    STAGE_SELECT: "Selecting server",
    STAGE_LATENCY: "Testing latency",
    STAGE_DOWNLOAD: "Testing download speed",
    STAGE_UPLOAD: "Testing upload speed",
    STAGE_EMIT: "Recording sample",
}


# ---------------------------------------------------------------------------
# Print helpers
# ---------------------------------------------------------------------------

def print_header() -> None:
    console.print()
    console.print(
        Panel.fit(
            "[bold cyan]netspeed[/bold cyan]\n"
            "[dim]Download, upload, latency and jitter from the terminal[/dim]",
            border_style="cyan",
        )
    )
    console.print()


def print_server_selection(
    pings: Sequence[Tuple[Endpoint, Optional[float]]],
    selected: Optional[Endpoint] = None,
) -> None:
    table = Table(title="Server Selection", box=box.ROUNDED)
    table.add_column("#", style="dim", width=4)
    table.add_column("Server", style="bold")
    table.add_column("URL")
    table.add_column("Latency", justify="right")

    for i, (endpoint, ping) in enumerate(pings):
        chosen = selected is not None and endpoint == selected
        table.add_row(
            f"{'>' if chosen else ' '}{i + 1}",
            endpoint.label,
            endpoint.url,
            format_latency(ping) if ping is not None else "N/A",
            style="green" if chosen else None,
        )

    console.print(table)


def print_samples(result: AggregateResult) -> None:
    """Per-iteration table, with sparklines when there is more than one sample."""
    table = Table(title="Iterations", box=box.ROUNDED)
    table.add_column("#", style="dim", justify="right")
    table.add_column("Server", style="bold")
    table.add_column("Download", justify="right", style="green")
    table.add_column("Upload", justify="right", style="blue")
    table.add_column("Ping", justify="right", style="yellow")
    table.add_column("Jitter", justify="right")

    for s in result.samples:
        marker = " [red]*[/red]" if s.degraded else ""
        table.add_row(
            str(s.iteration),
            s.server_id,
            format_speed(s.download_mbps) + marker,
            format_speed(s.upload_mbps),
            format_latency(s.ping_ms),
            f"{s.jitter_ms:.2f} ms",
        )
    console.print(table)

    if len(result.samples) > 1:
        console.print(
            Panel(
                f"[green]Download {sparkline([s.download_mbps for s in result.samples])}[/green]\n"
                f"[blue]Upload   {sparkline([s.upload_mbps for s in result.samples])}[/blue]",
                title="Speed Over Iterations",
            )
        )
    if any(s.degraded for s in result.samples):
        console.print("[dim][red]*[/red] partial transfer cut by the timeout[/dim]")


def print_failures(failures: Sequence) -> None:
    for f in failures:
        console.print(
            f"[yellow]Iteration {f.iteration} on {f.server_id} failed at "
            f"{f.stage} ({f.kind}): {f.message}[/yellow]"
        )


def print_final_results(result: AggregateResult) -> None:
    servers = ", ".join(result.server_ids)
    console.print()
    console.print(
        Panel.fit(
            f"[bold cyan]Server:[/bold cyan] {servers}\n\n"
            f"[bold white]   Ping:[/bold white]  [bold yellow]{result.mean_ping_ms:.1f} ms[/bold yellow]  "
            f"[dim](jitter: {result.mean_jitter_ms:.2f} ms)[/dim]\n"
            f"[bold white]   Download:[/bold white]  [bold green]{format_speed(result.mean_download_mbps)}[/bold green]\n"
            f"[bold white]   Upload:[/bold white]  [bold blue]{format_speed(result.mean_upload_mbps)}[/bold blue]",
            title="[bold]Results[/bold]" + (" [red](degraded)[/red]" if result.degraded else ""),
            border_style="cyan",
        )
    )
    if len(result.server_ids) > 1:
        table = Table(title="Per server", box=box.ROUNDED)
        table.add_column("Server")
        table.add_column("Samples", justify="right")
        table.add_column("Ping", justify="right", style="yellow")
        table.add_column("Jitter", justify="right")
        table.add_column("Download", justify="right", style="green")
        table.add_column("Upload", justify="right", style="blue")
        for sid, part in result.per_server().items():
            table.add_row(
                sid,
                str(len(part.samples)),
                format_latency(part.mean_ping_ms),
                f"{part.mean_jitter_ms:.2f} ms",
                format_speed(part.mean_download_mbps),
                format_speed(part.mean_upload_mbps),
            )
        console.print(table)
    console.print()


def print_history(entries: List[dict]) -> None:
    if not entries:
        console.print("[dim]No history yet.[/dim]")
        return

    rows = format_history_table(entries)
    table = Table(title="History", box=box.ROUNDED)
    table.add_column("When", style="dim")
    table.add_column("Server(s)")
    table.add_column("Samples", justify="right")
    table.add_column("Ping", justify="right", style="yellow")
    table.add_column("Jitter", justify="right")
    table.add_column("Download", justify="right", style="green")
    table.add_column("Upload", justify="right", style="blue")

    for r in rows:
        table.add_row(
            r["timestamp"],
            r["servers"],
            str(r["samples"]),
            format_latency(r["ping"]),
            f"{r['jitter']:.2f} ms",
            format_speed(r["download"]) + (" [red]*[/red]" if r["degraded"] else ""),
            format_speed(r["upload"]),
        )
    console.print(table)
    console.print(
        f"  Download trend: [green]{sparkline([r['download'] for r in rows])}[/green]\n"
        f"  Upload trend:   [blue]{sparkline([r['upload'] for r in rows])}[/blue]"
    )


# ---------------------------------------------------------------------------
# Progress display
# ---------------------------------------------------------------------------

class RunDisplay:
    """Spinner plus transfer bar driven by orchestrator and transport callbacks."""

    def __init__(self, iterations: int) -> None:
        self.iterations = iterations
        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold]{task.description}"),
            BarColumn(bar_width=40),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            TimeElapsedColumn(),
            console=console,
            transient=True,
        )
        self._task_id = None
        self._last_fraction = 0.0

    def start(self) -> None:
        self.progress.start()
        self._task_id = self.progress.add_task("Starting", total=100)

    def on_stage(self, iteration: int, stage: str, endpoint: Optional[Endpoint]) -> None:
        if self._task_id is None:
            return
        label = _STAGE_LABELS.get(stage, stage)
        where = f" ({endpoint.label})" if endpoint is not None else ""
        prefix = f"[{iteration}/{self.iterations}] " if self.iterations > 1 else ""
        self._last_fraction = 0.0
        self.progress.update(self._task_id, description=f"{prefix}{label}{where}", completed=0)

    def on_transfer(self, done: int, total: int) -> None:
        if self._task_id is None or total <= 0:
            return
        fraction = done / total
        # Debounce: only update when the bar moves noticeably
        if fraction - self._last_fraction < 0.01 and done < total:
            return
        self._last_fraction = fraction
        self.progress.update(self._task_id, completed=fraction * 100)

    def stop(self) -> None:
        self.progress.stop()
