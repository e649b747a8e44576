"""
Console status rendering for a running simulation.

Builds rich renderables from a `SimulationStatus`; the CLI feeds them to a
`rich.live.Live` display refreshed after every relational cycle.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from rich import box
from rich.console import Group, RenderableType
from rich.table import Table
from rich.text import Text

from loadsim.runner import SimulationStatus


def _fmt_time(value: Optional[datetime]) -> str:
    if value is None:
        return "never"
    return value.astimezone().strftime("%H:%M:%S")


def _status_line(status: SimulationStatus) -> Text:
    elapsed = "-"
    if status.last_report is not None:
        elapsed = f"{status.last_report.duration_seconds * 1000:,.0f} ms"
    return Text(
        f" SQL Cycle: {status.cycle} | Elapsed: {elapsed} | Next in: {status.cycle_duration_seconds}s ",
        style="bold white on dark_blue",
    )


def sql_table(status: SimulationStatus) -> Table:
    table = Table(title="SQL", box=box.ROUNDED, title_style="bold green")
    table.add_column("Table", style="cyan", no_wrap=True)
    table.add_column("Inserted", justify="right", style="magenta")
    table.add_column("Last Insert", justify="right", style="green")
    table.add_column("Last Cycle", justify="center")

    outcomes = status.last_report.outcomes if status.last_report is not None else {}
    for name in status.transaction_tables:
        total = status.totals.get(name)
        outcome = outcomes.get(name)
        if outcome is None:
            result = "[dim]-[/dim]"
        elif outcome.ok:
            result = f"[green]ok ({outcome.rows:,})[/green]"
        else:
            result = "[red]failed[/red]"
        table.add_row(
            name,
            f"{total.total_records_inserted:,}" if total else "0",
            _fmt_time(total.last_insert_at) if total else "never",
            result,
        )
    return table


def mongo_table(status: SimulationStatus) -> Table:
    table = Table(title="MongoDB", box=box.ROUNDED, title_style="bold magenta")
    table.add_column("Collection", style="cyan", no_wrap=True)
    table.add_column("Every", justify="right", style="blue")
    table.add_column("Inserted", justify="right", style="magenta")
    table.add_column("Last Fired", justify="right", style="green")
    table.add_column("OK / Failed", justify="right")
    table.add_column("Last Error", style="red", overflow="ellipsis", max_width=60)

    for name in status.collections:
        interval = status.frequencies.get(name)
        total = status.totals.get(name)
        stats = status.firing_stats.get(name)
        counts = "-"
        last_error = Text("")
        if stats is not None:
            last_error = Text(stats.last_error or "")
            failed_style = "red" if stats.failed else "dim"
            counts = f"{stats.succeeded} / [{failed_style}]{stats.failed}[/{failed_style}]"
        table.add_row(
            name,
            f"{interval}s" if interval else "[yellow]not scheduled[/yellow]",
            f"{total.total_records_inserted:,}" if total else "0",
            _fmt_time(status.last_fired.get(name)),
            counts,
            last_error,
        )
    return table


def render_status(status: SimulationStatus) -> RenderableType:
    return Group(_status_line(status), sql_table(status), mongo_table(status))


__all__ = ["render_status", "sql_table", "mongo_table"]
