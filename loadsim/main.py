from __future__ import annotations

import json
import sys
from typing import Optional

import typer
from rich.console import Console
from rich.live import Live

from loadsim.config import get_settings
from loadsim.errors import ConnectivityFailure
from loadsim.infrastructure.db_factory import PoolManager
from loadsim.reporter import render_status
from loadsim.runner import LoadSimulation, SimulationStatus
from loadsim.utils.logging import configure_logging

app = typer.Typer(help="Multi-rate IoT load simulator for Postgres and MongoDB.")


@app.command()
def info() -> None:
    """
    Show effective configuration values.
    """
    settings = get_settings()
    typer.echo(
        f"SQL={settings.db_user}@{settings.db_host}:{settings.db_port}/{settings.db_name} "
        f"(max writes={settings.sql_max_concurrent_writes}) | "
        f"Mongo={settings.mongo_uri}/{settings.mongo_database} "
        f"(max writes={settings.mongo_max_concurrent_writes})"
    )
    typer.echo(
        f"machines={settings.machine_count} cycle={settings.cycle_duration_seconds}s "
        f"tables={', '.join(settings.transaction_tables)}"
    )
    frequencies = ", ".join(
        f"{key}={settings.mongo_collection_frequencies.get(key, '-')}s"
        for key in settings.collections_to_sync
    )
    typer.echo(f"collections: {frequencies or 'none'}")


@app.command()
def probe() -> None:
    """
    Check connectivity to both stores.
    """
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.json_logs)
    manager = PoolManager(settings)
    try:
        LoadSimulation.from_settings(settings, manager).probe()
    except ConnectivityFailure as exc:
        typer.echo(f"✗ {exc}", err=True)
        raise typer.Exit(code=1)
    finally:
        manager.close_all()
    typer.echo("✓ Both stores reachable.")


@app.command()
def run(
    cycles: Optional[int] = typer.Option(
        None,
        "--cycles",
        "-c",
        min=1,
        help="Stop after this many SQL cycles (default: run until interrupted).",
    ),
    machines: Optional[int] = typer.Option(
        None,
        "--machines",
        "-m",
        min=0,
        help="Override number of simulated machines (default from settings).",
    ),
    json_logs: Optional[bool] = typer.Option(
        None,
        "--json-logs/--no-json-logs",
        help="Emit logs as JSON (default from settings).",
    ),
) -> None:
    """
    Run the SQL cycle loop and the MongoDB collection scheduler.
    """
    settings = get_settings()
    if machines is not None:
        settings = settings.model_copy(update={"machine_count": machines})
    configure_logging(
        level=settings.log_level,
        json_logs=settings.json_logs if json_logs is None else json_logs,
    )

    console = Console()
    console.rule("[bold green]IoT Load Simulator[/bold green]")

    manager = PoolManager(settings)
    simulation = LoadSimulation.from_settings(settings, manager)
    interrupted = False
    try:
        with Live(console=console, auto_refresh=False, transient=False) as live:

            def show(status: SimulationStatus) -> None:
                live.update(render_status(status), refresh=True)

            simulation.run(cycles=cycles, on_cycle=show)
    except ConnectivityFailure as exc:
        typer.echo(f"✗ {exc}", err=True)
        raise typer.Exit(code=1)
    except KeyboardInterrupt:
        interrupted = True
        typer.echo("Cancelled by user.", err=True)
    finally:
        simulation.scheduler.stop()
        manager.close_all()

    snapshot = [status.model_dump(mode="json") for status in simulation.tracker.snapshot()]
    typer.echo(json.dumps(snapshot, indent=2))
    if interrupted:
        raise typer.Exit(code=130)


def main() -> None:
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)


if __name__ == "__main__":
    main()
