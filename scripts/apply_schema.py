"""
Create the relational store's transaction tables.

Applies `db/init.sql` (idempotent `CREATE TABLE IF NOT EXISTS`) to the configured
Postgres database, or to `--dsn` when given.
"""

from __future__ import annotations

import sys
import time
from pathlib import Path

import psycopg
import typer

from loadsim.infrastructure.db_factory import get_sync_connection

app = typer.Typer(help="Apply the transaction table DDL to Postgres.")

DEFAULT_SCHEMA = Path(__file__).resolve().parent.parent / "db" / "init.sql"


def apply_schema(dsn: str | None, schema_path: Path) -> None:
    ddl = schema_path.read_text(encoding="utf-8")
    with get_sync_connection(dsn) as conn:
        with conn.cursor() as cur:
            cur.execute(ddl)
        conn.commit()


@app.command()
def main(
    schema: Path = typer.Option(
        DEFAULT_SCHEMA,
        "--schema",
        "-f",
        exists=True,
        dir_okay=False,
        help="DDL file to apply.",
    ),
    dsn: str | None = typer.Option(
        None,
        "--dsn",
        help="Optional DSN override for Postgres.",
    ),
) -> None:
    """
    Apply the DDL file in a single transaction.
    """
    start = time.perf_counter()
    typer.echo(f"Applying {schema} ...")
    try:
        apply_schema(dsn, schema)
    except psycopg.Error as exc:
        typer.echo(f"Schema apply failed: {exc}", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"Schema applied in {time.perf_counter() - start:.2f}s.")


if __name__ == "__main__":
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)
