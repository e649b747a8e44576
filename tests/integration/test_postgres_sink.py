"""
Integration tests for the COPY-based relational sink.

These tests run against a real PostgreSQL instance and verify that a pipeline
cycle lands every generated row in the transaction tables.

Run with: RUN_INTEGRATION_TESTS=1 pytest tests/integration/test_postgres_sink.py
"""

from __future__ import annotations

import os
import uuid
from pathlib import Path

import psycopg
import pytest
from psycopg_pool import ConnectionPool

from loadsim.domain.models import MachineIdentity
from loadsim.infrastructure.sinks import PostgresSink
from loadsim.orchestrator import CyclePipeline
from loadsim.templates.relational import RelationalTemplateEngine
from loadsim.timestamps import TimestampAllocator
from loadsim.tracker import CumulativeTracker

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(
        os.getenv("RUN_INTEGRATION_TESTS", "0") != "1",
        reason="Integration tests require RUN_INTEGRATION_TESTS=1 and reachable Postgres",
    ),
]

SCHEMA = Path(__file__).resolve().parents[2] / "db" / "init.sql"


@pytest.fixture(scope="module")
def schema_applied(db_connection: psycopg.Connection) -> bool:
    with db_connection.cursor() as cur:
        cur.execute(SCHEMA.read_text(encoding="utf-8"))
    db_connection.commit()
    return True


@pytest.fixture
def pool(test_dsn: str, schema_applied: bool):
    pool = ConnectionPool(test_dsn, min_size=1, max_size=3, open=True)
    try:
        yield pool
    finally:
        pool.close()


def _count(conn: psycopg.Connection, query: str, machine_ids: list[str]) -> int:
    with conn.cursor() as cur:
        cur.execute(query, (machine_ids,))
        (count,) = cur.fetchone()
    conn.commit()
    return count


def test_cycle_copies_all_rows(pool, db_connection):
    run_id = uuid.uuid4().hex[:8]
    identities = [
        MachineIdentity(machine_id=f"IT-{run_id}-{i}", plant_id="PLANT-IT", company_id="IT")
        for i in range(3)
    ]
    machine_ids = [identity.machine_id for identity in identities]
    tracker = CumulativeTracker()
    pipeline = CyclePipeline(
        RelationalTemplateEngine(TimestampAllocator()),
        PostgresSink(pool, max_concurrent_writes=2),
        tracker,
    )

    report = pipeline.run_cycle(identities, ["Focas_LiveData", "RawData", "tcs_energyconsumption"])

    assert report.ok, report.failed_units
    assert report.outcomes["Focas_LiveData"].rows == 30
    assert _count(
        db_connection, 'SELECT count(*) FROM public."Focas_LiveData" WHERE "MachineID" = ANY(%s)', machine_ids
    ) == 30
    assert _count(db_connection, 'SELECT count(*) FROM public."RawData" WHERE "Mc" = ANY(%s)', machine_ids) == 6
    assert tracker.get("tcs_energyconsumption").total_records_inserted == 3


def test_missing_table_fails_only_that_unit(pool):
    identities = [MachineIdentity(machine_id="IT-missing", plant_id="PLANT-IT", company_id="IT")]

    class _Engine(RelationalTemplateEngine):
        def generate(self, unit, identity):
            if unit == "NoSuchTable":
                return [{"MachineID": identity.machine_id}]
            return super().generate(unit, identity)

    tracker = CumulativeTracker()
    pipeline = CyclePipeline(_Engine(TimestampAllocator()), PostgresSink(pool), tracker)

    report = pipeline.run_cycle(identities, ["NoSuchTable", "tcs_energyconsumption"])

    assert report.failed_units == ["NoSuchTable"]
    assert report.outcomes["tcs_energyconsumption"].ok
    assert tracker.get("NoSuchTable") is None
