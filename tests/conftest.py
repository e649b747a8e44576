"""
Pytest configuration for the load simulator.

Provides fixtures for:
- Settings with test-specific overrides
- Shared machine identities and a fresh tracker (fakes live in tests/fakes.py)
- Database connection management for the optional Postgres integration tests
"""

from __future__ import annotations

import os
from typing import Generator, List

import psycopg
import pytest

from loadsim.config import Settings
from loadsim.domain.models import MachineIdentity, build_identities
from loadsim.tracker import CumulativeTracker


@pytest.fixture
def identities() -> List[MachineIdentity]:
    return build_identities(3)


@pytest.fixture
def tracker() -> Generator[CumulativeTracker, None, None]:
    tracker = CumulativeTracker()
    yield tracker
    tracker.reset()


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """
    Settings fixture with test-specific overrides and no config file.
    """
    return Settings(
        machine_count=2,
        cycle_duration_seconds=1,
        transaction_tables=["Focas_LiveData", "RawData"],
        collections_to_sync=["AlarmLiveTransaction"],
        mongo_collection_frequencies={"AlarmLiveTransaction": 1},
        template_dir=tmp_path,
        log_level="DEBUG",
    )


@pytest.fixture(scope="session")
def test_dsn() -> str:
    """
    Database connection string for integration tests.
    """
    return (
        f"postgresql://{os.getenv('DB_USER', 'postgres')}:{os.getenv('DB_PASSWORD', 'postgres')}"
        f"@{os.getenv('DB_HOST', 'localhost')}:{os.getenv('DB_PORT', '5432')}"
        f"/{os.getenv('DB_NAME', 'iot_load')}"
    )


@pytest.fixture(scope="session")
def db_connection_available(test_dsn: str) -> bool:
    """
    Check if database is reachable.

    Used to conditionally skip integration tests when DB is not available.
    """
    try:
        with psycopg.connect(test_dsn, connect_timeout=5) as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1;")
                cur.fetchone()
        return True
    except psycopg.Error:
        return False


@pytest.fixture(scope="session")
def db_connection(
    test_dsn: str, db_connection_available: bool
) -> Generator[psycopg.Connection, None, None]:
    """
    Session-scoped database connection; skips when the database is down.
    """
    if not db_connection_available:
        pytest.skip("Database not available for integration tests")

    conn = psycopg.connect(test_dsn)
    try:
        yield conn
    finally:
        conn.close()
