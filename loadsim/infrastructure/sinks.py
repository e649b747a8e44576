"""
Storage sinks: the bulk-write targets the pipeline dispatches batches to.

Each sink caps its own in-flight writes with a bounded semaphore. Callers may
submit any number of concurrent writes; the ones over the cap wait for a slot,
they are never rejected or dropped. Driver errors surface as
`TransientWriteFailure`; a failed startup probe surfaces as `ConnectivityFailure`.
"""

from __future__ import annotations

import threading
import time
from typing import Protocol, runtime_checkable

import psycopg
from psycopg import sql
from psycopg_pool import ConnectionPool, PoolTimeout
from pymongo.database import Database
from pymongo.errors import BulkWriteError, ConnectionFailure, PyMongoError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from loadsim.domain.models import Batch
from loadsim.errors import ConnectivityFailure, TransientWriteFailure
from loadsim.infrastructure.db_factory import PoolManager
from loadsim.utils.logging import get_logger

log = get_logger(__name__)


@runtime_checkable
class Sink(Protocol):
    """
    Write contract every store adapter implements.

    Attributes
    ----------
    name : str
        Short store label used in logs and status output.
    max_concurrent_writes : int
        Admission cap; writes beyond it queue inside `write`.
    """

    name: str
    max_concurrent_writes: int

    def write(self, unit: str, batch: Batch) -> int:
        """
        Bulk-write `batch` into `unit` and return the number of rows written.

        Raises
        ------
        TransientWriteFailure
            If the store rejected or failed the write.
        """
        ...

    def test_connectivity(self) -> None:
        """Raise `ConnectivityFailure` if the store is unreachable."""
        ...


class PostgresSink:
    """
    COPY-based bulk writer backed by a psycopg connection pool.
    """

    name: str = "postgres"

    def __init__(self, pool: ConnectionPool, max_concurrent_writes: int = 5, schema: str = "public") -> None:
        self._pool = pool
        self.max_concurrent_writes = max_concurrent_writes
        self._admission = threading.BoundedSemaphore(max_concurrent_writes)
        self._schema = schema

    @classmethod
    def from_manager(cls, manager: PoolManager) -> "PostgresSink":
        return cls(manager.get_sql_pool(), manager.settings.sql_max_concurrent_writes)

    def _copy_statement(self, unit: str, batch: Batch) -> sql.Composed:
        return sql.SQL("COPY {} ({}) FROM STDIN").format(
            sql.Identifier(self._schema, unit),
            sql.SQL(", ").join(sql.Identifier(column) for column in batch.columns),
        )

    def write(self, unit: str, batch: Batch) -> int:
        if not batch.rows:
            return 0

        with self._admission:
            try:
                with self._pool.connection() as conn:
                    with conn.cursor() as cur:
                        with cur.copy(self._copy_statement(unit, batch)) as copy:
                            for row in batch.rows:
                                copy.write_row(row)
            except (psycopg.Error, PoolTimeout) as exc:
                raise TransientWriteFailure(unit, str(exc)) from exc

        log.debug("COPY complete", extra={"unit": unit, "rows": len(batch.rows), "store": self.name})
        return len(batch.rows)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type((psycopg.OperationalError, psycopg.InterfaceError, PoolTimeout)),
        reraise=True,
    )
    def _select_one(self) -> None:
        with self._pool.connection() as conn:
            conn.execute("SELECT 1;").fetchone()

    def test_connectivity(self) -> None:
        try:
            self._select_one()
        except (psycopg.Error, PoolTimeout) as exc:
            log.error("Postgres connection test failed", extra={"store": self.name, "error": str(exc)})
            raise ConnectivityFailure(self.name, str(exc)) from exc
        log.info("Postgres connection successful", extra={"store": self.name})


class MongoSink:
    """
    Unordered `insert_many` writer for MongoDB collections.

    After each insert the writer holds its slot for `pause_seconds`, which paces
    the document store independently of how many collections fire at once.
    """

    name: str = "mongodb"

    def __init__(self, database: Database, max_concurrent_writes: int = 50, pause_seconds: float = 0.05) -> None:
        self._database = database
        self.max_concurrent_writes = max_concurrent_writes
        self._admission = threading.BoundedSemaphore(max_concurrent_writes)
        self._pause_seconds = pause_seconds

    @classmethod
    def from_manager(cls, manager: PoolManager) -> "MongoSink":
        settings = manager.settings
        return cls(
            manager.get_mongo_database(),
            settings.mongo_max_concurrent_writes,
            settings.mongo_write_pause_ms / 1000.0,
        )

    def write(self, unit: str, batch: Batch) -> int:
        if not batch.rows:
            return 0

        with self._admission:
            try:
                result = self._database[unit].insert_many(batch.as_documents(), ordered=False)
            except BulkWriteError as exc:
                inserted = exc.details.get("nInserted", 0)
                raise TransientWriteFailure(unit, f"{inserted}/{len(batch.rows)} inserted: {exc}") from exc
            except PyMongoError as exc:
                raise TransientWriteFailure(unit, str(exc)) from exc
            if self._pause_seconds > 0:
                time.sleep(self._pause_seconds)

        log.debug("insert_many complete", extra={"unit": unit, "rows": len(result.inserted_ids), "store": self.name})
        return len(result.inserted_ids)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type(ConnectionFailure),
        reraise=True,
    )
    def _list_collections(self) -> list[str]:
        return self._database.list_collection_names()

    def test_connectivity(self) -> None:
        try:
            collections = self._list_collections()
        except PyMongoError as exc:
            log.error("MongoDB connection test failed", extra={"store": self.name, "error": str(exc)})
            raise ConnectivityFailure(self.name, str(exc)) from exc
        log.info(
            "MongoDB connection successful",
            extra={"store": self.name, "collections": len(collections)},
        )


__all__ = ["Sink", "PostgresSink", "MongoSink"]
