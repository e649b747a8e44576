"""
Connection factory utilities for both stores.

`PoolManager` owns the Postgres connection pool and the MongoDB client for the
lifetime of the process and closes them on exit. It is constructed once and
passed to the sinks rather than reached as a hidden singleton, so tests can hand
the sinks fakes instead.

Includes retry logic for transient connection failures using tenacity.
"""

from __future__ import annotations

import threading
from typing import Optional

import psycopg
from psycopg import Connection
from psycopg_pool import ConnectionPool
from pymongo import MongoClient
from pymongo.database import Database
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from loadsim.config import Settings, get_settings
from loadsim.utils.logging import get_logger

log = get_logger(__name__)


class PoolManager:
    """
    Thread-safe owner of the process's database resources.

    Resources are created lazily on first use and closed by `close_all()`.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._lock = threading.Lock()
        self._sql_pool: Optional[ConnectionPool] = None
        self._mongo_client: Optional[MongoClient] = None

    @property
    def settings(self) -> Settings:
        return self._settings

    def get_sql_pool(self) -> ConnectionPool:
        """
        Get or create the Postgres connection pool.

        The pool is sized to the sink's write cap plus headroom for the probe.
        """
        with self._lock:
            if self._sql_pool is None:
                settings = self._settings
                timeout_ms = settings.db_statement_timeout_ms
                self._sql_pool = ConnectionPool(
                    conninfo=settings.dsn,
                    min_size=1,
                    max_size=max(settings.sql_pool_max_size, settings.sql_max_concurrent_writes),
                    timeout=settings.sql_pool_timeout_seconds,
                    kwargs={"options": f"-c statement_timeout={timeout_ms}"} if timeout_ms else None,
                    open=True,
                )
                log.info(
                    "Postgres pool created",
                    extra={"host": settings.db_host, "db": settings.db_name},
                )
            return self._sql_pool

    def get_mongo_client(self) -> MongoClient:
        """Get or create the MongoDB client (pymongo pools connections internally)."""
        with self._lock:
            if self._mongo_client is None:
                settings = self._settings
                self._mongo_client = MongoClient(
                    settings.mongo_uri,
                    maxPoolSize=settings.mongo_pool_max_size,
                    minPoolSize=settings.mongo_pool_min_size,
                    waitQueueTimeoutMS=settings.mongo_wait_queue_timeout_ms,
                    connectTimeoutMS=settings.mongo_timeout_ms,
                    serverSelectionTimeoutMS=settings.mongo_timeout_ms,
                    socketTimeoutMS=settings.mongo_timeout_ms * 6,
                    tz_aware=True,
                )
                log.info("MongoDB client created", extra={"database": settings.mongo_database})
            return self._mongo_client

    def get_mongo_database(self) -> Database:
        return self.get_mongo_client()[self._settings.mongo_database]

    def close_all(self) -> None:
        """
        Close all managed resources. Safe to call more than once.
        """
        with self._lock:
            if self._sql_pool is not None:
                try:
                    self._sql_pool.close()
                except psycopg.Error:
                    log.warning("Error closing Postgres pool", exc_info=True)
                finally:
                    self._sql_pool = None

            if self._mongo_client is not None:
                self._mongo_client.close()
                self._mongo_client = None


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type((psycopg.OperationalError, psycopg.InterfaceError)),
    reraise=True,
)
def get_sync_connection(dsn: Optional[str] = None) -> Connection:
    """
    Acquire a dedicated synchronous connection with automatic retry.

    Retries up to 3 times with exponential backoff for transient connection errors.
    Used for one-off work such as applying the schema.

    Raises
    ------
    psycopg.OperationalError
        If connection fails after all retry attempts.
    """
    return psycopg.connect(dsn or get_settings().dsn, connect_timeout=10)


__all__ = ["PoolManager", "get_sync_connection"]
