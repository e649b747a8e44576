"""
Sink error mapping and admission, exercised against hand-written driver fakes.
"""

from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from typing import Any, Dict, List

import psycopg
import pytest
from pymongo.errors import AutoReconnect, BulkWriteError, OperationFailure

from loadsim.domain.models import Batch
from loadsim.errors import ConnectivityFailure, TransientWriteFailure
from loadsim.infrastructure.sinks import MongoSink, PostgresSink, Sink


class _InsertResult:
    def __init__(self, count: int) -> None:
        self.inserted_ids = list(range(count))


class FakeCollection:
    def __init__(self, database: "FakeDatabase", name: str) -> None:
        self._database = database
        self._name = name

    def insert_many(self, documents: List[Dict[str, Any]], ordered: bool = True):
        db = self._database
        with db.lock:
            db.in_flight += 1
            db.peak_in_flight = max(db.peak_in_flight, db.in_flight)
        try:
            if db.insert_delay:
                time.sleep(db.insert_delay)
            if db.insert_error is not None:
                raise db.insert_error
            with db.lock:
                db.inserted.setdefault(self._name, []).extend(documents)
                db.ordered_flags.append(ordered)
            return _InsertResult(len(documents))
        finally:
            with db.lock:
                db.in_flight -= 1


class FakeDatabase:
    def __init__(self) -> None:
        self.inserted: Dict[str, List[Dict[str, Any]]] = {}
        self.ordered_flags: List[bool] = []
        self.insert_error: Exception | None = None
        self.list_error: Exception | None = None
        self.insert_delay = 0.0
        self.in_flight = 0
        self.peak_in_flight = 0
        self.lock = threading.Lock()

    def __getitem__(self, name: str) -> FakeCollection:
        return FakeCollection(self, name)

    def list_collection_names(self) -> List[str]:
        if self.list_error is not None:
            raise self.list_error
        return sorted(self.inserted)


class FakeCopy:
    def __init__(self, sink: List[tuple]) -> None:
        self._sink = sink

    def write_row(self, row: tuple) -> None:
        self._sink.append(row)


class FakeConnection:
    def __init__(self, pool: "FakePool") -> None:
        self._pool = pool

    @contextmanager
    def cursor(self):
        yield self

    @contextmanager
    def copy(self, statement):
        if self._pool.copy_error is not None:
            raise self._pool.copy_error
        self._pool.statements.append(statement)
        yield FakeCopy(self._pool.rows)

    def execute(self, query: str):
        self._pool.executed.append(query)
        if self._pool.execute_error is not None:
            raise self._pool.execute_error
        return self

    def fetchone(self):
        return (1,)


class FakePool:
    def __init__(self) -> None:
        self.rows: List[tuple] = []
        self.statements: List[Any] = []
        self.executed: List[str] = []
        self.copy_error: Exception | None = None
        self.execute_error: Exception | None = None
        self.checkouts = 0

    @contextmanager
    def connection(self):
        self.checkouts += 1
        yield FakeConnection(self)


def _batch(unit: str, count: int) -> Batch:
    return Batch(unit=unit, columns=("MachineID", "Seq"), rows=[("M-001", i) for i in range(count)])


def test_sinks_satisfy_protocol():
    assert isinstance(MongoSink(FakeDatabase(), pause_seconds=0), Sink)
    assert isinstance(PostgresSink(FakePool()), Sink)


def test_mongo_sink_inserts_unordered_documents():
    db = FakeDatabase()
    sink = MongoSink(db, pause_seconds=0)

    written = sink.write("AlarmLiveTransaction", _batch("AlarmLiveTransaction", 3))

    assert written == 3
    assert db.ordered_flags == [False]
    assert db.inserted["AlarmLiveTransaction"][0] == {"MachineID": "M-001", "Seq": 0}


def test_mongo_sink_empty_batch_skips_store():
    db = FakeDatabase()
    db.insert_error = AssertionError("store must not be touched")
    sink = MongoSink(db, pause_seconds=0)

    assert sink.write("AlarmLiveTransaction", Batch(unit="AlarmLiveTransaction")) == 0


def test_mongo_sink_maps_driver_errors():
    db = FakeDatabase()
    sink = MongoSink(db, pause_seconds=0)

    db.insert_error = AutoReconnect("primary stepped down")
    with pytest.raises(TransientWriteFailure) as excinfo:
        sink.write("AlarmLiveTransaction", _batch("AlarmLiveTransaction", 2))
    assert excinfo.value.unit == "AlarmLiveTransaction"
    assert "primary stepped down" in excinfo.value.reason

    db.insert_error = BulkWriteError({"nInserted": 1, "writeErrors": [{"index": 1}]})
    with pytest.raises(TransientWriteFailure) as excinfo:
        sink.write("AlarmLiveTransaction", _batch("AlarmLiveTransaction", 2))
    assert excinfo.value.reason.startswith("1/2 inserted")


def test_mongo_sink_caps_in_flight_writes():
    db = FakeDatabase()
    db.insert_delay = 0.05
    sink = MongoSink(db, max_concurrent_writes=2, pause_seconds=0)

    threads = [
        threading.Thread(target=sink.write, args=(f"C{i}", _batch(f"C{i}", 1))) for i in range(8)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert db.peak_in_flight <= 2
    assert len(db.inserted) == 8


def test_mongo_probe_failure_is_connectivity_failure():
    db = FakeDatabase()
    db.list_error = OperationFailure("not authorized")
    sink = MongoSink(db, pause_seconds=0)

    with pytest.raises(ConnectivityFailure) as excinfo:
        sink.test_connectivity()
    assert excinfo.value.store == "mongodb"


def test_mongo_probe_success():
    MongoSink(FakeDatabase(), pause_seconds=0).test_connectivity()


def test_postgres_sink_copies_rows():
    pool = FakePool()
    sink = PostgresSink(pool)

    written = sink.write("Focas_LiveData", _batch("Focas_LiveData", 4))

    assert written == 4
    assert pool.rows == [("M-001", i) for i in range(4)]
    assert len(pool.statements) == 1


def test_postgres_sink_empty_batch_skips_pool():
    pool = FakePool()
    sink = PostgresSink(pool)

    assert sink.write("RawData", Batch(unit="RawData")) == 0
    assert pool.checkouts == 0


def test_postgres_sink_maps_driver_errors():
    pool = FakePool()
    pool.copy_error = psycopg.OperationalError("server closed the connection")
    sink = PostgresSink(pool)

    with pytest.raises(TransientWriteFailure) as excinfo:
        sink.write("RawData", _batch("RawData", 1))
    assert excinfo.value.unit == "RawData"
    assert isinstance(excinfo.value.__cause__, psycopg.OperationalError)


def test_postgres_probe_failure_is_connectivity_failure():
    pool = FakePool()
    pool.execute_error = psycopg.ProgrammingError("permission denied")
    sink = PostgresSink(pool)

    with pytest.raises(ConnectivityFailure) as excinfo:
        sink.test_connectivity()
    assert excinfo.value.store == "postgres"
    assert pool.executed == ["SELECT 1;"]


def test_postgres_probe_success():
    pool = FakePool()
    PostgresSink(pool).test_connectivity()

    assert pool.executed == ["SELECT 1;"]
