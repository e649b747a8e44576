from __future__ import annotations

import threading
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

from hypothesis import given, settings
from hypothesis import strategies as st

from loadsim.domain.models import CumulativeStatus
from loadsim.tracker import CumulativeTracker

T0 = datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)


def test_first_report_is_stored_as_is(tracker):
    delta = CumulativeStatus(key="RawData", total_records_inserted=20, last_insert_at=T0)

    assert tracker.report(delta) == delta
    assert tracker.get("RawData") == delta


def test_reports_add_counts_and_replace_last_insert(tracker):
    tracker.report(CumulativeStatus(key="RawData", total_records_inserted=20, total_records_synced=1, last_insert_at=T0))
    later = T0 + timedelta(seconds=10)
    total = tracker.report(
        CumulativeStatus(key="RawData", total_records_inserted=5, total_records_synced=2, last_insert_at=later)
    )

    assert total.total_records_inserted == 25
    assert total.total_records_synced == 3
    assert total.last_insert_at == later


def test_snapshot_is_a_copy_ordered_by_key(tracker):
    tracker.report(CumulativeStatus(key="b", total_records_inserted=1))
    tracker.report(CumulativeStatus(key="a", total_records_inserted=2))

    snapshot = tracker.snapshot()
    tracker.report(CumulativeStatus(key="a", total_records_inserted=100))

    assert [s.key for s in snapshot] == ["a", "b"]
    assert snapshot[0].total_records_inserted == 2
    assert tracker.get("a").total_records_inserted == 102


def test_reset_clears_everything(tracker):
    tracker.report(CumulativeStatus(key="a", total_records_inserted=1))
    tracker.reset()

    assert tracker.snapshot() == []
    assert tracker.get("a") is None


@settings(max_examples=25, deadline=None)
@given(
    reporters=st.integers(min_value=2, max_value=12),
    per_reporter=st.integers(min_value=1, max_value=40),
    rows=st.integers(min_value=0, max_value=1_000),
    keys=st.lists(st.sampled_from(["RawData", "Focas_LiveData", "AlarmLiveTransaction"]), min_size=1, max_size=3, unique=True),
)
def test_concurrent_reports_never_lose_a_delta(reporters: int, per_reporter: int, rows: int, keys: list[str]):
    tracker = CumulativeTracker()
    start = threading.Barrier(reporters)

    def reporter(index: int) -> None:
        start.wait()
        for i in range(per_reporter):
            key = keys[(index + i) % len(keys)]
            tracker.report(CumulativeStatus(key=key, total_records_inserted=rows, total_records_synced=1))

    with ThreadPoolExecutor(max_workers=reporters) as pool:
        list(pool.map(reporter, range(reporters)))

    expected = Counter(keys[(index + i) % len(keys)] for index in range(reporters) for i in range(per_reporter))
    snapshot = tracker.snapshot()
    assert [s.key for s in snapshot] == sorted(expected)
    for status in snapshot:
        assert status.total_records_inserted == expected[status.key] * rows
        assert status.total_records_synced == expected[status.key]


def test_snapshot_while_reporting_sees_whole_values():
    tracker = CumulativeTracker()
    done = threading.Event()
    seen: list[int] = []

    def reporter() -> None:
        for _ in range(2_000):
            tracker.report(CumulativeStatus(key="k", total_records_inserted=3))
        done.set()

    thread = threading.Thread(target=reporter)
    thread.start()
    while not done.is_set():
        seen.extend(s.total_records_inserted for s in tracker.snapshot())
    thread.join()

    assert all(value % 3 == 0 for value in seen)
    assert seen == sorted(seen)
    assert tracker.get("k").total_records_inserted == 6_000
