"""
Collision-free timestamp allocation for concurrent record producers.

Producers generating rows "at the same instant" on different threads still need
time values that sort and key uniquely. Each allocation takes the wall clock,
pushes it forward by `sequence` milliseconds and never hands out a value at or before
the previous allocation.

Usage:
    allocator = TimestampAllocator()
    base, seq = allocator.allocate()
    stamps = [base + timedelta(seconds=3 * i) for i in range(rows)]
"""

from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, NamedTuple, Optional

_MIN_STEP = timedelta(milliseconds=1)


class Allocation(NamedTuple):
    base_time: datetime
    sequence: int


class TimestampAllocator:
    """
    Process-wide sequence counter guarded by a single lock.

    Construct one per process and pass it to every engine that stamps records.
    For any two allocations, the smaller sequence carries the strictly earlier base time.
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None) -> None:
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = threading.Lock()
        self._next_sequence = 0
        self._last_base: Optional[datetime] = None

    def allocate(self) -> Allocation:
        with self._lock:
            self._next_sequence += 1
            sequence = self._next_sequence
            base = self._clock() + timedelta(milliseconds=sequence)
            # wall clock may step backwards; ordering and uniqueness must not
            if self._last_base is not None and base <= self._last_base:
                base = self._last_base + _MIN_STEP
            self._last_base = base
            return Allocation(base, sequence)

    @property
    def issued(self) -> int:
        with self._lock:
            return self._next_sequence


__all__ = ["Allocation", "TimestampAllocator"]
