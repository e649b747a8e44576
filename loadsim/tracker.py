"""
Cumulative per-key insert statistics shared by the scheduler and the pipeline.

Reporters on any thread call `report()` with a delta; the tracker folds it into
the key's running total. Each key has its own lock, so reports for unrelated keys
never contend and reports for the same key serialize. A short registry lock only
guards creation of new keys and the key list used by `snapshot()`.
"""

from __future__ import annotations

import threading
from typing import Dict, List

from loadsim.domain.models import CumulativeStatus
from loadsim.utils.logging import get_logger

log = get_logger(__name__)


class _Slot:
    __slots__ = ("lock", "status")

    def __init__(self, status: CumulativeStatus) -> None:
        self.lock = threading.Lock()
        self.status = status


class CumulativeTracker:
    def __init__(self) -> None:
        self._registry_lock = threading.Lock()
        self._slots: Dict[str, _Slot] = {}

    def report(self, delta: CumulativeStatus) -> CumulativeStatus:
        """
        Merge `delta` into the running total for `delta.key` and return the new total.
        """
        with self._registry_lock:
            slot = self._slots.get(delta.key)
            if slot is None:
                self._slots[delta.key] = _Slot(delta)
                log.debug("Tracking new key", extra={"key": delta.key})
                return delta

        with slot.lock:
            slot.status = slot.status.combine(delta)
            return slot.status

    def get(self, key: str) -> CumulativeStatus | None:
        with self._registry_lock:
            slot = self._slots.get(key)
        if slot is None:
            return None
        with slot.lock:
            return slot.status

    def snapshot(self) -> List[CumulativeStatus]:
        """
        Point-in-time copy of every key's total, ordered by key.

        Statuses are immutable, so each entry is a whole value from one moment;
        per-key locks are held only long enough to read a reference.
        """
        with self._registry_lock:
            slots = sorted(self._slots.items())
        statuses: List[CumulativeStatus] = []
        for _, slot in slots:
            with slot.lock:
                statuses.append(slot.status)
        return statuses

    def reset(self) -> None:
        """Drop all totals. Test isolation only."""
        with self._registry_lock:
            self._slots.clear()


__all__ = ["CumulativeTracker"]
