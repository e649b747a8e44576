"""
Multi-rate scheduler: one independently timed repeating trigger per key.

Every configured key gets its own trigger loop on a shared thread pool sized to
the number of keys, so a slow handler for one key never delays another key's
firings. Within a key, firings run back to back on the same loop and never
overlap; if a handler overruns one or more periods, the missed ticks are skipped
and the loop realigns to the key's original cadence.

Usage:
    scheduler = MultiRateScheduler()
    scheduler.configure({"AlarmLiveTransaction": 5, "OperatorMessagesHistory": 60})
    scheduler.register_handler("AlarmLiveTransaction", write_alarms)
    scheduler.start()
    ...
    scheduler.stop()
"""

from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Mapping, Optional

from loadsim.domain.models import utcnow
from loadsim.utils.logging import get_logger

log = get_logger(__name__)

Handler = Callable[[str], Any]


@dataclass
class ScheduleEntry:
    key: str
    interval_seconds: int
    handler: Optional[Handler] = None
    last_fired_at: Optional[datetime] = None


@dataclass(frozen=True)
class FiringResult:
    """
    Outcome of one firing. `ok` is False only when the handler raised.
    """

    key: str
    ok: bool
    fired_at: datetime
    duration_seconds: float = 0.0
    error: Optional[str] = None
    skipped: bool = False


@dataclass
class FiringStats:
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    last_result: Optional[FiringResult] = field(default=None)

    @property
    def last_error(self) -> Optional[str]:
        if self.last_result is None or self.last_result.ok:
            return None
        return self.last_result.error


class MultiRateScheduler:
    """
    Fires each key's handler every `interval_seconds`, first firing immediately.

    Parameters
    ----------
    clock : Callable[[], float]
        Monotonic seconds used for cadence. Injectable for tests.
    now : Callable[[], datetime]
        Wall-clock source for `last_fired_times()` and firing results.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = utcnow,
    ) -> None:
        self._clock = clock
        self._now = now
        self._lock = threading.Lock()
        self._entries: Dict[str, ScheduleEntry] = {}
        self._stats: Dict[str, FiringStats] = {}
        self._executor: Optional[ThreadPoolExecutor] = None
        self._stop_event = threading.Event()
        self._trigger_local = threading.local()

    @property
    def running(self) -> bool:
        return self._executor is not None

    def configure(self, frequencies: Mapping[str, Any]) -> None:
        """
        Create one entry per key. Keys whose interval is not a positive integer
        are left out. Handlers already registered for surviving keys are kept.
        """
        if self.running:
            raise RuntimeError("cannot reconfigure a running scheduler; call stop() first")

        entries: Dict[str, ScheduleEntry] = {}
        for key, interval in frequencies.items():
            if isinstance(interval, bool) or not isinstance(interval, int) or interval < 1:
                log.warning(
                    "Skipping key with invalid interval",
                    extra={"key": key, "interval": repr(interval)},
                )
                continue
            with self._lock:
                previous = self._entries.get(key)
            entries[key] = ScheduleEntry(
                key=key,
                interval_seconds=interval,
                handler=previous.handler if previous else None,
            )

        with self._lock:
            self._entries = entries
            self._stats = {key: FiringStats() for key in entries}

    def register_handler(self, key: str, handler: Handler) -> bool:
        """
        Attach or replace the handler for a configured key.

        Returns False, and attaches nothing, when `key` was not configured.
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                log.debug("No schedule for key; handler not registered", extra={"key": key})
                return False
            entry.handler = handler
            return True

    def start(self) -> None:
        with self._lock:
            if self._executor is not None:
                log.warning("Scheduler already running")
                return
            entries = [(entry.key, entry.interval_seconds) for entry in self._entries.values()]
            if not entries:
                log.info("Scheduler has no keys to run")
                return
            self._stop_event = threading.Event()
            self._executor = ThreadPoolExecutor(max_workers=len(entries), thread_name_prefix="trigger")
            for key, interval in entries:
                self._executor.submit(self._run_trigger, key, interval, self._stop_event)

        log.info(
            "Scheduler started",
            extra={"keys": len(entries), "frequencies": {key: interval for key, interval in entries}},
        )

    def stop(self, wait: bool = True) -> None:
        """
        Cancel all future firings. Firings already in progress are allowed to
        finish; with `wait=True` this call blocks until they have. Called from
        inside a handler it never waits, since that handler is one of them.
        """
        with self._lock:
            executor, self._executor = self._executor, None
            self._stop_event.set()
        if executor is None:
            return
        executor.shutdown(wait=wait and not getattr(self._trigger_local, "active", False))
        log.info("Scheduler stopped")

    def _run_trigger(self, key: str, interval: int, stop_event: threading.Event) -> None:
        self._trigger_local.active = True
        next_due = self._clock()
        while not stop_event.is_set():
            self.fire(key)

            next_due += interval
            now = self._clock()
            if next_due < now:
                missed = int((now - next_due) // interval) + 1
                next_due += missed * interval
                log.warning(
                    "Handler overran its period; skipping ticks",
                    extra={"key": key, "skipped_ticks": missed, "interval": interval},
                )
            if stop_event.wait(timeout=next_due - now):
                break

    def fire(self, key: str) -> FiringResult:
        """
        Run `key`'s handler once on the calling thread and record the outcome.

        A raising handler is logged and reported as a failed result; it never
        propagates and never touches `last_fired_at`.
        """
        with self._lock:
            entry = self._entries.get(key)
            handler = entry.handler if entry is not None else None

        fired_at = self._now()
        if handler is None:
            result = FiringResult(key=key, ok=True, fired_at=fired_at, skipped=True)
            self._record(result)
            return result

        started = time.perf_counter()
        try:
            handler(key)
        except Exception as exc:  # noqa: BLE001 - a failing handler must not kill its trigger
            log.error(
                f"[FIRING FAILED] {key}",
                exc_info=True,
                extra={"key": key, "operation": "fire"},
            )
            result = FiringResult(
                key=key,
                ok=False,
                fired_at=fired_at,
                duration_seconds=time.perf_counter() - started,
                error=f"{type(exc).__name__}: {exc}",
            )
        else:
            result = FiringResult(
                key=key,
                ok=True,
                fired_at=fired_at,
                duration_seconds=time.perf_counter() - started,
            )
            completed_at = self._now()
            with self._lock:
                entry = self._entries.get(key)
                if entry is not None and (entry.last_fired_at is None or completed_at >= entry.last_fired_at):
                    entry.last_fired_at = completed_at

        self._record(result)
        return result

    def _record(self, result: FiringResult) -> None:
        with self._lock:
            stats = self._stats.setdefault(result.key, FiringStats())
            if result.skipped:
                stats.skipped += 1
            elif result.ok:
                stats.succeeded += 1
            else:
                stats.failed += 1
            stats.last_result = result

    def last_fired_times(self) -> Dict[str, datetime]:
        """Copy of each key's last successful firing time; never-fired keys are absent."""
        with self._lock:
            return {
                key: entry.last_fired_at
                for key, entry in self._entries.items()
                if entry.last_fired_at is not None
            }

    def firing_stats(self) -> Dict[str, FiringStats]:
        with self._lock:
            return {
                key: FiringStats(stats.succeeded, stats.failed, stats.skipped, stats.last_result)
                for key, stats in self._stats.items()
            }

    def frequencies(self) -> Dict[str, int]:
        with self._lock:
            return {key: entry.interval_seconds for key, entry in self._entries.items()}


__all__ = ["MultiRateScheduler", "ScheduleEntry", "FiringResult", "FiringStats", "Handler"]
