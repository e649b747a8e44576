"""
Load simulation runtime: wires the components together and runs them.

The relational store is driven by a fixed cadence loop on the calling thread:
one pipeline cycle over all transaction tables every `cycle_duration_seconds`.
The document store is driven by the multi-rate scheduler: each synced collection
fires on its own interval and runs a single-unit pipeline cycle.

Both pipelines report into the same tracker and draw timestamps from the same
allocator; the runtime constructs one of each and passes them down.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional

from loadsim.config import Settings
from loadsim.domain.models import CumulativeStatus, CycleReport, MachineIdentity, build_identities
from loadsim.errors import DispatchFailure
from loadsim.infrastructure.db_factory import PoolManager
from loadsim.infrastructure.sinks import MongoSink, PostgresSink, Sink
from loadsim.orchestrator import CyclePipeline
from loadsim.scheduler import FiringStats, MultiRateScheduler
from loadsim.templates.abstract import RecordTemplateEngine
from loadsim.templates.documents import DocumentTemplateEngine
from loadsim.templates.relational import RelationalTemplateEngine
from loadsim.timestamps import TimestampAllocator
from loadsim.tracker import CumulativeTracker
from loadsim.utils.logging import get_logger

log = get_logger(__name__)


@dataclass
class SimulationStatus:
    """Read-only view of the simulator handed to status renderers."""

    cycle: int
    cycle_duration_seconds: int
    transaction_tables: List[str]
    collections: List[str]
    frequencies: Dict[str, int]
    last_report: Optional[CycleReport] = None
    totals: Dict[str, CumulativeStatus] = field(default_factory=dict)
    last_fired: Dict[str, datetime] = field(default_factory=dict)
    firing_stats: Dict[str, FiringStats] = field(default_factory=dict)


class LoadSimulation:
    def __init__(
        self,
        settings: Settings,
        sql_sink: Sink,
        document_sink: Sink,
        sql_engine: Optional[RecordTemplateEngine] = None,
        document_engine: Optional[RecordTemplateEngine] = None,
        tracker: Optional[CumulativeTracker] = None,
        allocator: Optional[TimestampAllocator] = None,
        scheduler: Optional[MultiRateScheduler] = None,
        identities: Optional[List[MachineIdentity]] = None,
    ) -> None:
        self.settings = settings
        self.allocator = allocator or TimestampAllocator()
        self.tracker = tracker or CumulativeTracker()
        self.scheduler = scheduler or MultiRateScheduler()
        self.identities = (
            identities
            if identities is not None
            else build_identities(settings.machine_count, settings.plant_id, settings.company_id)
        )
        self.sql_pipeline = CyclePipeline(
            sql_engine or RelationalTemplateEngine(self.allocator), sql_sink, self.tracker
        )
        self.document_pipeline = CyclePipeline(
            document_engine or DocumentTemplateEngine.from_directory(settings.template_dir),
            document_sink,
            self.tracker,
        )
        self.cycle = 0
        self.last_report: Optional[CycleReport] = None
        self._shutdown = threading.Event()

    @classmethod
    def from_settings(cls, settings: Settings, manager: PoolManager) -> "LoadSimulation":
        return cls(
            settings,
            sql_sink=PostgresSink.from_manager(manager),
            document_sink=MongoSink.from_manager(manager),
        )

    def probe(self) -> None:
        """
        Check both stores. Raises `ConnectivityFailure` on the first one down.
        """
        log.info("Pre-warming database connections...")
        self.sql_pipeline.sink.test_connectivity()
        self.document_pipeline.sink.test_connectivity()

    def write_collection(self, collection: str) -> CycleReport:
        """Scheduler handler: one document cycle for a single collection."""
        report = self.document_pipeline.run_cycle(self.identities, [collection])
        if not report.ok:
            raise DispatchFailure(report.failed_units)
        return report

    def start_scheduler(self) -> None:
        self.scheduler.configure(self.settings.mongo_collection_frequencies)
        for collection in self.settings.collections_to_sync:
            if not self.scheduler.register_handler(collection, self.write_collection):
                log.warning(
                    "Collection has no valid frequency; it will not be synced",
                    extra={"key": collection},
                )
        self.scheduler.start()

    def run_cycle(self) -> CycleReport:
        self.cycle += 1
        log.info(f"--- SQL Cycle {self.cycle} ---", extra={"cycle": self.cycle})
        self.last_report = self.sql_pipeline.run_cycle(self.identities, self.settings.transaction_tables)
        return self.last_report

    def status(self) -> SimulationStatus:
        return SimulationStatus(
            cycle=self.cycle,
            cycle_duration_seconds=self.settings.cycle_duration_seconds,
            transaction_tables=list(self.settings.transaction_tables),
            collections=list(self.settings.collections_to_sync),
            frequencies=self.scheduler.frequencies(),
            last_report=self.last_report,
            totals={status.key: status for status in self.tracker.snapshot()},
            last_fired=self.scheduler.last_fired_times(),
            firing_stats=self.scheduler.firing_stats(),
        )

    def run(
        self,
        cycles: Optional[int] = None,
        on_cycle: Optional[Callable[[SimulationStatus], None]] = None,
    ) -> SimulationStatus:
        """
        Probe the stores, start the scheduler and run relational cycles until
        `cycles` have completed or `shutdown()` is called.

        A failed probe raises before anything is scheduled.
        """
        self.probe()
        self.start_scheduler()
        try:
            while not self._shutdown.is_set():
                started = time.monotonic()
                self.run_cycle()
                if on_cycle is not None:
                    on_cycle(self.status())
                if cycles is not None and self.cycle >= cycles:
                    break
                remaining = self.settings.cycle_duration_seconds - (time.monotonic() - started)
                self._shutdown.wait(timeout=max(remaining, 0.0))
        finally:
            self.scheduler.stop()
        return self.status()

    def shutdown(self) -> None:
        self._shutdown.set()


__all__ = ["LoadSimulation", "SimulationStatus"]
