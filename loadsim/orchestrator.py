"""
Fan-out/fan-in cycle pipeline.

One `run_cycle` call is one pass over every (machine × unit) pair:

1. Generation: one producer per machine, run on a thread pool bounded by CPU
   count. Each producer builds the records for all requested units.
2. Merge: per unit, the machines' records are concatenated in machine order into
   a single `Batch`. The first non-empty contribution fixes the column set; later
   contributions are projected onto it (extra fields dropped, missing ones None).
3. Dispatch: every unit's batch is written concurrently; the sink's own admission
   cap bounds how many writes are actually in flight. The call returns once every
   unit has been attempted.

Usage:
    pipeline = CyclePipeline(engine, sink, tracker)
    report = pipeline.run_cycle(identities, ["RawData", "Focas_LiveData"])
    print(report.outcomes["RawData"].ok)
"""

from __future__ import annotations

import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from loadsim.domain.models import (
    Batch,
    CumulativeStatus,
    CycleReport,
    MachineIdentity,
    Record,
    UnitOutcome,
    utcnow,
)
from loadsim.errors import GenerationFailure, TransientWriteFailure
from loadsim.infrastructure.sinks import Sink
from loadsim.templates.abstract import RecordTemplateEngine
from loadsim.tracker import CumulativeTracker
from loadsim.utils.logging import get_logger
from loadsim.utils.profiler import profile_block

log = get_logger(__name__)

ProducerResult = Dict[str, List[Record]]


@dataclass(frozen=True)
class WorkUnit:
    identity: MachineIdentity
    unit: str


def merge_results(units: Sequence[str], results: Sequence[Mapping[str, Sequence[Record]]]) -> Dict[str, Batch]:
    """
    Combine per-machine results into one batch per unit.

    The first machine with rows for a unit decides the batch's columns. Rows from
    later machines are projected onto those columns, so a conflicting schema
    never fails the merge.
    """
    batches: Dict[str, Batch] = {unit: Batch(unit=unit) for unit in units}
    for result in results:
        for unit, records in result.items():
            batch = batches.get(unit)
            if batch is None or not records:
                continue
            if not batch.columns:
                batch.columns = tuple(records[0].keys())
            columns = batch.columns
            batch.rows.extend(tuple(record.get(column) for column in columns) for record in records)
    return batches


def _round(value: Optional[float], decimals: int = 2) -> Optional[float]:
    return round(value, decimals) if value is not None else None


class CyclePipeline:
    """
    Generates, merges and dispatches one store's units for a set of machines.

    Parameters
    ----------
    engine : RecordTemplateEngine
        Produces records per (unit, machine). Called concurrently.
    sink : Sink
        Bulk-write target; enforces its own concurrency cap.
    tracker : CumulativeTracker
        Receives one delta per successfully written unit.
    max_producers : int | None
        Generation thread cap. Defaults to the CPU count.
    """

    def __init__(
        self,
        engine: RecordTemplateEngine,
        sink: Sink,
        tracker: CumulativeTracker,
        max_producers: Optional[int] = None,
    ) -> None:
        self.engine = engine
        self.sink = sink
        self.tracker = tracker
        self.max_producers = max_producers or os.cpu_count() or 1

    def _produce(self, identity: MachineIdentity, units: Sequence[str]) -> Tuple[ProducerResult, int]:
        result: ProducerResult = {}
        failures = 0
        for work in (WorkUnit(identity, unit) for unit in units):
            try:
                result[work.unit] = list(self.engine.generate(work.unit, work.identity))
            except Exception as exc:  # noqa: BLE001 - one unit's template must not sink the machine
                failure = GenerationFailure(work.unit, identity.machine_id, str(exc))
                log.warning(
                    str(failure),
                    exc_info=True,
                    extra={"unit": work.unit, "identity": identity.machine_id, "operation": "generate"},
                )
                failures += 1
        return result, failures

    def _generate(self, identities: Sequence[MachineIdentity], units: Sequence[str]) -> Tuple[List[ProducerResult], int]:
        workers = max(1, min(len(identities), self.max_producers))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="producer") as pool:
            produced = list(pool.map(lambda identity: self._produce(identity, units), identities))
        return [result for result, _ in produced], sum(failures for _, failures in produced)

    def _write(self, unit: str, batch: Batch) -> UnitOutcome:
        if not batch.rows:
            return UnitOutcome(unit=unit, ok=True, rows=0)
        try:
            rows = self.sink.write(unit, batch)
        except TransientWriteFailure as exc:
            log.error(
                f"[WRITE FAILED] {unit}",
                extra={"unit": unit, "store": self.sink.name, "rows": len(batch), "operation": "write", "error": exc.reason},
            )
            return UnitOutcome(unit=unit, ok=False, error=exc.reason)
        except Exception as exc:  # noqa: BLE001 - intentional broad catch to record failures
            log.exception(
                f"[WRITE FAILED] {unit}",
                extra={"unit": unit, "store": self.sink.name, "rows": len(batch), "operation": "write"},
            )
            return UnitOutcome(unit=unit, ok=False, error=str(exc))

        self.tracker.report(
            CumulativeStatus(key=unit, total_records_inserted=rows, last_insert_at=utcnow())
        )
        return UnitOutcome(unit=unit, ok=True, rows=rows)

    def _dispatch(self, batches: Mapping[str, Batch]) -> Dict[str, UnitOutcome]:
        with ThreadPoolExecutor(max_workers=len(batches), thread_name_prefix=f"{self.sink.name}-write") as pool:
            futures = {unit: pool.submit(self._write, unit, batch) for unit, batch in batches.items()}
            return {unit: future.result() for unit, future in futures.items()}

    def run_cycle(self, identities: Sequence[MachineIdentity], units: Sequence[str]) -> CycleReport:
        """
        Run one full generate → merge → dispatch pass and report per-unit outcomes.

        Never raises for generation or write failures; those show up in the
        report and the log.
        """
        report = CycleReport(identities=len(identities))
        units = list(dict.fromkeys(units))
        if not identities or not units:
            return report

        with profile_block(f"{self.sink.name}-cycle") as stats:
            results, generation_failures = self._generate(identities, units)
            batches = merge_results(units, results)
            outcomes = self._dispatch(batches)

        report = report.model_copy(
            update={
                "outcomes": outcomes,
                "generation_failures": generation_failures,
                "duration_seconds": _round(stats.duration_seconds),
                "peak_rss_bytes": stats.peak_rss_bytes,
                "cpu_percent": _round(stats.cpu_percent, 1),
            }
        )
        log.info(
            f"[CYCLE COMPLETE] {self.sink.name}",
            extra={
                "store": self.sink.name,
                "units": len(units),
                "identities": len(identities),
                "rows": report.rows_written,
                "failed_units": report.failed_units,
                "duration": report.duration_seconds,
            },
        )
        return report


__all__ = ["CyclePipeline", "WorkUnit", "merge_results"]
