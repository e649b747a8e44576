"""
Domain models for the load simulator.

Pydantic models for the values that cross component boundaries: the simulated
machines records are generated for, the cumulative per-key status the tracker
keeps, and the per-cycle report the pipeline returns. `Batch` is a plain dataclass
because it carries raw rows and is handed to exactly one sink.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple

from pydantic import BaseModel, Field, computed_field

Record = Mapping[str, Any]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MachineIdentity(BaseModel):
    """
    One simulated machine. Records for a pass are generated per identity.
    """

    machine_id: str = Field(..., description="Machine identifier, e.g. M-001.")
    plant_id: str = Field("Plant-01", description="Plant the machine belongs to.")
    company_id: str = Field("Ace", description="Owning company.")

    model_config = {"frozen": True}


def build_identities(count: int, plant_id: str = "Plant-01", company_id: str = "Ace") -> List[MachineIdentity]:
    """Build `count` identities numbered M-001, M-002, ..."""
    return [
        MachineIdentity(machine_id=f"M-{i:03d}", plant_id=plant_id, company_id=company_id)
        for i in range(1, count + 1)
    ]


class CumulativeStatus(BaseModel):
    """
    Running totals for one logical key, or a delta to be merged into them.

    Counts combine by addition; `last_insert_at` is replaced by the latest report.
    """

    key: str
    machine_id: str = "ALL"
    total_records_inserted: int = Field(0, ge=0)
    total_records_synced: int = Field(0, ge=0)
    last_insert_at: datetime = Field(default_factory=utcnow)
    last_sync_at: Optional[datetime] = None

    model_config = {"frozen": True}

    def combine(self, delta: "CumulativeStatus") -> "CumulativeStatus":
        return self.model_copy(
            update={
                "total_records_inserted": self.total_records_inserted + delta.total_records_inserted,
                "total_records_synced": self.total_records_synced + delta.total_records_synced,
                "last_insert_at": delta.last_insert_at,
                "last_sync_at": delta.last_sync_at or self.last_sync_at,
            }
        )


@dataclass
class Batch:
    """
    Merged, ready-to-write rows for one unit within one cycle.

    `columns` is the schema of the first non-empty contribution; every row is a
    tuple aligned with it.
    """

    unit: str
    columns: Tuple[str, ...] = ()
    rows: List[Tuple[Any, ...]] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.rows)

    def as_documents(self) -> List[Dict[str, Any]]:
        return [dict(zip(self.columns, row)) for row in self.rows]


class UnitOutcome(BaseModel):
    """Result of dispatching one unit's batch."""

    unit: str
    ok: bool
    rows: int = 0
    error: Optional[str] = None


class CycleReport(BaseModel):
    """
    Per-unit outcomes of one pipeline pass plus the cycle's profile.
    """

    started_at: datetime = Field(default_factory=utcnow)
    identities: int = 0
    outcomes: Dict[str, UnitOutcome] = Field(default_factory=dict)
    generation_failures: int = 0
    duration_seconds: float = 0.0
    peak_rss_bytes: Optional[int] = None
    cpu_percent: Optional[float] = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def rows_written(self) -> int:
        return sum(o.rows for o in self.outcomes.values() if o.ok)

    @property
    def ok(self) -> bool:
        return all(o.ok for o in self.outcomes.values())

    @property
    def failed_units(self) -> List[str]:
        return [name for name, o in self.outcomes.items() if not o.ok]


__all__ = [
    "Record",
    "MachineIdentity",
    "build_identities",
    "CumulativeStatus",
    "Batch",
    "UnitOutcome",
    "CycleReport",
    "utcnow",
]
