"""
Built-in row templates for the relational store's transaction tables.

Each `generate` call copies the table's template rows, draws one allocation from
the shared `TimestampAllocator` and stamps the machine and time columns. Rows of
one call are spread over time from the allocated base so that a single batch is
internally ordered.
"""

from __future__ import annotations

import zlib
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, List

from loadsim.domain.models import MachineIdentity
from loadsim.templates.abstract import AbstractTemplateEngine
from loadsim.timestamps import TimestampAllocator

Row = Dict[str, Any]

_PLACEHOLDER_TS = datetime(2000, 1, 1, tzinfo=timezone.utc)


def _focas_live_data() -> List[Row]:
    spindle_speeds = [737, 738, 739]
    spindle_loads = [Decimal("4.000"), Decimal("5.000"), Decimal("8.000")]
    temperatures = [Decimal("42.000"), Decimal("43.000")]
    feed_rates = [Decimal("96.000"), Decimal("118.000")]
    power_on_times = [100, 90, 80, 70, 60, 50, 40, 30, 20, 10]

    rows = []
    for i, power_on in enumerate(power_on_times):
        rows.append(
            {
                "MachineID": "MachineID-1",
                "MachineStatus": "In Cycle",
                "MachineMode": "MEM",
                "ProgramNo": "O179",
                "ToolNo": 101,
                "OffsetNo": 1,
                "SpindleStatus": "RUNNING",
                "SpindleSpeed": spindle_speeds[i % len(spindle_speeds)],
                "SpindleLoad": spindle_loads[i % len(spindle_loads)],
                "Temperature": temperatures[i % len(temperatures)],
                "SpindleTarque": Decimal("0.000"),
                "FeedRate": feed_rates[i % len(feed_rates)],
                "AlarmNo": -1,
                "PowerOnTime": power_on,
                "OperatingTime": power_on,
                "CutTime": power_on - (power_on * 30 // 100),
                "ServoLoad_XYZ": None,
                "AxisPosition": None,
                "ProgramBlock": "GOD BUSH RUFFING 2ND",
                "CNCTimeStamp": _PLACEHOLDER_TS,
                "PartsCount": 1,
                "BatchTS": _PLACEHOLDER_TS,
                "MachineUpDownStatus": 1,
                "MachineUpDownBatchTS": _PLACEHOLDER_TS,
                "CompanyID": "ACE",
                "SyncedStatus": 0,
                "LiveAlarmsNo": None,
            }
        )
    return rows


def _focas_predictive_maintenance() -> List[Row]:
    alarm_descs = [
        "Luboil flow at all points",
        "Spindle Belt tensn,coupling",
        "check Tool.Ejctn,clmpng frc",
        "All springs in ATC pocket",
    ]
    synced = [0, 1, 0, 0]
    return [
        {
            "MachineId": "MachineId-1",
            "AlarmNo": 0,
            "TargetValue": Decimal("4416.00"),
            "ActualValue": Decimal("1387.28"),
            "TimeStamp": _PLACEHOLDER_TS,
            "CompanyID": "AMIT",
            "AlarmDesc": desc,
            "CountType": 1,
            "SyncedStatus": status,
        }
        for desc, status in zip(alarm_descs, synced)
    ]


def _machine_status_history() -> List[Row]:
    arrival = ("DataArrival", "Last Data has been Arrived")
    connected = ("CloudConnectedStatus", "Service Successfully Running")
    events = [arrival, connected, connected, connected, arrival, connected, connected, arrival, arrival, connected]
    return [
        {
            "MachineID": "MachineID-1",
            "CompanyID": "1",
            "EventID": event_id,
            "Remarks": remarks,
            "UpdatedTS": _PLACEHOLDER_TS,
            "SyncedStatus": 0,
        }
        for event_id, remarks in events
    ]


def _raw_data() -> List[Row]:
    common = {
        "IPAddress": "1",
        "Mc": "1",
        "Comp": "6519",
        "Opn": "30",
        "Opr": "9449",
        "Sttime": _PLACEHOLDER_TS,
        "Ndtime": _PLACEHOLDER_TS,
        "Status": 0,
        "WorkOrderNumber": "0",
        "SPLString3": None,
        "SPLString4": None,
        "SPLString5": None,
        "SPLString6": None,
        "SPLString7": None,
        "SPLString8": None,
        "SyncedStatus": 0,
    }
    first = {"DataType": 1, **common, "SPLSTRING1": 1, "SPLSTRING2": None}
    second = {"DataType": 2, **common, "SPLSTRING1": None, "SPLSTRING2": "5"}
    return [first, second]


def _energy_consumption() -> List[Row]:
    return [
        {
            "MachineID": "1",
            "gtime": _PLACEHOLDER_TS,
            "ampere": 0,
            "watt": Decimal("0.90953"),
            "pf": Decimal("0.63"),
            "idd": 483195103,
            "KWH": Decimal("66524.14844"),
            "gtime1": _PLACEHOLDER_TS,
            "ampere1": None,
            "KWH1": Decimal("66524.17188"),
            "Volt1": 239,
            "Volt2": 240,
            "Volt3": 241,
            "AmpereR": Decimal("1.71883"),
            "AmpereY": Decimal("1.30476"),
            "AmpereB": Decimal("2.97324"),
            "KVA": 0,
            "EnergySource": 1,
            "CompanyIotID": 1,
            "Volt4": 415,
            "Volt5": 417,
            "Volt6": 416,
            "SyncedStatus": 0,
        }
    ]


def _machine_jitter(machine_id: str) -> timedelta:
    """Sub-millisecond offset derived from the machine id, stable across runs."""
    ticks = (zlib.crc32(machine_id.encode("utf-8")) & 0x7FFFFFFF) % 10_000
    return timedelta(microseconds=ticks // 10)


def _stamp_live_data(row: Row, identity: MachineIdentity, base: datetime, index: int) -> None:
    row["MachineID"] = identity.machine_id
    row["CompanyID"] = identity.company_id
    row["CNCTimeStamp"] = base + timedelta(milliseconds=index * 3000)
    row["BatchTS"] = base + timedelta(seconds=3)
    row["MachineUpDownBatchTS"] = base - timedelta(hours=1)


def _stamp_maintenance(row: Row, identity: MachineIdentity, base: datetime, index: int) -> None:
    row["MachineId"] = identity.machine_id
    row["CompanyID"] = identity.company_id
    row["TimeStamp"] = base + _machine_jitter(identity.machine_id)


def _stamp_status_history(row: Row, identity: MachineIdentity, base: datetime, index: int) -> None:
    row["MachineID"] = identity.machine_id
    row["CompanyID"] = identity.company_id
    row["UpdatedTS"] = base + _machine_jitter(identity.machine_id)


def _stamp_energy(row: Row, identity: MachineIdentity, base: datetime, index: int) -> None:
    row["MachineID"] = identity.machine_id
    row["gtime"] = base - timedelta(minutes=1)
    row["gtime1"] = base


def _stamp_raw_data(row: Row, identity: MachineIdentity, base: datetime, index: int) -> None:
    start = base + _machine_jitter(identity.machine_id)
    row["Mc"] = identity.machine_id
    row["Sttime"] = start
    row["Ndtime"] = start + timedelta(seconds=30)


Stamper = Callable[[Row, MachineIdentity, datetime, int], None]

_TABLES: Dict[str, tuple[Callable[[], List[Row]], Stamper]] = {
    "Focas_LiveData": (_focas_live_data, _stamp_live_data),
    "Focas_PredictiveMaintenance": (_focas_predictive_maintenance, _stamp_maintenance),
    "MachineStatusHistory": (_machine_status_history, _stamp_status_history),
    "RawData": (_raw_data, _stamp_raw_data),
    "tcs_energyconsumption": (_energy_consumption, _stamp_energy),
}


class RelationalTemplateEngine(AbstractTemplateEngine):
    """
    Generates rows for the five transaction tables from in-code templates.
    """

    def __init__(self, allocator: TimestampAllocator) -> None:
        self._allocator = allocator
        self._templates = {name: build() for name, (build, _) in _TABLES.items()}

    def generate(self, unit: str, identity: MachineIdentity) -> List[Row]:
        template = self.template(unit)
        if not template:
            return []

        _, stamp = _TABLES[unit]
        base, _ = self._allocator.allocate()
        rows = []
        for index, template_row in enumerate(template):
            row = dict(template_row)
            stamp(row, identity, base, index)
            rows.append(row)
        return rows


__all__ = ["RelationalTemplateEngine"]
