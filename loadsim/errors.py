"""
Failure taxonomy for the load simulator.

Only `ConnectivityFailure` is allowed to stop the process (at startup). The other
failures are contained at the smallest scope that keeps the simulator running:
one unit's write, one identity's generation, one key's firing.
"""

from __future__ import annotations


class LoadSimError(Exception):
    """Base class for all simulator errors."""


class TransientWriteFailure(LoadSimError):
    """A sink rejected or failed a bulk write; the next cycle retries naturally."""

    def __init__(self, unit: str, reason: str) -> None:
        super().__init__(f"write to '{unit}' failed: {reason}")
        self.unit = unit
        self.reason = reason


class GenerationFailure(LoadSimError):
    """The template engine could not produce records for one (unit, identity)."""

    def __init__(self, unit: str, identity: str, reason: str) -> None:
        super().__init__(f"generation of '{unit}' for '{identity}' failed: {reason}")
        self.unit = unit
        self.identity = identity
        self.reason = reason


class ConnectivityFailure(LoadSimError):
    """A sink's startup probe failed. Fatal to process startup."""

    def __init__(self, store: str, reason: str) -> None:
        super().__init__(f"{store} connectivity check failed: {reason}")
        self.store = store
        self.reason = reason


class DispatchFailure(LoadSimError):
    """One or more units of a cycle were not written; raised by scheduled handlers."""

    def __init__(self, failed_units: list[str]) -> None:
        super().__init__(f"dispatch failed for: {', '.join(failed_units)}")
        self.failed_units = failed_units


__all__ = [
    "LoadSimError",
    "TransientWriteFailure",
    "GenerationFailure",
    "ConnectivityFailure",
    "DispatchFailure",
]
