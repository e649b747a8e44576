"""
Record template engine interface.

An engine turns a logical unit name (table or collection) and a machine identity
into a fresh list of records ready to write. Engines are called concurrently from
the pipeline's producer threads, one identity per thread, so `generate` must not
mutate any state callers can see.
"""

from __future__ import annotations

import abc
from typing import Any, Dict, List, Protocol, Sequence, runtime_checkable

from loadsim.domain.models import MachineIdentity


@runtime_checkable
class RecordTemplateEngine(Protocol):
    """
    Common interface all template engines implement.

    Attributes
    ----------
    units : Sequence[str]
        Unit names this engine has templates for.
    """

    units: Sequence[str]

    def generate(self, unit: str, identity: MachineIdentity) -> List[Dict[str, Any]]:
        """
        Produce the records for one unit and one machine.

        Returns an empty list for units the engine has no template for. Records
        produced by one call share a schema (same keys, same order).
        """
        ...


class AbstractTemplateEngine(abc.ABC):
    """
    ABC helper for class-based engines holding per-unit row templates.
    """

    _templates: Dict[str, List[Dict[str, Any]]]

    @property
    def units(self) -> Sequence[str]:
        return sorted(self._templates)

    def template(self, unit: str) -> List[Dict[str, Any]]:
        return self._templates.get(unit, [])

    @abc.abstractmethod
    def generate(self, unit: str, identity: MachineIdentity) -> List[Dict[str, Any]]:  # pragma: no cover - interface only
        raise NotImplementedError


__all__ = ["RecordTemplateEngine", "AbstractTemplateEngine"]
