"""
CSV-backed document templates for the document store's collections.

Every `<collection>.csv` in the template directory becomes one collection's
template: the header row names the fields, each data row becomes one document.
Cell text is coerced once at load time; generation copies the documents and
stamps machine and time fields.
"""

from __future__ import annotations

import csv
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from loadsim.domain.models import MachineIdentity
from loadsim.templates.abstract import AbstractTemplateEngine
from loadsim.utils.logging import get_logger

log = get_logger(__name__)

Document = Dict[str, Any]

_DATETIME_FORMATS = (
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y %I:%M:%S %p",
    "%d-%m-%Y %H:%M:%S",
    "%Y-%m-%d %H:%M:%S.%f",
)

_CYCLE_STEP = timedelta(seconds=3)


class _Now:
    """Marker for template cells holding a timestamp; replaced at generation time."""

    def __repr__(self) -> str:
        return "<now>"


NOW = _Now()


def _looks_like_datetime(value: str) -> bool:
    try:
        datetime.fromisoformat(value)
        return True
    except ValueError:
        pass
    for fmt in _DATETIME_FORMATS:
        try:
            datetime.strptime(value, fmt)
            return True
        except ValueError:
            continue
    return False


def coerce_cell(value: Optional[str]) -> Any:
    """
    Convert CSV cell text to a document value.

    Empty and NULL become None; then int, float, timestamp (stamped with the
    generation time), bool, and finally the string itself.
    """
    if value is None:
        return None
    text = value.strip()
    if not text or text.lower() == "null":
        return None
    try:
        return int(text)
    except ValueError:
        pass
    try:
        return float(text)
    except ValueError:
        pass
    if _looks_like_datetime(text):
        return NOW
    if text.lower() in ("true", "false"):
        return text.lower() == "true"
    return value


def load_csv_templates(template_dir: Path) -> Dict[str, List[Document]]:
    """Load every CSV file in `template_dir`, keyed by file stem."""
    templates: Dict[str, List[Document]] = {}
    if not template_dir.is_dir():
        log.warning("Template directory not found", extra={"template_dir": str(template_dir)})
        return templates

    for csv_path in sorted(template_dir.glob("*.csv")):
        with csv_path.open("r", newline="", encoding="utf-8-sig") as f:
            reader = csv.DictReader(f)
            if not reader.fieldnames:
                templates[csv_path.stem] = []
                continue
            templates[csv_path.stem] = [
                {field: coerce_cell(row.get(field)) for field in reader.fieldnames} for row in reader
            ]
        log.debug(
            "Loaded document template",
            extra={"collection": csv_path.stem, "documents": len(templates[csv_path.stem])},
        )
    return templates


class DocumentTemplateEngine(AbstractTemplateEngine):
    """
    Generates documents for a collection from its CSV template.
    """

    def __init__(
        self,
        templates: Dict[str, List[Document]],
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._templates = templates
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @classmethod
    def from_directory(cls, template_dir: Path) -> "DocumentTemplateEngine":
        return cls(load_csv_templates(template_dir))

    def generate(self, unit: str, identity: MachineIdentity) -> List[Document]:
        template = self.template(unit)
        if not template:
            return []

        now = self._clock()
        documents = []
        for index, template_doc in enumerate(template):
            doc = {key: (now if value is NOW else value) for key, value in template_doc.items()}
            doc["MachineID"] = identity.machine_id
            if "AlarmTime" in doc:
                doc["AlarmTime"] = now
            if "TimeStamp" in doc:
                doc["TimeStamp"] = now
            if "CycleStartTS" in doc:
                doc["CycleStartTS"] = now + index * _CYCLE_STEP
                doc["CycleEndTS"] = now + (index + 1) * _CYCLE_STEP
            documents.append(doc)
        return documents


__all__ = ["DocumentTemplateEngine", "coerce_cell", "load_csv_templates", "NOW"]
