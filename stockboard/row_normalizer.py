"""Row normalisation and required-field validation for sheet payloads.

The two sheet sources return different shapes: the Sheets API answers with a
header row followed by data rows (array-of-arrays) while OpenSheet answers
with already keyed objects.  :func:`normalize` turns both into a list of
field maps and :func:`validate` drops rows that are missing a field required
for the sheet type.  Neither step reorders rows.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence

from stockboard.errors import ValidationError

logger = logging.getLogger(__name__)

Row = Dict[str, Any]

UNKNOWN_SHEET_TYPE = "UNKNOWN"

DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y", "%d.%m.%Y", "%Y/%m/%d", "%Y-%m-%d %H:%M:%S")


class FieldKind(Enum):
    TEXT = "text"
    NUMBER = "number"
    DATE = "date"


@dataclass(frozen=True)
class RequiredField:
    name: str
    kind: FieldKind = FieldKind.TEXT

    @classmethod
    def from_config(cls, entry: Any) -> "RequiredField":
        """Build a rule from ``"name"`` or ``{"name": ..., "kind": ...}``."""

        if isinstance(entry, str):
            return cls(name=entry)
        if isinstance(entry, Mapping) and isinstance(entry.get("name"), str):
            try:
                kind = FieldKind(str(entry.get("kind", "text")).lower())
            except ValueError:
                logger.warning("Unknown field kind %r for %s, using text", entry.get("kind"), entry["name"])
                kind = FieldKind.TEXT
            return cls(name=entry["name"], kind=kind)
        raise ValueError(f"Invalid required field entry: {entry!r}")

    def to_config(self) -> Any:
        if self.kind is FieldKind.TEXT:
            return self.name
        return {"name": self.name, "kind": self.kind.value}


RuleSets = Mapping[str, Sequence[RequiredField]]


@dataclass
class ValidationResult:
    rows: List[Row] = field(default_factory=list)
    dropped: int = 0


def parse_number(value: Any) -> Optional[float]:
    """Return ``value`` as a float, tolerating currency symbols and separators."""

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip().replace(",", "").replace("$", "")
    if not text:
        return None
    try:
        return float(text)
    except ValueError:
        return None


def parse_date(value: Any) -> Optional[datetime]:
    """Return a naive :class:`datetime` for ISO or common sheet date strings."""

    if value is None:
        return None
    if isinstance(value, datetime):
        return value.replace(tzinfo=None)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    text = str(value).strip()
    if not text:
        return None
    candidate = text[:-1] + "+00:00" if text.endswith("Z") else text
    try:
        parsed = datetime.fromisoformat(candidate)
    except ValueError:
        parsed = None
    if parsed is not None:
        if parsed.tzinfo is not None:
            parsed = parsed.astimezone().replace(tzinfo=None)
        return parsed
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return None


def _is_text_present(value: Any) -> bool:
    return value is not None and str(value).strip() != ""


def is_present(value: Any, kind: FieldKind = FieldKind.TEXT) -> bool:
    """Return ``True`` when ``value`` satisfies the presence rule for ``kind``."""

    if not _is_text_present(value):
        return False
    if kind is FieldKind.NUMBER:
        return parse_number(value) is not None
    if kind is FieldKind.DATE:
        return parse_date(value) is not None
    return True


def _is_keyed(item: Any) -> bool:
    return isinstance(item, Mapping)


def normalize(raw: Any) -> List[Row]:
    """Convert a raw sheet payload into a list of field maps.

    Keyed rows are copied through unchanged.  Otherwise ``raw[0]`` is the
    header row and every following row is zipped against it, with missing
    cells becoming ``""``.
    """

    if raw is None:
        raise ValidationError("Sheet payload is empty")
    if not isinstance(raw, (list, tuple)):
        raise ValidationError(f"Sheet payload must be an array, got {type(raw).__name__}")
    if not raw:
        return []

    if _is_keyed(raw[0]):
        if not all(_is_keyed(item) for item in raw):
            raise ValidationError("Sheet payload mixes keyed rows with other values")
        return [dict(item) for item in raw]

    if not all(isinstance(item, (list, tuple)) for item in raw):
        raise ValidationError("Sheet payload mixes row arrays with other values")

    headers = [str(header) for header in raw[0]]
    rows: List[Row] = []
    for values in raw[1:]:
        row: Row = {}
        for index, header in enumerate(headers):
            cell = values[index] if index < len(values) else ""
            row[header] = "" if cell is None else cell
        rows.append(row)
    return rows


def sheet_type_for(sheet_id: str, mapping: Mapping[str, str]) -> str:
    return mapping.get(sheet_id, UNKNOWN_SHEET_TYPE)


def validate(rows: Sequence[Row], sheet_type: str, rules: RuleSets) -> ValidationResult:
    """Drop rows missing any field required for ``sheet_type``."""

    required = rules.get(sheet_type)
    if not required:
        return ValidationResult(rows=list(rows), dropped=0)

    kept = [
        row
        for row in rows
        if all(is_present(row.get(rule.name), rule.kind) for rule in required)
    ]
    dropped = len(rows) - len(kept)
    if dropped:
        logger.debug("Dropped %s rows failing the %s rule set", dropped, sheet_type)
    return ValidationResult(rows=kept, dropped=dropped)


__all__ = [
    "DATE_FORMATS",
    "FieldKind",
    "RequiredField",
    "Row",
    "RuleSets",
    "UNKNOWN_SHEET_TYPE",
    "ValidationResult",
    "is_present",
    "normalize",
    "parse_date",
    "parse_number",
    "sheet_type_for",
    "validate",
]
