"""Dashboard summaries derived from the five inventory sheet categories."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from settings import DashboardSettings
from stockboard.row_normalizer import Row, parse_date, parse_number, sheet_type_for

CATEGORY_KEYS: Mapping[str, str] = {
    "PURCHASE_ORDER": "purchase_orders",
    "PRODUCTION": "production",
    "FINISHED_GOODS": "finished_goods",
    "ISSUE": "issues",
    "BGRADE_SALE": "bgrade_sales",
}


@dataclass(frozen=True)
class CategorySummary:
    count: int
    total: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"count": self.count, "total": self.total}


@dataclass
class DashboardAggregate:
    summary: Dict[str, CategorySummary] = field(default_factory=dict)
    recent: Dict[str, List[Row]] = field(default_factory=dict)
    raw: Dict[str, List[Row]] = field(default_factory=dict)
    generated_at: Optional[datetime] = None
    recent_days: int = 30

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": {key: value.to_dict() for key, value in self.summary.items()},
            "recent": {key: [dict(row) for row in rows] for key, rows in self.recent.items()},
            "raw": {key: [dict(row) for row in rows] for key, rows in self.raw.items()},
            "generated_at": self.generated_at.isoformat() if self.generated_at else None,
            "recent_days": self.recent_days,
        }


def category_key(sheet_type: str) -> str:
    return CATEGORY_KEYS.get(sheet_type, sheet_type.lower())


def calculate_total(rows: Iterable[Row], field_name: str) -> float:
    """Sum ``field_name`` across ``rows``; unparseable values count as zero."""

    total = 0.0
    for row in rows:
        total += parse_number(row.get(field_name)) or 0.0
    return total


def row_date(row: Row, date_fields: Sequence[str]) -> Optional[datetime]:
    for name in date_fields:
        value = row.get(name)
        if value in (None, ""):
            continue
        return parse_date(value)
    return None


def recent_rows(rows: Iterable[Row], days: int, now: datetime, date_fields: Sequence[str]) -> List[Row]:
    """Return rows dated within the trailing ``days`` window ending at ``now``."""

    cutoff = now - timedelta(days=days)
    selected: List[Row] = []
    for row in rows:
        when = row_date(row, date_fields)
        if when is not None and when >= cutoff:
            selected.append(row)
    return selected


def build_dashboard_aggregate(
    data: Mapping[str, Sequence[Row]],
    settings: DashboardSettings,
    now: Optional[datetime] = None,
) -> DashboardAggregate:
    """Combine per-sheet rows into counts, totals, recent subsets and raw rows.

    Every configured sheet contributes a category even when ``data`` has no
    entry for it, in which case the category is empty.
    """

    moment = now or datetime.now()
    aggregate = DashboardAggregate(generated_at=moment, recent_days=settings.recent_days)
    for sheet_id in settings.sheet_ids:
        sheet_type = sheet_type_for(sheet_id, settings.sheets)
        key = category_key(sheet_type)
        rows = [dict(row) for row in data.get(sheet_id, ())]
        total_field = settings.total_fields.get(sheet_type)
        aggregate.summary[key] = CategorySummary(
            count=len(rows),
            total=calculate_total(rows, total_field) if total_field else None,
        )
        aggregate.recent[key] = recent_rows(rows, settings.recent_days, moment, settings.date_fields)
        aggregate.raw[key] = rows
    return aggregate


__all__ = [
    "CATEGORY_KEYS",
    "CategorySummary",
    "DashboardAggregate",
    "build_dashboard_aggregate",
    "calculate_total",
    "category_key",
    "recent_rows",
    "row_date",
]
