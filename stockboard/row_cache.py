"""In-memory store of the latest valid rows per sheet."""
from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterator, List, Optional, Sequence, Tuple

from stockboard.row_normalizer import Row

Clock = Callable[[], datetime]


@dataclass(frozen=True)
class CacheEntry:
    """The rows most recently fetched for ``sheet_id`` and when they arrived."""

    sheet_id: str
    rows: Tuple[Row, ...]
    fetched_at: datetime

    def copy_rows(self) -> List[Row]:
        return [dict(row) for row in self.rows]

    def age(self, now: datetime) -> timedelta:
        return now - self.fetched_at


class RowCache:
    """Keyed cache holding exactly one entry per sheet identifier.

    The key space is the fixed set of known sheets so there is no eviction,
    and staleness is judged by callers via :meth:`is_stale`.  ``set`` replaces
    the previous entry as a whole; the last writer wins.
    """

    def __init__(self, clock: Optional[Clock] = None) -> None:
        self._clock = clock or datetime.now
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, sheet_id: str) -> Optional[CacheEntry]:
        with self._lock:
            return self._entries.get(sheet_id)

    def set(self, sheet_id: str, rows: Sequence[Row]) -> CacheEntry:
        frozen = tuple(dict(row) for row in rows)
        with self._lock:
            fetched_at = self._clock()
            previous = self._entries.get(sheet_id)
            if previous is not None and fetched_at < previous.fetched_at:
                fetched_at = previous.fetched_at
            entry = CacheEntry(sheet_id=sheet_id, rows=frozen, fetched_at=fetched_at)
            self._entries[sheet_id] = entry
        return entry

    def delete(self, sheet_id: str) -> None:
        with self._lock:
            self._entries.pop(sheet_id, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._entries)

    def is_stale(self, sheet_id: str, max_age: timedelta) -> bool:
        """Return ``True`` when the entry is missing or older than ``max_age``."""

        entry = self.get(sheet_id)
        if entry is None:
            return True
        return entry.age(self._clock()) > max_age

    def __contains__(self, sheet_id: object) -> bool:
        with self._lock:
            return sheet_id in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __iter__(self) -> Iterator[str]:
        return iter(self.keys())


__all__ = ["CacheEntry", "Clock", "RowCache"]
