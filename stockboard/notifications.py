"""Publish/subscribe bus carrying sheet synchronisation events."""
from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Deque, Dict, List, Mapping, Optional, Tuple

from stockboard.row_normalizer import Row

logger = logging.getLogger(__name__)

DATA_UPDATED = "data:updated"
DATA_STALE = "data:stale"
DATA_ERROR = "data:error"
DATA_REFRESH_COMPLETE = "data:refresh-complete"

Listener = Callable[[Any], None]


@dataclass(frozen=True)
class DataUpdated:
    sheet_id: str
    rows: List[Row]
    timestamp: datetime


@dataclass(frozen=True)
class DataStale:
    """Published when a fetch failed and cached rows were served instead."""

    sheet_id: str
    rows: List[Row]
    fetched_at: datetime
    error_message: str


@dataclass(frozen=True)
class DataError:
    sheet_id: str
    error_message: str


@dataclass(frozen=True)
class RefreshComplete:
    results: Mapping[str, List[Row]] = field(default_factory=dict)
    failed: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Notification:
    event: str
    payload: Any
    published_at: datetime


class NotificationBus:
    """Dispatch named events to registered listeners.

    Listeners run synchronously on the publishing thread.  A listener that
    raises is logged and skipped so that presentation code can never break a
    fetch.  The most recent notifications are kept for inspection.
    """

    def __init__(self, history_size: int = 100) -> None:
        self._listeners: Dict[str, List[Tuple[Listener, bool]]] = {}
        self._history: Deque[Notification] = deque(maxlen=history_size)
        self._lock = threading.Lock()

    def subscribe(self, event: str, listener: Listener, *, once: bool = False) -> Callable[[], None]:
        if not callable(listener):
            raise TypeError("listener must be callable")
        with self._lock:
            self._listeners.setdefault(event, []).append((listener, once))
        return lambda: self.unsubscribe(event, listener)

    def once(self, event: str, listener: Listener) -> Callable[[], None]:
        return self.subscribe(event, listener, once=True)

    def unsubscribe(self, event: str, listener: Listener) -> None:
        with self._lock:
            entries = self._listeners.get(event)
            if not entries:
                return
            self._listeners[event] = [entry for entry in entries if entry[0] != listener]

    def publish(self, event: str, payload: Any = None) -> int:
        """Deliver ``payload`` to every listener of ``event``; return the count."""

        with self._lock:
            self._history.append(Notification(event=event, payload=payload, published_at=datetime.now()))
            entries = list(self._listeners.get(event, ()))
            if any(once for _, once in entries):
                self._listeners[event] = [entry for entry in entries if not entry[1]]

        delivered = 0
        for listener, _once in entries:
            try:
                listener(payload)
            except Exception:
                logger.exception("Listener for %s raised an exception", event)
            else:
                delivered += 1
        return delivered

    def listener_count(self, event: Optional[str] = None) -> int:
        with self._lock:
            if event is not None:
                return len(self._listeners.get(event, ()))
            return sum(len(entries) for entries in self._listeners.values())

    def recent(self, limit: int = 10, event: Optional[str] = None) -> List[Notification]:
        """Return the newest notifications first, optionally for one event."""

        with self._lock:
            items = [item for item in reversed(self._history) if event is None or item.event == event]
        return items[:limit]

    def clear_history(self) -> None:
        with self._lock:
            self._history.clear()


__all__ = [
    "DATA_ERROR",
    "DATA_REFRESH_COMPLETE",
    "DATA_STALE",
    "DATA_UPDATED",
    "DataError",
    "DataStale",
    "DataUpdated",
    "Listener",
    "Notification",
    "NotificationBus",
    "RefreshComplete",
]
