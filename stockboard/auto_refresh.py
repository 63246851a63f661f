"""Background scheduler that re-runs a refresh callback at a fixed cadence."""
from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Optional

from stockboard.errors import ScheduleError

logger = logging.getLogger(__name__)


class AutoRefresher:
    """Run ``callback`` every ``interval`` seconds on a daemon thread.

    At most one worker is active: :meth:`start` cancels the running schedule
    before starting a new one.  A failing tick is logged and the schedule
    carries on with the next tick.
    """

    def __init__(self, callback: Callable[[], Any], *, name: str = "stockboard-auto-refresh") -> None:
        self._callback = callback
        self._name = name
        self._lock = threading.Lock()
        self._stop_event: Optional[threading.Event] = None
        self._thread: Optional[threading.Thread] = None
        self._interval = 0.0
        self._tick_count = 0
        self._failure_count = 0
        self._last_error: Optional[ScheduleError] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self, interval_seconds: float) -> bool:
        """(Re)start the schedule with a period of ``interval_seconds`` seconds.

        A non-positive interval only stops the running schedule.
        """

        with self._lock:
            self._stop_locked()
            if interval_seconds <= 0:
                logger.info("Auto-refresh disabled")
                return False
            self._interval = float(interval_seconds)
            stop_event = threading.Event()
            thread = threading.Thread(
                target=self._run, args=(stop_event, self._interval), name=self._name, daemon=True
            )
            self._stop_event = stop_event
            self._thread = thread
            thread.start()
        logger.info("Auto-refresh set up with %ss interval", interval_seconds)
        return True

    def stop(self) -> None:
        with self._lock:
            was_running = self._thread is not None
            self._stop_locked()
        if was_running:
            logger.info("Auto-refresh stopped")

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._thread is not None and self._thread.is_alive()

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def tick_count(self) -> int:
        return self._tick_count

    @property
    def failure_count(self) -> int:
        return self._failure_count

    @property
    def last_error(self) -> Optional[ScheduleError]:
        return self._last_error

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _stop_locked(self) -> None:
        if self._stop_event is not None:
            self._stop_event.set()
        thread = self._thread
        self._stop_event = None
        self._thread = None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=2)

    def _run(self, stop_event: threading.Event, interval: float) -> None:
        while not stop_event.wait(interval):
            self.run_once(stop_event)

    def run_once(self, stop_event: Optional[threading.Event] = None) -> bool:
        """Execute one tick; return ``False`` when it failed."""

        if stop_event is not None and stop_event.is_set():
            return False
        started = time.monotonic()
        self._tick_count += 1
        try:
            self._callback()
        except Exception as exc:
            self._failure_count += 1
            self._last_error = ScheduleError(f"Auto-refresh tick {self._tick_count} failed: {exc}")
            logger.exception("Auto-refresh failed")
            return False
        logger.debug("Auto-refresh completed in %.2fs", time.monotonic() - started)
        return True


__all__ = ["AutoRefresher"]
