"""Coordinate sheet fetches, the row cache and change notifications.

:class:`SheetSyncService` is the single writer of the :class:`RowCache`.  It
decides between serving cached rows and fetching fresh ones, falls back to
stale rows when a fetch fails, publishes ``data:*`` notifications and owns the
auto-refresh schedule.  Presentation code only reads its return values and
listens on its :class:`NotificationBus`.
"""
from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, List, Optional

from settings import DashboardSettings, load_dashboard_settings
from stockboard.aggregator import DashboardAggregate, build_dashboard_aggregate
from stockboard.auto_refresh import AutoRefresher
from stockboard.errors import ValidationError
from stockboard.notifications import (
    DATA_ERROR,
    DATA_REFRESH_COMPLETE,
    DATA_STALE,
    DATA_UPDATED,
    DataError,
    DataStale,
    DataUpdated,
    NotificationBus,
    RefreshComplete,
)
from stockboard.row_cache import Clock, RowCache
from stockboard.row_normalizer import Row, normalize, sheet_type_for, validate
from stockboard.sheet_sources import SheetSource, build_source

logger = logging.getLogger(__name__)


class SheetState(Enum):
    UNFETCHED = "unfetched"
    FETCHING = "fetching"
    CACHED_FRESH = "cached"
    CACHED_STALE = "stale"
    ERROR = "error"


class SheetSyncService:
    """Fetch, validate, cache and publish spreadsheet rows."""

    def __init__(
        self,
        settings: DashboardSettings,
        *,
        source: Optional[SheetSource] = None,
        cache: Optional[RowCache] = None,
        bus: Optional[NotificationBus] = None,
        clock: Optional[Clock] = None,
        max_workers: Optional[int] = None,
    ) -> None:
        self._settings = settings
        self._clock = clock or datetime.now
        self._source = source if source is not None else build_source(settings)
        self._cache = cache if cache is not None else RowCache(clock=self._clock)
        self._bus = bus if bus is not None else NotificationBus()
        self._max_workers = max_workers
        self._lock = threading.Lock()
        self._last_fetch: Dict[str, datetime] = {}
        self._states: Dict[str, SheetState] = {}
        self._refresher = AutoRefresher(self.refresh_all)
        self._initialized = False

    @classmethod
    def from_settings(cls, path: Optional[str] = None, **kwargs) -> "SheetSyncService":
        return cls(load_dashboard_settings(path), **kwargs)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------
    @property
    def settings(self) -> DashboardSettings:
        return self._settings

    @property
    def source(self) -> SheetSource:
        return self._source

    @property
    def cache(self) -> RowCache:
        return self._cache

    @property
    def bus(self) -> NotificationBus:
        return self._bus

    @property
    def auto_refresh(self) -> AutoRefresher:
        return self._refresher

    @property
    def is_ready(self) -> bool:
        return self._initialized

    def sheet_state(self, sheet_id: str) -> SheetState:
        with self._lock:
            return self._states.get(sheet_id, SheetState.UNFETCHED)

    def last_fetch_time(self, sheet_id: Optional[str] = None) -> Optional[datetime]:
        """Return when ``sheet_id`` (or, without an id, any sheet) last fetched successfully."""

        with self._lock:
            if sheet_id is not None:
                return self._last_fetch.get(sheet_id)
            return max(self._last_fetch.values(), default=None)

    def is_stale(self, sheet_id: str) -> bool:
        """Return ``True`` when the cached rows are older than ``cache_duration_seconds``.

        Missing entries count as stale.  Reads never consult this; it only
        tells presentation code to show its stale-data indicator.
        """

        return self._cache.is_stale(sheet_id, timedelta(seconds=self._settings.cache_duration_seconds))

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------
    def start(self) -> None:
        """Begin the configured auto-refresh schedule, if any."""

        if self._settings.refresh_interval_seconds > 0:
            self.start_auto_refresh(self._settings.refresh_interval_seconds)
        self._initialized = True
        logger.info("Sheet sync service initialised with %s source", self._source.name)

    def close(self) -> None:
        self.stop_auto_refresh()
        self._initialized = False

    def get_sheet_data(self, sheet_id: str, use_cache: bool = True) -> List[Row]:
        """Return validated rows for ``sheet_id``.

        A cached entry is returned without touching the network when
        ``use_cache`` is set.  When a fetch fails the previous entry is served
        and ``data:stale`` is published; without a previous entry
        ``data:error`` is published and the error propagates.
        """

        if use_cache:
            entry = self._cache.get(sheet_id)
            if entry is not None:
                logger.info("Using cached data for sheet: %s", sheet_id)
                return entry.copy_rows()

        self._set_state(sheet_id, SheetState.FETCHING)
        logger.info("Fetching data from sheet: %s", sheet_id)
        try:
            rows = self._load(sheet_id)
        except Exception as exc:
            stale = self._stale_fallback(sheet_id, exc)
            if stale is None:
                raise
            return stale

        entry = self._cache.set(sheet_id, rows)
        with self._lock:
            self._last_fetch[sheet_id] = entry.fetched_at
            self._states[sheet_id] = SheetState.CACHED_FRESH
        self._bus.publish(
            DATA_UPDATED,
            DataUpdated(sheet_id=sheet_id, rows=entry.copy_rows(), timestamp=entry.fetched_at),
        )
        return entry.copy_rows()

    def refresh_all(self) -> Dict[str, List[Row]]:
        """Force a fresh fetch of every known sheet.

        Sheets are fetched concurrently and failures stay isolated: a sheet
        that fails without cached rows maps to an empty list.  A single
        ``data:refresh-complete`` is published once every fetch settled.
        """

        sheet_ids = self._settings.sheet_ids
        logger.info("Refreshing all sheet data...")
        results: Dict[str, List[Row]] = {}
        failed: List[str] = []
        with ThreadPoolExecutor(
            max_workers=self._worker_count(len(sheet_ids)), thread_name_prefix="stockboard-fetch"
        ) as executor:
            futures = {sheet_id: executor.submit(self.get_sheet_data, sheet_id, False) for sheet_id in sheet_ids}
            for sheet_id, future in futures.items():
                try:
                    results[sheet_id] = future.result()
                except Exception as exc:
                    logger.error("Failed to refresh %s: %s", sheet_id, exc)
                    results[sheet_id] = []
                    failed.append(sheet_id)

        logger.info("Data refresh complete (%s/%s sheets ok)", len(sheet_ids) - len(failed), len(sheet_ids))
        self._bus.publish(DATA_REFRESH_COMPLETE, RefreshComplete(results=dict(results), failed=tuple(failed)))
        return results

    def get_dashboard_aggregate(self, now: Optional[datetime] = None) -> DashboardAggregate:
        """Fetch every category (cache allowed) and derive the dashboard summary.

        Unlike :meth:`refresh_all` a category that cannot be produced fails the
        whole aggregate.
        """

        sheet_ids = self._settings.sheet_ids
        try:
            with ThreadPoolExecutor(
                max_workers=self._worker_count(len(sheet_ids)), thread_name_prefix="stockboard-fetch"
            ) as executor:
                futures = [executor.submit(self.get_sheet_data, sheet_id) for sheet_id in sheet_ids]
                data = {sheet_id: future.result() for sheet_id, future in zip(sheet_ids, futures)}
        except Exception:
            logger.error("Failed to get dashboard data")
            raise
        return build_dashboard_aggregate(data, self._settings, now or self._clock())

    def start_auto_refresh(self, interval_seconds: float) -> bool:
        """Refresh every sheet each ``interval_seconds`` (seconds, not milliseconds).

        A non-positive interval stops the schedule and returns ``False``.
        """

        return self._refresher.start(interval_seconds)

    def stop_auto_refresh(self) -> None:
        self._refresher.stop()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _worker_count(self, sheet_count: int) -> int:
        return max(1, self._max_workers or sheet_count)

    def _set_state(self, sheet_id: str, state: SheetState) -> None:
        with self._lock:
            self._states[sheet_id] = state

    def _load(self, sheet_id: str) -> List[Row]:
        raw = self._source.fetch(sheet_id)
        if not raw:
            raise ValidationError(f"Empty response for sheet: {sheet_id}")
        rows = normalize(raw)
        result = validate(rows, sheet_type_for(sheet_id, self._settings.sheets), self._settings.required_fields)
        if result.dropped:
            logger.warning("Filtered out %s invalid rows from %s", result.dropped, sheet_id)
        return result.rows

    def _stale_fallback(self, sheet_id: str, exc: Exception) -> Optional[List[Row]]:
        entry = self._cache.get(sheet_id)
        if entry is not None:
            logger.warning("Using stale cached data for sheet %s: %s", sheet_id, exc)
            self._set_state(sheet_id, SheetState.CACHED_STALE)
            rows = entry.copy_rows()
            self._bus.publish(
                DATA_STALE,
                DataStale(sheet_id=sheet_id, rows=entry.copy_rows(), fetched_at=entry.fetched_at, error_message=str(exc)),
            )
            return rows

        logger.error("Failed to fetch data from sheet %s: %s", sheet_id, exc)
        self._set_state(sheet_id, SheetState.ERROR)
        self._bus.publish(DATA_ERROR, DataError(sheet_id=sheet_id, error_message=str(exc)))
        return None


__all__ = ["SheetState", "SheetSyncService"]
