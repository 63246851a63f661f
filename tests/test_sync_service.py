from __future__ import annotations

import sys
import threading
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

import pytest

from settings import DashboardSettings
from stockboard.errors import TransportError, ValidationError
from stockboard.notifications import (
    DATA_ERROR,
    DATA_REFRESH_COMPLETE,
    DATA_STALE,
    DATA_UPDATED,
)
from stockboard.row_normalizer import RequiredField
from stockboard.sheet_sources import SheetSource
from stockboard.sync_service import SheetState, SheetSyncService

T0 = datetime(2024, 3, 1, 9, 0, 0)

ORDERS = [
    ["po_number", "supplier", "date", "total_amount"],
    ["PO-1", "Acme", "2024-02-20", "100"],
    ["PO-2", "Globex", "2024-02-25", "250.5"],
    ["PO-3", "Initech", "2024-01-02", "50"],
]


class _Clock:
    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class _FakeSource(SheetSource):
    name = "fake"

    def __init__(self, payloads: Optional[Dict[str, Any]] = None) -> None:
        self.payloads: Dict[str, Any] = dict(payloads or {})
        self.failures: Dict[str, Exception] = {}
        self.calls: List[str] = []
        self._lock = threading.Lock()

    def fetch(self, sheet_id: str):
        with self._lock:
            self.calls.append(sheet_id)
        if sheet_id in self.failures:
            raise self.failures[sheet_id]
        return self.payloads.get(sheet_id, [])


def _settings(**overrides) -> DashboardSettings:
    values = dict(
        spreadsheet_id="sheet-123",
        api_key="",
        credential_path="",
        sheets={"Purchase Orders": "PURCHASE_ORDER", "Issues": "ISSUE"},
    )
    values.update(overrides)
    return DashboardSettings(**values)


def _service(source: _FakeSource, clock: Optional[_Clock] = None, **overrides) -> SheetSyncService:
    return SheetSyncService(_settings(**overrides), source=source, clock=clock or _Clock())


def _record(service: SheetSyncService, event: str) -> List[Any]:
    received: List[Any] = []
    service.bus.subscribe(event, received.append)
    return received


def test_fetch_caches_rows_and_publishes_update() -> None:
    source = _FakeSource({"Purchase Orders": ORDERS})
    service = _service(source)
    updates = _record(service, DATA_UPDATED)

    rows = service.get_sheet_data("Purchase Orders")

    assert [row["po_number"] for row in rows] == ["PO-1", "PO-2", "PO-3"]
    entry = service.cache.get("Purchase Orders")
    assert entry is not None and len(entry.rows) == 3
    assert entry.fetched_at == T0
    assert len(updates) == 1
    assert updates[0].sheet_id == "Purchase Orders"
    assert updates[0].timestamp == T0
    assert service.sheet_state("Purchase Orders") is SheetState.CACHED_FRESH


def test_cache_hit_does_not_touch_the_source() -> None:
    source = _FakeSource({"Purchase Orders": ORDERS})
    service = _service(source)
    first = service.get_sheet_data("Purchase Orders")
    updates = _record(service, DATA_UPDATED)

    second = service.get_sheet_data("Purchase Orders")

    assert second == first
    assert source.calls == ["Purchase Orders"]
    assert updates == []


def test_returned_rows_do_not_alias_the_cache() -> None:
    service = _service(_FakeSource({"Purchase Orders": ORDERS}))
    rows = service.get_sheet_data("Purchase Orders")
    rows[0]["supplier"] = "Changed"

    assert service.get_sheet_data("Purchase Orders")[0]["supplier"] == "Acme"


def test_header_rows_are_zipped_for_sheets_without_rules() -> None:
    source = _FakeSource({"Scratch": [["id", "qty"], ["1", "5"], ["2", "x"]]})
    service = _service(source)

    assert service.get_sheet_data("Scratch") == [{"id": "1", "qty": "5"}, {"id": "2", "qty": "x"}]


def test_invalid_rows_are_filtered_out() -> None:
    payload = ORDERS + [["PO-4", "", "2024-02-27", "10"]]
    service = _service(_FakeSource({"Purchase Orders": payload}))

    rows = service.get_sheet_data("Purchase Orders")

    assert [row["po_number"] for row in rows] == ["PO-1", "PO-2", "PO-3"]


def test_failed_fetch_serves_stale_rows() -> None:
    source = _FakeSource({"Purchase Orders": ORDERS})
    clock = _Clock()
    service = _service(source, clock)
    original = service.get_sheet_data("Purchase Orders")
    clock.advance(minutes=5)
    source.failures["Purchase Orders"] = TransportError("connection reset", status=503)
    stale = _record(service, DATA_STALE)
    errors = _record(service, DATA_ERROR)

    rows = service.get_sheet_data("Purchase Orders", use_cache=False)

    assert rows == original
    assert len(stale) == 1
    assert stale[0].fetched_at == T0
    assert "connection reset" in stale[0].error_message
    assert errors == []
    assert service.sheet_state("Purchase Orders") is SheetState.CACHED_STALE
    assert service.last_fetch_time("Purchase Orders") == T0


def test_failed_fetch_without_cache_raises_and_publishes_error() -> None:
    source = _FakeSource()
    source.failures["Issues"] = TransportError("boom")
    service = _service(source)
    errors = _record(service, DATA_ERROR)

    with pytest.raises(TransportError):
        service.get_sheet_data("Issues")

    assert len(errors) == 1
    assert errors[0].sheet_id == "Issues"
    assert errors[0].error_message == "boom"
    assert service.sheet_state("Issues") is SheetState.ERROR
    assert "Issues" not in service.cache


def test_empty_payload_is_a_validation_error() -> None:
    service = _service(_FakeSource({"Issues": []}))

    with pytest.raises(ValidationError):
        service.get_sheet_data("Issues")


def test_header_only_payload_caches_an_empty_list() -> None:
    service = _service(_FakeSource({"Issues": [["issue_type", "description", "date", "reported_by"]]}))

    assert service.get_sheet_data("Issues") == []
    assert "Issues" in service.cache


def test_refresh_all_forces_fetches_and_isolates_failures() -> None:
    source = _FakeSource({"Purchase Orders": ORDERS})
    source.failures["Issues"] = TransportError("unavailable")
    service = _service(source)
    service.get_sheet_data("Purchase Orders")
    completions = _record(service, DATA_REFRESH_COMPLETE)

    results = service.refresh_all()

    assert set(results) == {"Purchase Orders", "Issues"}
    assert len(results["Purchase Orders"]) == 3
    assert results["Issues"] == []
    assert source.calls.count("Purchase Orders") == 2
    assert len(completions) == 1
    assert completions[0].failed == ("Issues",)


def test_refresh_all_uses_stale_rows_for_cached_failures() -> None:
    source = _FakeSource({"Purchase Orders": ORDERS, "Issues": [["issue_type"]]})
    service = _service(source)
    service.refresh_all()
    source.failures["Purchase Orders"] = TransportError("timeout")

    results = service.refresh_all()

    assert len(results["Purchase Orders"]) == 3


def test_last_fetch_time_tracks_latest_success() -> None:
    clock = _Clock()
    service = _service(_FakeSource({"Purchase Orders": ORDERS, "Issues": [["issue_type"]]}), clock)
    assert service.last_fetch_time() is None

    service.get_sheet_data("Purchase Orders")
    clock.advance(seconds=30)
    service.get_sheet_data("Issues")

    assert service.last_fetch_time("Purchase Orders") == T0
    assert service.last_fetch_time() == T0 + timedelta(seconds=30)


def test_dashboard_aggregate_summarises_each_category() -> None:
    issues = [
        ["issue_type", "description", "date", "reported_by"],
        ["Stain", "Blue stain", "2024-02-28", "Ana"],
    ]
    service = _service(_FakeSource({"Purchase Orders": ORDERS, "Issues": issues}))

    aggregate = service.get_dashboard_aggregate(now=T0)

    assert aggregate.summary["purchase_orders"].count == 3
    assert aggregate.summary["purchase_orders"].total == pytest.approx(400.5)
    assert aggregate.summary["issues"].count == 1
    assert aggregate.summary["issues"].total is None
    assert [row["po_number"] for row in aggregate.recent["purchase_orders"]] == ["PO-1", "PO-2"]


def test_dashboard_aggregate_fails_when_a_category_cannot_be_loaded() -> None:
    source = _FakeSource({"Purchase Orders": ORDERS})
    source.failures["Issues"] = TransportError("denied", status=403)
    service = _service(source)

    with pytest.raises(TransportError):
        service.get_dashboard_aggregate(now=T0)


def test_listener_errors_do_not_break_fetches() -> None:
    service = _service(_FakeSource({"Purchase Orders": ORDERS}))

    def broken(_payload) -> None:
        raise RuntimeError("listener failed")

    service.bus.subscribe(DATA_UPDATED, broken)
    updates = _record(service, DATA_UPDATED)

    assert len(service.get_sheet_data("Purchase Orders")) == 3
    assert len(updates) == 1


def test_start_without_interval_does_not_schedule() -> None:
    service = _service(_FakeSource())

    service.start()

    assert service.is_ready
    assert not service.auto_refresh.is_running
    service.close()
    assert not service.is_ready


def test_order_rules_keep_rows_with_present_fields() -> None:
    source = _FakeSource({"Orders": [["id", "qty"], ["1", "5"], ["2", "x"]]})
    service = _service(
        source,
        sheets={"Orders": "ORDER"},
        required_fields={"ORDER": [RequiredField("id"), RequiredField("qty")]},
    )

    rows = service.get_sheet_data("Orders")

    assert rows == [{"id": "1", "qty": "5"}, {"id": "2", "qty": "x"}]
    entry = service.cache.get("Orders")
    assert entry is not None and entry.copy_rows() == rows
    assert entry.fetched_at == T0


def test_is_stale_uses_the_configured_cache_duration() -> None:
    source = _FakeSource({"Purchase Orders": ORDERS})
    clock = _Clock()
    service = _service(source, clock, cache_duration_seconds=600)
    assert service.is_stale("Purchase Orders")

    service.get_sheet_data("Purchase Orders")
    clock.advance(minutes=9)
    assert not service.is_stale("Purchase Orders")

    clock.advance(minutes=2)
    assert service.is_stale("Purchase Orders")
    assert len(service.get_sheet_data("Purchase Orders")) == 3
    assert source.calls == ["Purchase Orders"]


class _BlockingSource(SheetSource):
    """The first fetch waits for ``release``; later fetches answer at once."""

    name = "blocking"

    def __init__(self) -> None:
        self.first_started = threading.Event()
        self.release = threading.Event()
        self._count = 0
        self._lock = threading.Lock()

    def fetch(self, sheet_id: str):
        with self._lock:
            self._count += 1
            call = self._count
        if call == 1:
            self.first_started.set()
            assert self.release.wait(5)
            return [["id"], ["slow"]]
        return [["id"], ["fast"]]


def test_concurrent_forced_fetches_last_writer_wins() -> None:
    source = _BlockingSource()
    clock = _Clock()
    service = _service(source, clock, sheets={"Scratch": "SCRATCH"})
    updates = _record(service, DATA_UPDATED)
    results: Dict[str, Any] = {}

    def slow_fetch() -> None:
        results["slow"] = service.get_sheet_data("Scratch", use_cache=False)

    worker = threading.Thread(target=slow_fetch)
    worker.start()
    assert source.first_started.wait(5)

    clock.advance(seconds=60)
    results["fast"] = service.get_sheet_data("Scratch", use_cache=False)
    clock.now = T0
    source.release.set()
    worker.join(5)

    assert results == {"slow": [{"id": "slow"}], "fast": [{"id": "fast"}]}
    entry = service.cache.get("Scratch")
    assert entry is not None
    assert entry.copy_rows() == [{"id": "slow"}]
    assert entry.fetched_at == T0 + timedelta(seconds=60)
    assert service.last_fetch_time("Scratch") == T0 + timedelta(seconds=60)
    assert len(updates) == 2
