from __future__ import annotations

import json
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

import settings
from stockboard.row_normalizer import FieldKind, RequiredField


def test_missing_file_is_created_with_defaults(tmp_path: Path) -> None:
    path = tmp_path / "config" / "settings.json"

    loaded = settings.load_dashboard_settings(str(path))

    assert path.exists()
    assert loaded.sheet_ids == list(settings.DEFAULT_SHEETS)
    assert loaded.required_fields["ISSUE"] == [
        RequiredField(name) for name in settings.DEFAULT_REQUIRED_FIELDS["ISSUE"]
    ]
    assert loaded.refresh_interval_seconds == 0.0
    assert loaded.cache_duration_seconds == 600


def test_values_are_merged_and_clamped(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    path.write_text(
        json.dumps(
            {
                "spreadsheet_id": "  sheet-xyz  ",
                "recent_days": -4,
                "retry_attempts": 99,
                "refresh_interval_seconds": "30",
                "request_timeout": "soon",
                "unknown": True,
                "required_fields": {
                    "PRODUCTION": ["batch_number", {"name": "quantity", "kind": "number"}, 5],
                },
            }
        ),
        encoding="utf-8",
    )

    loaded = settings.load_dashboard_settings(str(path))

    assert loaded.spreadsheet_id == "sheet-xyz"
    assert loaded.recent_days == 1
    assert loaded.retry_attempts == 10
    assert loaded.refresh_interval_seconds == 30.0
    assert loaded.request_timeout == settings.DEFAULT_REQUEST_TIMEOUT
    assert loaded.required_fields == {
        "PRODUCTION": [RequiredField("batch_number"), RequiredField("quantity", FieldKind.NUMBER)]
    }


def test_save_then_load_round_trip(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    original = settings.DashboardSettings(
        spreadsheet_id="sheet-123",
        api_key="key",
        recent_days=14,
        date_fields=["created_date"],
        required_fields={"ISSUE": [RequiredField("date", FieldKind.DATE)]},
    )

    settings.save_dashboard_settings(original, str(path))
    loaded = settings.load_dashboard_settings(str(path))

    assert loaded == original
    assert loaded.has_credentials


def test_has_credentials_ignores_blank_values() -> None:
    assert not settings.DashboardSettings(api_key="  ", credential_path="").has_credentials
    assert settings.DashboardSettings(credential_path="/tmp/sa.json").has_credentials
