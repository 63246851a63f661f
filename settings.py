"""Application configuration helpers for Stockboard."""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

from stockboard import app_paths
from stockboard.row_normalizer import RequiredField


logger = logging.getLogger(__name__)


SETTINGS_PATH = os.getenv("STOCKBOARD_SETTINGS_PATH", str(app_paths.data_path("settings.json")))

DEFAULT_SPREADSHEET_ID = os.getenv("STOCKBOARD_SPREADSHEET_ID", "")
DEFAULT_API_KEY = os.getenv("STOCKBOARD_API_KEY", "")
DEFAULT_CREDENTIALS_PATH = os.getenv("STOCKBOARD_CREDENTIALS_PATH", "")
DEFAULT_OPENSHEET_URL = "https://opensheet.elk.sh"

PURCHASE_ORDERS = "Purchase Orders"
PRODUCTION = "Production"
FINISHED_GOODS = "Finished Goods"
ISSUES = "Issues"
BGRADE_SALES = "B-Grade Sales"

DEFAULT_SHEETS: Dict[str, str] = {
    PURCHASE_ORDERS: "PURCHASE_ORDER",
    PRODUCTION: "PRODUCTION",
    FINISHED_GOODS: "FINISHED_GOODS",
    ISSUES: "ISSUE",
    BGRADE_SALES: "BGRADE_SALE",
}

DEFAULT_REQUIRED_FIELDS: Dict[str, List[str]] = {
    "PURCHASE_ORDER": ["po_number", "supplier", "date", "total_amount"],
    "PRODUCTION": ["batch_number", "product_code", "quantity", "date"],
    "FINISHED_GOODS": ["product_code", "quantity", "unit_price"],
    "ISSUE": ["issue_type", "description", "date", "reported_by"],
    "BGRADE_SALE": ["product_code", "quantity", "sale_price", "date"],
}

DEFAULT_TOTAL_FIELDS: Dict[str, str] = {
    "PURCHASE_ORDER": "total_amount",
    "PRODUCTION": "value",
    "FINISHED_GOODS": "total_value",
    "BGRADE_SALE": "sale_amount",
}

DEFAULT_DATE_FIELDS: List[str] = ["date", "created_date"]
DEFAULT_RECENT_DAYS = 30
DEFAULT_REFRESH_INTERVAL_SECONDS = 0.0
DEFAULT_CACHE_DURATION_SECONDS = 600
DEFAULT_REQUEST_TIMEOUT = 10.0
DEFAULT_RETRY_ATTEMPTS = 3
DEFAULT_RETRY_DELAY = 1.0


def _default_rules() -> Dict[str, List[RequiredField]]:
    return {
        sheet_type: [RequiredField(name) for name in names]
        for sheet_type, names in DEFAULT_REQUIRED_FIELDS.items()
    }


@dataclass
class DashboardSettings:
    spreadsheet_id: str = DEFAULT_SPREADSHEET_ID
    api_key: str = DEFAULT_API_KEY
    credential_path: str = DEFAULT_CREDENTIALS_PATH
    opensheet_url: str = DEFAULT_OPENSHEET_URL
    sheets: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_SHEETS))
    required_fields: Dict[str, List[RequiredField]] = field(default_factory=_default_rules)
    total_fields: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_TOTAL_FIELDS))
    date_fields: List[str] = field(default_factory=lambda: list(DEFAULT_DATE_FIELDS))
    recent_days: int = DEFAULT_RECENT_DAYS
    refresh_interval_seconds: float = DEFAULT_REFRESH_INTERVAL_SECONDS
    cache_duration_seconds: int = DEFAULT_CACHE_DURATION_SECONDS
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    retry_attempts: int = DEFAULT_RETRY_ATTEMPTS
    retry_delay: float = DEFAULT_RETRY_DELAY

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key.strip() or self.credential_path.strip())

    @property
    def sheet_ids(self) -> List[str]:
        return list(self.sheets)

    def to_json(self) -> Dict[str, object]:
        return {
            "spreadsheet_id": self.spreadsheet_id,
            "api_key": self.api_key,
            "credential_path": self.credential_path,
            "opensheet_url": self.opensheet_url,
            "sheets": dict(self.sheets),
            "required_fields": {
                sheet_type: [rule.to_config() for rule in rules]
                for sheet_type, rules in self.required_fields.items()
            },
            "total_fields": dict(self.total_fields),
            "date_fields": list(self.date_fields),
            "recent_days": self.recent_days,
            "refresh_interval_seconds": self.refresh_interval_seconds,
            "cache_duration_seconds": self.cache_duration_seconds,
            "request_timeout": self.request_timeout,
            "retry_attempts": self.retry_attempts,
            "retry_delay": self.retry_delay,
        }


def _clamp_int(value: object, default: int, minimum: int, maximum: int) -> int:
    try:
        return max(minimum, min(maximum, int(value)))  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default


def _clamp_float(value: object, default: float, minimum: float, maximum: float) -> float:
    try:
        return max(minimum, min(maximum, float(value)))  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default


def _ensure_settings(path: str) -> Dict[str, object]:
    defaults = DashboardSettings().to_json()
    if not os.path.exists(path):
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(path, "w", encoding="utf-8") as handle:
            json.dump(defaults, handle, indent=2)
        return json.loads(json.dumps(defaults))

    with open(path, "r", encoding="utf-8") as handle:
        data = json.load(handle)
    if not isinstance(data, dict):
        logger.warning("Ignoring malformed settings file %s", path)
        return defaults

    merged: Dict[str, object] = dict(defaults)
    for key, value in data.items():
        if key not in defaults:
            continue
        if key in {"sheets", "total_fields"} and isinstance(value, dict):
            merged[key] = {str(name): str(kind) for name, kind in value.items()}
        elif key == "required_fields" and isinstance(value, dict):
            merged[key] = {str(name): entries for name, entries in value.items() if isinstance(entries, list)}
        elif key == "date_fields" and isinstance(value, list):
            merged[key] = [str(entry) for entry in value if isinstance(entry, str) and entry.strip()]
        elif key == "recent_days":
            merged[key] = _clamp_int(value, DEFAULT_RECENT_DAYS, 1, 3650)
        elif key == "refresh_interval_seconds":
            merged[key] = _clamp_float(value, DEFAULT_REFRESH_INTERVAL_SECONDS, 0.0, 86400.0)
        elif key == "cache_duration_seconds":
            merged[key] = _clamp_int(value, DEFAULT_CACHE_DURATION_SECONDS, 0, 86400)
        elif key == "request_timeout":
            merged[key] = _clamp_float(value, DEFAULT_REQUEST_TIMEOUT, 1.0, 120.0)
        elif key == "retry_attempts":
            merged[key] = _clamp_int(value, DEFAULT_RETRY_ATTEMPTS, 1, 10)
        elif key == "retry_delay":
            merged[key] = _clamp_float(value, DEFAULT_RETRY_DELAY, 0.0, 60.0)
        elif isinstance(value, str):
            merged[key] = value.strip()
    return merged


def _parse_rules(data: Mapping[str, object]) -> Dict[str, List[RequiredField]]:
    rules: Dict[str, List[RequiredField]] = {}
    for sheet_type, entries in data.items():
        parsed: List[RequiredField] = []
        for entry in entries if isinstance(entries, list) else []:
            try:
                parsed.append(RequiredField.from_config(entry))
            except ValueError:
                logger.warning("Skipping invalid required field %r for %s", entry, sheet_type)
        rules[sheet_type] = parsed
    return rules


def load_dashboard_settings(path: Optional[str] = None) -> DashboardSettings:
    data = _ensure_settings(path or SETTINGS_PATH)
    required = data.get("required_fields")
    return DashboardSettings(
        spreadsheet_id=str(data.get("spreadsheet_id") or DEFAULT_SPREADSHEET_ID),
        api_key=str(data.get("api_key") or DEFAULT_API_KEY),
        credential_path=str(data.get("credential_path") or DEFAULT_CREDENTIALS_PATH),
        opensheet_url=str(data.get("opensheet_url") or DEFAULT_OPENSHEET_URL).rstrip("/"),
        sheets=dict(data.get("sheets") or DEFAULT_SHEETS),  # type: ignore[arg-type]
        required_fields=_parse_rules(required) if isinstance(required, Mapping) else _default_rules(),
        total_fields=dict(data.get("total_fields") or {}),  # type: ignore[arg-type]
        date_fields=list(data.get("date_fields") or DEFAULT_DATE_FIELDS),  # type: ignore[arg-type]
        recent_days=int(data.get("recent_days", DEFAULT_RECENT_DAYS)),  # type: ignore[arg-type]
        refresh_interval_seconds=float(data.get("refresh_interval_seconds", 0.0)),  # type: ignore[arg-type]
        cache_duration_seconds=int(data.get("cache_duration_seconds", DEFAULT_CACHE_DURATION_SECONDS)),  # type: ignore[arg-type]
        request_timeout=float(data.get("request_timeout", DEFAULT_REQUEST_TIMEOUT)),  # type: ignore[arg-type]
        retry_attempts=int(data.get("retry_attempts", DEFAULT_RETRY_ATTEMPTS)),  # type: ignore[arg-type]
        retry_delay=float(data.get("retry_delay", DEFAULT_RETRY_DELAY)),  # type: ignore[arg-type]
    )


def save_dashboard_settings(settings: DashboardSettings, path: Optional[str] = None) -> None:
    target = path or SETTINGS_PATH
    directory = os.path.dirname(target)
    if directory:
        os.makedirs(directory, exist_ok=True)

    with open(target, "w", encoding="utf-8") as handle:
        json.dump(settings.to_json(), handle, indent=2)


__all__ = [
    "BGRADE_SALES",
    "DashboardSettings",
    "DEFAULT_DATE_FIELDS",
    "DEFAULT_REQUIRED_FIELDS",
    "DEFAULT_SHEETS",
    "DEFAULT_TOTAL_FIELDS",
    "FINISHED_GOODS",
    "ISSUES",
    "PRODUCTION",
    "PURCHASE_ORDERS",
    "SETTINGS_PATH",
    "load_dashboard_settings",
    "save_dashboard_settings",
]
