"""Exception hierarchy shared by the Stockboard synchronisation core."""
from __future__ import annotations

from typing import Optional


class SheetDataError(RuntimeError):
    """Base error raised when sheet data cannot be produced."""


class ConfigurationError(SheetDataError):
    """Raised when the settings do not allow a source to be built."""


class TransportError(SheetDataError):
    """Raised for non-success HTTP responses or network failures."""

    def __init__(self, message: str, *, status: Optional[int] = None, sheet_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.status = status
        self.sheet_id = sheet_id


class ValidationError(SheetDataError):
    """Raised when a payload has a shape the normaliser cannot use."""


class ScheduleError(SheetDataError):
    """Wraps a failure raised inside a scheduled refresh tick."""


__all__ = [
    "ConfigurationError",
    "ScheduleError",
    "SheetDataError",
    "TransportError",
    "ValidationError",
]
