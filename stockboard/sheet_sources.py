"""Interchangeable sources of raw sheet payloads.

Two strategies are supported and selected once, from the settings, by
:func:`build_source`:

``SheetsApiSource``
    Authenticated range query against the Google Sheets v4 API through
    ``googleapiclient``.  The payload is the ``values`` matrix: a header row
    followed by data rows.
``OpenSheetSource``
    Unauthenticated GET against an OpenSheet style endpoint which answers with
    an array of already keyed row objects.

Both return a plain ``list`` that :func:`stockboard.row_normalizer.normalize`
accepts, and both raise :class:`~stockboard.errors.TransportError` for failed
requests.
"""

from __future__ import annotations

import abc
import logging
import urllib.parse
from pathlib import Path
from typing import Any, List, Optional, Sequence

import httplib2
from google.auth.exceptions import GoogleAuthError
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from settings import DashboardSettings
from stockboard.errors import ConfigurationError, TransportError, ValidationError
from stockboard.google_credentials import build_credentials
from stockboard.transport import HttpTransport, RetrySchedule

logger = logging.getLogger(__name__)

SCOPES: Sequence[str] = ("https://www.googleapis.com/auth/spreadsheets.readonly",)


def quote_worksheet_title(title: str) -> str:
    """Return a worksheet title quoted according to A1 notation rules."""

    safe = (title or "").strip()
    if len(safe) >= 2 and safe[0] == safe[-1] and safe[0] in {"'", '"'}:
        safe = safe[1:-1].replace("''", "'")
    if not safe:
        raise ConfigurationError("Worksheet title must not be empty.")
    safe = safe.replace("'", "''")
    return f"'{safe}'"


def build_sheets_service(*, api_key: str = "", credential_path: str = ""):
    """Construct a Sheets v4 service from a service account file or API key."""

    if credential_path:
        credentials = build_credentials(Path(credential_path), SCOPES)
        return build("sheets", "v4", credentials=credentials, cache_discovery=False)
    if api_key:
        return build("sheets", "v4", developerKey=api_key, cache_discovery=False)
    raise ConfigurationError("An API key or service account file is required for the Sheets API.")


class SheetSource(abc.ABC):
    """Capability to fetch the raw payload of one worksheet."""

    name = "source"

    @abc.abstractmethod
    def fetch(self, sheet_id: str) -> List[Any]:
        raise NotImplementedError


class SheetsApiSource(SheetSource):
    """Concrete source that speaks to Google Sheets using the REST API."""

    name = "sheets-api"

    def __init__(self, spreadsheet_id: str, *, service=None, num_retries: int = 0) -> None:
        if service is None:
            raise ConfigurationError("SheetsApiSource requires a Sheets service; use build_source().")
        self._spreadsheet_id = spreadsheet_id
        self._service = service
        self._num_retries = max(0, num_retries)

    def fetch(self, sheet_id: str) -> List[Any]:
        request = (
            self._service.spreadsheets()
            .values()
            .get(
                spreadsheetId=self._spreadsheet_id,
                range=quote_worksheet_title(sheet_id),
                majorDimension="ROWS",
            )
        )
        try:
            response = request.execute(num_retries=self._num_retries)
        except HttpError as exc:
            status = getattr(getattr(exc, "resp", None), "status", None)
            raise TransportError(
                f"Google Sheets API error for {sheet_id}: {exc}", status=status, sheet_id=sheet_id
            ) from exc
        except GoogleAuthError as exc:
            raise TransportError(f"Authorisation failed for {sheet_id}: {exc}", sheet_id=sheet_id) from exc
        except (httplib2.HttpLib2Error, OSError) as exc:
            raise TransportError(f"Network error for {sheet_id}: {exc}", sheet_id=sheet_id) from exc

        values = response.get("values", []) if isinstance(response, dict) else []
        return [list(row) for row in values]


class OpenSheetSource(SheetSource):
    """Source reading keyed rows from an OpenSheet compatible endpoint."""

    name = "opensheet"

    def __init__(self, spreadsheet_id: str, base_url: str, *, transport: Optional[HttpTransport] = None) -> None:
        self._spreadsheet_id = spreadsheet_id
        self._base_url = base_url.rstrip("/")
        self._transport = transport or HttpTransport()

    def url_for(self, sheet_id: str) -> str:
        return "/".join(
            (
                self._base_url,
                urllib.parse.quote(self._spreadsheet_id, safe=""),
                urllib.parse.quote(sheet_id, safe=""),
            )
        )

    def fetch(self, sheet_id: str) -> List[Any]:
        response = self._transport.get(self.url_for(sheet_id))
        if not response.ok:
            raise TransportError(
                f"OpenSheet error: {response.status} {response.reason}".rstrip(),
                status=response.status,
                sheet_id=sheet_id,
            )
        payload = response.json()
        if isinstance(payload, dict) and "error" in payload:
            raise TransportError(f"OpenSheet error: {payload['error']}", status=response.status, sheet_id=sheet_id)
        if not isinstance(payload, list):
            raise ValidationError(f"Invalid data format for {sheet_id}: expected array")
        return payload


def build_source(
    settings: DashboardSettings,
    *,
    service=None,
    transport: Optional[HttpTransport] = None,
) -> SheetSource:
    """Pick the source variant for ``settings``.

    The structured API is used whenever a credential is configured; otherwise
    the unauthenticated OpenSheet endpoint is used.
    """

    spreadsheet_id = (settings.spreadsheet_id or "").strip()
    if not spreadsheet_id:
        raise ConfigurationError("Spreadsheet id must be configured.")

    if settings.has_credentials:
        if service is None:
            service = build_sheets_service(
                api_key=settings.api_key.strip(),
                credential_path=settings.credential_path.strip(),
            )
        logger.info("Using Google Sheets API source for %s", spreadsheet_id)
        return SheetsApiSource(spreadsheet_id, service=service, num_retries=settings.retry_attempts - 1)

    if transport is None:
        transport = HttpTransport(
            timeout=settings.request_timeout,
            retry=RetrySchedule(attempts=settings.retry_attempts, delay=settings.retry_delay),
        )
    logger.info("Using OpenSheet source for %s", spreadsheet_id)
    return OpenSheetSource(spreadsheet_id, settings.opensheet_url, transport=transport)


__all__ = [
    "OpenSheetSource",
    "SCOPES",
    "SheetSource",
    "SheetsApiSource",
    "build_sheets_service",
    "build_source",
    "quote_worksheet_title",
]
