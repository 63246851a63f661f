"""Plain HTTP GET transport used by the OpenSheet source."""
from __future__ import annotations

import json
import logging
import time
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Any, Callable, List, Mapping, Optional

from stockboard.errors import TransportError

logger = logging.getLogger(__name__)

USER_AGENT = "Stockboard-Sync"
DEFAULT_HEADERS: Mapping[str, str] = {
    "Accept": "application/json",
    "User-Agent": USER_AGENT,
}


@dataclass(frozen=True)
class HttpResponse:
    status: int
    body: bytes
    reason: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def json(self) -> Any:
        try:
            return json.loads(self.body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise TransportError(f"Response body is not valid JSON: {exc}", status=self.status) from exc


class RetrySchedule:
    """Linear back-off: attempt ``n`` waits ``delay * n`` seconds before retrying."""

    def __init__(self, attempts: int = 3, delay: float = 1.0, sleep: Callable[[float], None] = time.sleep) -> None:
        self.attempts = max(1, attempts)
        self.delay = max(0.0, delay)
        self._sleep = sleep

    def schedule(self) -> List[float]:
        return [self.delay * attempt for attempt in range(1, self.attempts)]

    def run(self, operation: Callable[[], HttpResponse]) -> HttpResponse:
        delays = self.schedule()
        for attempt in range(1, self.attempts + 1):
            try:
                response = operation()
            except TransportError as exc:
                if attempt == self.attempts:
                    raise
                logger.warning("Fetch attempt %s/%s failed: %s", attempt, self.attempts, exc)
            else:
                if response.status < 500 or attempt == self.attempts:
                    return response
                logger.warning(
                    "Fetch attempt %s/%s returned HTTP %s", attempt, self.attempts, response.status
                )
            self._sleep(delays[attempt - 1])
        raise TransportError("Retry schedule exhausted")  # pragma: no cover - loop always returns


class HttpTransport:
    """Issue GET requests with a timeout and retry schedule."""

    def __init__(
        self,
        *,
        timeout: float = 10.0,
        retry: Optional[RetrySchedule] = None,
        opener: Optional[Callable[..., Any]] = None,
    ) -> None:
        self._timeout = timeout
        self._retry = retry or RetrySchedule()
        self._opener = opener or urllib.request.urlopen

    def get(self, url: str, headers: Optional[Mapping[str, str]] = None) -> HttpResponse:
        merged = dict(DEFAULT_HEADERS)
        if headers:
            merged.update(headers)
        request = urllib.request.Request(url, headers=merged, method="GET")
        return self._retry.run(lambda: self._send(request))

    def _send(self, request: urllib.request.Request) -> HttpResponse:
        logger.debug("GET %s", request.full_url)
        try:
            with self._opener(request, timeout=self._timeout) as response:  # nosec: B310 - configured URL
                return HttpResponse(
                    status=getattr(response, "status", 200),
                    body=response.read(),
                    reason=getattr(response, "reason", "") or "",
                )
        except urllib.error.HTTPError as exc:
            try:
                body = exc.read()
            except OSError:
                body = b""
            return HttpResponse(status=exc.code, body=body or b"", reason=str(exc.reason or ""))
        except urllib.error.URLError as exc:
            raise TransportError(f"Network error: {exc.reason}") from exc
        except (TimeoutError, OSError) as exc:
            raise TransportError(f"Request failed: {exc}") from exc


__all__ = ["DEFAULT_HEADERS", "HttpResponse", "HttpTransport", "RetrySchedule", "USER_AGENT"]
