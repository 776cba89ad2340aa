"""HTTP client for the booking backend with retry and timeout handling.

The backend owns units, procedures and appointments.  Every endpoint
answers with a JSON envelope ``{"success", "data", "errorMessage"}``;
application-level failures (unknown procedure, duplicate booking) are
200 responses with ``success: false`` and are returned to the caller
untouched.  Only transport problems raise :class:`BackendAPIError`.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Any

import httpx

from orchestrator.config import BACKEND_TIMEOUT_SECONDS, BACKEND_URL
from orchestrator.models import DateContext
from orchestrator.services.metrics import metrics

logger = logging.getLogger(__name__)

# ── Retry configuration ─────────────────────────────────────────────
MAX_RETRIES = 3
INITIAL_BACKOFF_SECONDS = 0.5

CURRENT_DATETIME_PATH = "/api/system/current-datetime"


class BackendAPIError(Exception):
    """Raised when a backend request fails after all retries."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class BackendClient:
    """Synchronous wrapper around the booking backend's REST API."""

    def __init__(
        self,
        base_url: str | None = None,
        *,
        timeout: float = BACKEND_TIMEOUT_SECONDS,
    ):
        self._base_url = base_url or BACKEND_URL
        self._client = httpx.Client(
            base_url=self._base_url,
            headers={"Content-Type": "application/json"},
            timeout=timeout,
        )

    def close(self) -> None:
        self._client.close()

    def request(
        self,
        method: str,
        path: str,
        *,
        json_body: dict[str, Any] | None = None,
    ) -> Any:
        """Execute an HTTP request with exponential-backoff retries.

        Timeouts, connection errors and 5xx responses are retried; 4xx
        responses raise immediately.
        """
        last_error: Exception | None = None
        for attempt in range(1, MAX_RETRIES + 1):
            try:
                response = self._client.request(method, path, json=json_body)
                if response.status_code >= 500:
                    raise BackendAPIError(
                        f"Server error {response.status_code}: {response.text}",
                        status_code=response.status_code,
                    )
                if response.status_code >= 400:
                    raise BackendAPIError(
                        f"Client error {response.status_code}: {response.text}",
                        status_code=response.status_code,
                    )
                return response.json()

            except (httpx.TimeoutException, httpx.ConnectError) as exc:
                last_error = exc
                logger.warning(
                    "Backend %s %s attempt %d/%d failed (%s)",
                    method, path, attempt, MAX_RETRIES, type(exc).__name__,
                )
            except BackendAPIError as exc:
                if exc.status_code and exc.status_code >= 500:
                    last_error = exc
                    logger.warning(
                        "Backend %s %s server error on attempt %d/%d",
                        method, path, attempt, MAX_RETRIES,
                    )
                else:
                    raise

            if attempt < MAX_RETRIES:
                time.sleep(INITIAL_BACKOFF_SECONDS * (2 ** (attempt - 1)))

        raise BackendAPIError(
            f"Backend request {method} {path} failed after {MAX_RETRIES} attempts: {last_error}"
        )

    def current_datetime(self) -> DateContext:
        """Today's date according to the backend, or the local clock.

        The local fallback is flagged ``degraded`` so the prompt can tell
        the model its notion of "today" may be off.
        """
        try:
            with metrics.track("backend", "current_datetime"):
                data = self.request("GET", CURRENT_DATETIME_PATH)
            payload = data.get("data", data) if isinstance(data, dict) else {}
            return DateContext(
                date=payload["date"][:10],
                day_of_week=payload.get("dayOfWeek", ""),
                time=payload.get("time", ""),
            )
        except (BackendAPIError, httpx.HTTPError, KeyError, TypeError, ValueError) as exc:
            logger.warning("Backend clock unavailable (%s); using local clock", exc)
            now = datetime.now()
            return DateContext(
                date=now.strftime("%Y-%m-%d"),
                day_of_week=now.strftime("%A"),
                time=now.strftime("%H:%M"),
                degraded=True,
            )
