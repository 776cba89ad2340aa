"""Cached procedure and unit catalogs.

The catalogs change rarely, so they are fetched through the function
executor and reused until they are older than the TTL.  A failed refresh
keeps serving the previous copy and is not retried for a short while, so
an unreachable backend is not hit again on every catalog read.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any

from orchestrator.config import REFERENCE_DATA_RETRY_SECONDS, REFERENCE_DATA_TTL_SECONDS
from orchestrator.models import FunctionCall
from orchestrator.services.functions import LIST_PROCEDURES, LIST_UNITS, FunctionExecutor

logger = logging.getLogger(__name__)


def _match(options: list[dict[str, Any]], text: str | None) -> str | None:
    """Canonical name of the option matching *text*, if any.

    Case-insensitive; an exact match wins, then a substring match in
    either direction.
    """
    if not text:
        return None
    needle = text.strip().lower()
    names = [str(o.get("name", "")) for o in options if o.get("name")]
    for name in names:
        if name.lower() == needle:
            return name
    for name in names:
        lowered = name.lower()
        if needle in lowered or lowered in needle:
            return name
    return None


class ReferenceDataCache:
    def __init__(
        self,
        executor: FunctionExecutor,
        *,
        ttl_seconds: float = REFERENCE_DATA_TTL_SECONDS,
        retry_seconds: float = REFERENCE_DATA_RETRY_SECONDS,
    ) -> None:
        self._executor = executor
        self._ttl = ttl_seconds
        self._retry = retry_seconds
        self._lock = threading.Lock()
        self._data: dict[str, list[dict[str, Any]]] = {}
        self._fetched_at: dict[str, float] = {}
        self._failed_at: dict[str, float] = {}

    def _get(self, function_name: str) -> list[dict[str, Any]]:
        with self._lock:
            fetched = self._fetched_at.get(function_name)
            if fetched is not None and time.monotonic() - fetched < self._ttl:
                return self._data[function_name]
            failed = self._failed_at.get(function_name)
            if failed is not None and time.monotonic() - failed < self._retry:
                return self._data.get(function_name, [])

        result = self._executor.execute(FunctionCall(name=function_name))
        with self._lock:
            if result.success and isinstance(result.data, list):
                self._data[function_name] = result.data
                self._fetched_at[function_name] = time.monotonic()
                self._failed_at.pop(function_name, None)
                logger.debug("Refreshed %s (%d items)", function_name, len(result.data))
            else:
                self._failed_at[function_name] = time.monotonic()
                logger.warning(
                    "Could not refresh %s: %s", function_name, result.error_message,
                )
            return self._data.get(function_name, [])

    def procedures(self) -> list[dict[str, Any]]:
        return self._get(LIST_PROCEDURES)

    def units(self) -> list[dict[str, Any]]:
        return self._get(LIST_UNITS)

    def match_procedure(self, text: str | None) -> str | None:
        return _match(self.procedures(), text)

    def match_unit(self, text: str | None) -> str | None:
        return _match(self.units(), text)

    def invalidate(self) -> None:
        with self._lock:
            self._fetched_at.clear()
            self._failed_at.clear()
