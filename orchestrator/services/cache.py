"""Thread-safe, entry-bounded cache for text embeddings.

Design decisions
────────────────
• **OrderedDict** keyed by normalized text; reads do not reorder entries,
  so the entry evicted at capacity is always the oldest one inserted.
• **Normalization** collapses whitespace, truncates to the provider's input
  limit and case-folds, so trivially different spellings of the same text
  share one vector.
• **threading.Lock** around every read and write: the cache is shared by
  all sessions and eviction must be atomic with the insert that caused it.
• Hit/miss counters for the health endpoint.

>>> cache = EmbeddingCache(max_entries=2)
>>> cache.put("Hello  World", [0.1, 0.2])
>>> cache.get("hello world")
[0.1, 0.2]
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict

logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 100
DEFAULT_MAX_CHARS = 8000


def normalize_text(text: str, max_chars: int = DEFAULT_MAX_CHARS) -> str:
    """Collapse whitespace, cap the length and case-fold *text*."""
    collapsed = " ".join(text.split())
    return collapsed[:max_chars].lower()


class EmbeddingCache:
    """First-in-first-out cache of ``normalized text -> vector``."""

    def __init__(
        self,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        max_chars: int = DEFAULT_MAX_CHARS,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self._max_entries = max_entries
        self._max_chars = max_chars
        self._store: OrderedDict[str, list[float]] = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def key_for(self, text: str) -> str:
        return normalize_text(text, self._max_chars)

    # ── Core operations ──────────────────────────────────────────────

    def get(self, text: str) -> list[float] | None:
        """Return the cached vector for *text* or ``None``."""
        key = self.key_for(text)
        with self._lock:
            vector = self._store.get(key)
            if vector is None:
                self._misses += 1
            else:
                self._hits += 1
            return vector

    def put(self, text: str, vector: list[float]) -> None:
        """Store *vector*, evicting the oldest entry if the cache is full."""
        key = self.key_for(text)
        with self._lock:
            if key in self._store:
                self._store[key] = vector
                return
            while len(self._store) >= self._max_entries:
                evicted, _ = self._store.popitem(last=False)
                logger.debug("Embedding cache: evicted %r", evicted[:40])
            self._store[key] = vector

    def clear(self) -> None:
        with self._lock:
            self._store.clear()
            self._hits = 0
            self._misses = 0

    # ── Introspection ────────────────────────────────────────────────

    def __contains__(self, text: str) -> bool:
        key = self.key_for(text)
        with self._lock:
            return key in self._store

    @property
    def entry_count(self) -> int:
        with self._lock:
            return len(self._store)

    def stats(self) -> dict[str, float]:
        with self._lock:
            lookups = self._hits + self._misses
            return {
                "entries": len(self._store),
                "max_entries": self._max_entries,
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": round(self._hits / lookups, 3) if lookups else 0.0,
            }
