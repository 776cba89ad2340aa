"""Text embedding with a shared process-wide cache.

Wraps any LangChain ``Embeddings`` implementation (OpenAI
``text-embedding-3-small`` in production).  Every lookup goes through
:class:`~orchestrator.services.cache.EmbeddingCache` first, so the same
normalized text is embedded upstream at most once while it stays cached.

Embedding failures propagate as exceptions; callers treat them as
degraded data and continue without retrieval.
"""

from __future__ import annotations

import logging
import threading

from langchain_core.embeddings import Embeddings
from langchain_openai import OpenAIEmbeddings

from orchestrator.config import (
    EMBEDDING_BATCH_SIZE,
    EMBEDDING_CACHE_SIZE,
    EMBEDDING_MAX_CHARS,
    EMBEDDING_MODEL_NAME,
    EMBEDDING_TIMEOUT_SECONDS,
    OPENAI_API_KEY,
)
from orchestrator.services.cache import EmbeddingCache
from orchestrator.services.metrics import metrics

logger = logging.getLogger(__name__)


def _build_embeddings() -> Embeddings:
    """Build the upstream embedding model."""
    return OpenAIEmbeddings(
        model=EMBEDDING_MODEL_NAME,
        api_key=OPENAI_API_KEY,
        request_timeout=EMBEDDING_TIMEOUT_SECONDS,
        max_retries=2,
    )


class EmbeddingService:
    """Cached text → vector conversion."""

    def __init__(
        self,
        embeddings: Embeddings | None = None,
        *,
        cache: EmbeddingCache | None = None,
        batch_size: int = EMBEDDING_BATCH_SIZE,
    ) -> None:
        self._embeddings = embeddings or _build_embeddings()
        self._cache = cache or EmbeddingCache(
            max_entries=EMBEDDING_CACHE_SIZE, max_chars=EMBEDDING_MAX_CHARS,
        )
        self._batch_size = batch_size

    @property
    def cache(self) -> EmbeddingCache:
        return self._cache

    def embed_query(self, text: str) -> list[float]:
        """Return the vector for *text*, calling upstream only on a cache miss."""
        cached = self._cache.get(text)
        if cached is not None:
            return cached

        key = self._cache.key_for(text)
        with metrics.track("openai", "embed_query"):
            vector = self._embeddings.embed_query(key)
        self._cache.put(text, vector)
        return vector

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        """Embed many texts, batching the cache misses upstream.

        Texts sharing a cache key are sent once.  Output order matches *texts*.
        """
        vectors: list[list[float] | None] = [self._cache.get(t) for t in texts]
        # cache key -> positions in *texts* still missing a vector
        waiting: dict[str, list[int]] = {}
        for i, vector in enumerate(vectors):
            if vector is None:
                waiting.setdefault(self._cache.key_for(texts[i]), []).append(i)
        pending = list(waiting)

        for start in range(0, len(pending), self._batch_size):
            chunk = pending[start : start + self._batch_size]
            with metrics.track("openai", "embed_documents"):
                embedded = self._embeddings.embed_documents(chunk)
            for key, vector in zip(chunk, embedded, strict=True):
                positions = waiting[key]
                self._cache.put(texts[positions[0]], vector)
                for i in positions:
                    vectors[i] = vector
            logger.debug(
                "Embedded batch %d-%d of %d",
                start + 1, start + len(chunk), len(pending),
            )

        return [vector for vector in vectors if vector is not None]

    # ── Domain helpers ───────────────────────────────────────────────

    def embed_patient_name(self, name: str) -> list[float]:
        return self.embed_query(f"name: {name.strip().lower()}")

    def stats(self) -> dict[str, float]:
        return self._cache.stats()


# ── Module-level singleton (thread-safe) ────────────────────────────
_service: EmbeddingService | None = None
_service_lock = threading.Lock()


def get_embedding_service() -> EmbeddingService:
    """Return the process-wide :class:`EmbeddingService`.

    Double-checked locking keeps the lock off the hot path once built.
    """
    global _service
    if _service is None:
        with _service_lock:
            if _service is None:
                _service = EmbeddingService()
    return _service
