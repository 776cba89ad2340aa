"""Chroma-backed vector store with the three collections the orchestrator uses.

Collections (all cosine space):
  - **faq**          — clinic FAQ entries, seeded from ``orchestrator/data/faq.json``
  - **conversation** — archived conversations and their outcome
  - **appointment**  — booked appointments per patient

Each record is ``{id, vector, payload}``.  Chroma only stores flat scalar
metadata, so the payload is kept as one JSON string under the ``payload``
metadata key and decoded on the way out.

Chroma's client is synchronous; callers run in worker threads (see
``api/routes.py``), so no extra offloading happens here.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field
from typing import Any

import chromadb

from orchestrator.config import (
    CHROMA_APPOINTMENT_COLLECTION,
    CHROMA_CONVERSATION_COLLECTION,
    CHROMA_FAQ_COLLECTION,
    CHROMA_PATH,
)
from orchestrator.services.metrics import metrics

logger = logging.getLogger(__name__)

FAQ = "faq"
CONVERSATION = "conversation"
APPOINTMENT = "appointment"


@dataclass
class VectorRecord:
    id: str
    vector: list[float]
    payload: dict[str, Any] = field(default_factory=dict)
    document: str = ""


@dataclass
class ScoredRecord:
    id: str
    score: float
    payload: dict[str, Any]


def _build_client(path: str | None = CHROMA_PATH):
    """Persistent client when a path is configured, in-memory otherwise."""
    if path:
        return chromadb.PersistentClient(path=path)
    return chromadb.EphemeralClient()


class VectorStore:
    """Thin wrapper exposing upsert / search / scroll over named collections."""

    def __init__(
        self,
        client: Any | None = None,
        *,
        collection_names: dict[str, str] | None = None,
    ) -> None:
        self._client = client if client is not None else _build_client()
        self._names = collection_names or {
            FAQ: CHROMA_FAQ_COLLECTION,
            CONVERSATION: CHROMA_CONVERSATION_COLLECTION,
            APPOINTMENT: CHROMA_APPOINTMENT_COLLECTION,
        }
        self._collections: dict[str, Any] = {}
        self._lock = threading.Lock()

    def _collection(self, kind: str):
        if kind not in self._names:
            raise KeyError(f"Unknown collection kind: {kind}")
        collection = self._collections.get(kind)
        if collection is None:
            with self._lock:
                collection = self._collections.get(kind)
                if collection is None:
                    collection = self._client.get_or_create_collection(
                        name=self._names[kind],
                        metadata={"hnsw:space": "cosine"},
                        embedding_function=None,
                    )
                    self._collections[kind] = collection
                    logger.info("Vector collection ready: %s", self._names[kind])
        return collection

    # ── Writes ───────────────────────────────────────────────────────

    def upsert(self, kind: str, records: list[VectorRecord]) -> int:
        if not records:
            return 0
        collection = self._collection(kind)
        with metrics.track("vector_store", f"upsert_{kind}"):
            collection.upsert(
                ids=[r.id for r in records],
                embeddings=[r.vector for r in records],
                metadatas=[
                    {"payload": json.dumps(r.payload, default=str)} for r in records
                ],
                documents=[r.document or r.id for r in records],
            )
        logger.debug("Upserted %d records into %s", len(records), kind)
        return len(records)

    def delete(self, kind: str, ids: list[str]) -> None:
        if ids:
            self._collection(kind).delete(ids=ids)

    def reset(self, kind: str) -> None:
        """Drop and recreate a collection."""
        with self._lock:
            try:
                self._client.delete_collection(self._names[kind])
            except Exception:
                # Chroma raises when the collection was never created
                logger.debug("Collection %s did not exist", self._names[kind])
            self._collections.pop(kind, None)
        self._collection(kind)

    # ── Reads ────────────────────────────────────────────────────────

    def search(
        self,
        kind: str,
        vector: list[float],
        *,
        limit: int = 5,
        score_threshold: float = 0.0,
    ) -> list[ScoredRecord]:
        """Nearest records with cosine similarity ≥ *score_threshold*, best first."""
        collection = self._collection(kind)
        with metrics.track("vector_store", f"search_{kind}"):
            if collection.count() == 0:
                return []
            res = collection.query(
                query_embeddings=[vector],
                n_results=limit,
                include=["metadatas", "distances"],
            )

        ids = (res.get("ids") or [[]])[0]
        distances = (res.get("distances") or [[]])[0]
        metadatas = (res.get("metadatas") or [[]])[0]

        results: list[ScoredRecord] = []
        for record_id, distance, meta in zip(ids, distances, metadatas, strict=False):
            # cosine distance = 1 - cosine similarity
            score = 1.0 - float(distance)
            if score < score_threshold:
                continue
            results.append(ScoredRecord(record_id, score, _decode(meta)))
        results.sort(key=lambda r: r.score, reverse=True)
        return results

    def scroll(self, kind: str, *, limit: int = 100) -> list[ScoredRecord]:
        """List up to *limit* records without ranking (score 0)."""
        collection = self._collection(kind)
        with metrics.track("vector_store", f"scroll_{kind}"):
            res = collection.get(limit=limit, include=["metadatas"])
        ids = res.get("ids") or []
        metadatas = res.get("metadatas") or []
        return [
            ScoredRecord(record_id, 0.0, _decode(meta))
            for record_id, meta in zip(ids, metadatas, strict=False)
        ]

    def count(self, kind: str) -> int:
        return self._collection(kind).count()

    def stats(self) -> dict[str, int]:
        return {kind: self.count(kind) for kind in self._names}


def _decode(meta: dict[str, Any] | None) -> dict[str, Any]:
    if not meta:
        return {}
    raw = meta.get("payload")
    if raw is None:
        return dict(meta)
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("Undecodable vector payload: %r", raw)
        return {}


# ── Module-level singleton (thread-safe) ────────────────────────────
_store: VectorStore | None = None
_store_lock = threading.Lock()


def get_vector_store() -> VectorStore:
    global _store
    if _store is None:
        with _store_lock:
            if _store is None:
                _store = VectorStore()
    return _store
