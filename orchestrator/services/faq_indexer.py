"""Loads the FAQ seed file into the FAQ vector collection."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from orchestrator.config import FAQ_DATA_PATH
from orchestrator.services.embeddings import EmbeddingService
from orchestrator.services.vector_store import FAQ, VectorRecord, VectorStore

logger = logging.getLogger(__name__)


def load_faq(path: str | Path = FAQ_DATA_PATH) -> list[dict[str, Any]]:
    """Read ``[{id, question, answer, category, keywords}]`` from *path*."""
    entries = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(entries, list):
        raise ValueError(f"{path}: expected a JSON list of FAQ entries")
    return [e for e in entries if e.get("question") and e.get("answer")]


class FAQIndexer:
    def __init__(self, embeddings: EmbeddingService, store: VectorStore) -> None:
        self._embeddings = embeddings
        self._store = store

    def reindex(self, path: str | Path = FAQ_DATA_PATH) -> int:
        """Replace the FAQ collection with the entries in *path*."""
        entries = load_faq(path)
        texts = [
            "\n".join([e["question"], e["answer"], " ".join(e.get("keywords", []))])
            for e in entries
        ]
        vectors = self._embeddings.embed_documents(texts)

        self._store.reset(FAQ)
        records = [
            VectorRecord(
                id=str(entry.get("id", i)),
                vector=vector,
                document=entry["question"],
                payload={
                    "question": entry["question"],
                    "answer": entry["answer"],
                    "category": entry.get("category"),
                    "keywords": entry.get("keywords", []),
                },
            )
            for i, (entry, vector) in enumerate(zip(entries, vectors, strict=True))
        ]
        count = self._store.upsert(FAQ, records)
        logger.info("Indexed %d FAQ entries from %s", count, path)
        return count

    def ensure_seeded(self, path: str | Path = FAQ_DATA_PATH) -> int:
        """Index *path* only when the FAQ collection is empty.

        Returns the number of entries indexed, 0 when nothing was done.
        """
        if self._store.count(FAQ) > 0:
            return 0
        return self.reindex(path)
