"""Retrieval-augmented context for a user message.

Three independent, best-effort searches feed one :class:`RAGContext`:

1. **Similar conversations** — semantic search over archived conversations.
2. **FAQ** — semantic search, with a keyword-overlap scan of every FAQ
   entry when the semantic search comes back empty.
3. **Appointment history** — only when the patient's name is known; the
   matches are reduced to preferred unit, preferred hour and procedures.

A failure in one search is logged and yields an empty part; it never
blocks the other two.  Nothing here is authoritative: the context only
enriches prompts and the extraction fallback.
"""

from __future__ import annotations

import logging
import re
from collections import Counter

from orchestrator.config import FAQ_SCORE_THRESHOLD, RAG_SCORE_THRESHOLD, RAG_TOP_K
from orchestrator.models import (
    AppointmentHistoryEntry,
    ConversationMatch,
    FAQMatch,
    PatientHistory,
    RAGContext,
    SlotSet,
)
from orchestrator.services.embeddings import EmbeddingService
from orchestrator.services.vector_store import (
    APPOINTMENT,
    CONVERSATION,
    FAQ,
    ScoredRecord,
    VectorStore,
)

logger = logging.getLogger(__name__)

KEYWORD_MATCH_SCORE = 0.5
KEYWORD_SCAN_LIMIT = 100
HISTORY_LIMIT = 10


# ── Pure helpers ─────────────────────────────────────────────────────


_STOPWORDS = frozenset({
    "the", "and", "for", "you", "your", "are", "can", "what", "how", "does",
    "with", "have", "want", "would", "like", "there", "this", "that", "please",
})


def _tokens(text: str) -> set[str]:
    return {
        w for w in re.findall(r"\w+", text.lower())
        if len(w) > 2 and w not in _STOPWORDS
    }


def keyword_faq_search(
    query: str, entries: list[ScoredRecord], limit: int = RAG_TOP_K,
) -> list[FAQMatch]:
    """Rank FAQ payloads by word overlap with *query*.

    An entry matches when a query word appears in its keyword list or its
    question.  Matches carry a fixed moderate score since overlap is not
    comparable to cosine similarity.
    """
    words = _tokens(query)
    if not words:
        return []

    scored: list[tuple[int, FAQMatch]] = []
    for entry in entries:
        payload = entry.payload
        question = payload.get("question", "")
        keywords = {k.lower() for k in payload.get("keywords", [])}
        overlap = len(words & keywords) + len(words & _tokens(question))
        if overlap:
            scored.append((overlap, FAQMatch(
                question=question,
                answer=payload.get("answer", ""),
                category=payload.get("category"),
                score=KEYWORD_MATCH_SCORE,
            )))

    scored.sort(key=lambda pair: pair[0], reverse=True)
    return [match for _, match in scored[:limit]]


def _most_common(values: list[str | None]) -> str | None:
    counts = Counter(v for v in values if v)
    if not counts:
        return None
    return counts.most_common(1)[0][0]


def _hour_bucket(date_time: str | None) -> str | None:
    """``2025-12-10T14:30:00`` → ``14:00``."""
    if not date_time or "T" not in date_time:
        return None
    clock = date_time.split("T", 1)[1]
    hour = clock[:2]
    return f"{hour}:00" if hour.isdigit() else None


def infer_preferences(entries: list[AppointmentHistoryEntry]) -> PatientHistory:
    """Reduce history entries to preferences by frequency counting.

    Entries come back most recent first.
    """
    entries = sorted(entries, key=lambda e: e.date_time or "", reverse=True)
    procedures: list[str] = []
    for entry in entries:
        if entry.procedure and entry.procedure not in procedures:
            procedures.append(entry.procedure)
    return PatientHistory(
        entries=entries,
        preferred_unit=_most_common([e.unit for e in entries]),
        preferred_time=_most_common([_hour_bucket(e.date_time) for e in entries]),
        procedures=procedures,
    )


# ── Retriever ────────────────────────────────────────────────────────


class ContextRetriever:
    """Builds a :class:`RAGContext` from the vector store."""

    def __init__(
        self,
        embeddings: EmbeddingService,
        store: VectorStore,
        *,
        top_k: int = RAG_TOP_K,
        score_threshold: float = RAG_SCORE_THRESHOLD,
        faq_score_threshold: float = FAQ_SCORE_THRESHOLD,
    ) -> None:
        self._embeddings = embeddings
        self._store = store
        self._top_k = top_k
        self._score_threshold = score_threshold
        self._faq_score_threshold = faq_score_threshold

    def retrieve_context(self, message: str, slots: SlotSet | None = None) -> RAGContext:
        try:
            vector = self._embeddings.embed_query(message)
        except Exception:
            logger.warning("Embedding failed; FAQ keyword scan only", exc_info=True)
            vector = None

        context = RAGContext()
        if vector is not None:
            context.similar_conversations = self._similar_conversations(vector)
            context.faq_results = self._semantic_faq(vector)
        if not context.faq_results:
            context.faq_results = self._keyword_faq(message)
        if slots is not None and slots.name:
            context.patient_history = self.patient_history(slots.name)

        logger.debug(
            "RAG context: %d faq, %d conversations, history=%s",
            len(context.faq_results),
            len(context.similar_conversations),
            bool(context.patient_history and context.patient_history.entries),
        )
        return context

    # ── Sub-searches ─────────────────────────────────────────────────

    def _similar_conversations(self, vector: list[float]) -> list[ConversationMatch]:
        try:
            records = self._store.search(
                CONVERSATION, vector,
                limit=self._top_k, score_threshold=self._score_threshold,
            )
        except Exception:
            logger.warning("Conversation search failed", exc_info=True)
            return []
        return [
            ConversationMatch(
                slots=r.payload.get("slots") or {},
                outcome=r.payload.get("outcome"),
                message=r.payload.get("message"),
                score=r.score,
            )
            for r in records
        ]

    def _semantic_faq(self, vector: list[float]) -> list[FAQMatch]:
        try:
            records = self._store.search(
                FAQ, vector,
                limit=self._top_k, score_threshold=self._faq_score_threshold,
            )
        except Exception:
            logger.warning("FAQ search failed", exc_info=True)
            return []
        return [
            FAQMatch(
                question=r.payload.get("question", ""),
                answer=r.payload.get("answer", ""),
                category=r.payload.get("category"),
                score=r.score,
            )
            for r in records
        ]

    def _keyword_faq(self, message: str) -> list[FAQMatch]:
        try:
            entries = self._store.scroll(FAQ, limit=KEYWORD_SCAN_LIMIT)
        except Exception:
            logger.warning("FAQ scroll failed", exc_info=True)
            return []
        return keyword_faq_search(message, entries, self._top_k)

    def patient_history(self, name: str) -> PatientHistory | None:
        try:
            vector = self._embeddings.embed_patient_name(name)
            records = self._store.search(
                APPOINTMENT, vector,
                limit=HISTORY_LIMIT, score_threshold=self._score_threshold,
            )
        except Exception:
            logger.warning("Appointment history search failed", exc_info=True)
            return None
        wanted = " ".join(name.lower().split())
        entries = [
            AppointmentHistoryEntry(
                patient_name=r.payload.get("patientName") or name,
                procedure=r.payload.get("procedure"),
                unit=r.payload.get("unit"),
                date_time=r.payload.get("dateTime"),
                score=r.score,
            )
            for r in records
        ]
        # Similar names embed close together; keep only this patient
        entries = [e for e in entries if " ".join(e.patient_name.lower().split()) == wanted]
        if not entries:
            return None
        return infer_preferences(entries)
