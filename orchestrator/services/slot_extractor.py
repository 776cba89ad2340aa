"""Structured extraction of booking slots from a patient message.

Primary path: a low-temperature LLM call with a conservative JSON
extraction prompt.  When that call fails (provider error, timeout or
unparseable output) the extractor falls back to retrieval: slot values
from the most similar archived conversation, backfilled from the
patient's most recent appointment when a name is known.

``merge_extraction`` is the policy the agent applies to the result:
low-confidence turns never touch the stored booking fields, email is
captured whenever a valid one shows up.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import HumanMessage

from orchestrator.config import SLOT_KEEP_THRESHOLD
from orchestrator.models import (
    BOOKING_FIELDS,
    DateContext,
    ExtractionResult,
    RAGContext,
    SlotSet,
    Suggestions,
)
from orchestrator.prompts import EXTRACTION_PROMPT
from orchestrator.services.context_retrieval import ContextRetriever
from orchestrator.services.metrics import metrics
from orchestrator.services.response_synthesizer import message_text

logger = logging.getLogger(__name__)

HISTORY_CONFIDENCE = 0.6
CONVERSATION_CONFIDENCE_CAP = 0.7
# Fields worth copying from an archived conversation; its date and time are stale
_CONVERSATION_FIELDS = ("name", "procedure", "unit")

_EMAIL_RE = re.compile(
    r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+"
    r"@[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"
    r"(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)+$"
)
_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_TIME_RE = re.compile(r"^(\d{1,2})[:h](\d{2})$")
_JSON_RE = re.compile(r"\{.*\}", re.DOTALL)


class ExtractionParseError(ValueError):
    """The model answered, but not with a usable JSON object."""


# ── Normalization ────────────────────────────────────────────────────


def is_valid_email(email: str | None) -> bool:
    return bool(email and _EMAIL_RE.match(email.strip()))


def normalize_time(value: str | None) -> str | None:
    """``9:05`` / ``09h05`` → ``09:05``; anything else → ``None``."""
    if not value:
        return None
    match = _TIME_RE.match(value.strip())
    if not match:
        return None
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        return None
    return f"{hours:02d}:{minutes:02d}"


def normalize_date(value: str | None) -> str | None:
    if not value:
        return None
    value = value.strip()[:10]
    return value if _DATE_RE.match(value) else None


def parse_extraction(content: str) -> ExtractionResult:
    """Parse the model's JSON answer, tolerating code fences and chatter."""
    cleaned = re.sub(r"```(?:json)?", "", content).strip()
    match = _JSON_RE.search(cleaned)
    if not match:
        raise ExtractionParseError(f"No JSON object in extraction output: {content[:200]!r}")
    try:
        raw: dict[str, Any] = json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        raise ExtractionParseError(str(exc)) from exc

    email = raw.get("email")
    return ExtractionResult(
        name=raw.get("name"),
        procedure=raw.get("procedure"),
        unit=raw.get("unit"),
        date=normalize_date(raw.get("date")),
        time=normalize_time(raw.get("time")),
        email=email if is_valid_email(email) else None,
        confidence=raw.get("confidence") or 0.0,
    )


# ── Merge policy ─────────────────────────────────────────────────────


def merge_extraction(
    prior: SlotSet,
    extraction: ExtractionResult,
    *,
    keep_threshold: float = SLOT_KEEP_THRESHOLD,
) -> dict[str, Any]:
    """Slot updates to apply for this turn.

    Below *keep_threshold* the five booking fields are left untouched.
    Otherwise every non-empty extracted field overwrites the stored one,
    and a changed procedure, unit or date loses its validated flag.
    """
    updates: dict[str, Any] = {}
    if extraction.email and is_valid_email(extraction.email):
        updates["email"] = extraction.email.strip()

    if extraction.confidence < keep_threshold:
        logger.debug(
            "Low-confidence extraction (%.2f); keeping stored slots", extraction.confidence,
        )
        return updates

    for field in BOOKING_FIELDS:
        value = getattr(extraction, field)
        if not value or value == getattr(prior, field):
            continue
        updates[field] = value
        if field in ("procedure", "unit", "date"):
            updates[f"{field}_validated"] = False
        if field == "unit":
            # Availability was checked for the old unit
            updates["date_validated"] = False
    return updates


def suggestions_from_context(context: RAGContext | None) -> Suggestions | None:
    """Candidate units, procedures and times inferred from retrieval."""
    if context is None:
        return None
    suggestions = Suggestions()

    def _add(bucket: list[str], value: str | None) -> None:
        if value and value not in bucket:
            bucket.append(value)

    history = context.patient_history
    if history:
        _add(suggestions.units, history.preferred_unit)
        _add(suggestions.times, history.preferred_time)
        for procedure in history.procedures:
            _add(suggestions.procedures, procedure)
    for match in context.similar_conversations:
        _add(suggestions.units, match.slots.get("unit"))
        _add(suggestions.procedures, match.slots.get("procedure"))
        _add(suggestions.times, match.slots.get("time"))

    if not (suggestions.units or suggestions.procedures or suggestions.times):
        return None
    return suggestions


# ── Extractor ────────────────────────────────────────────────────────


class SlotExtractor:
    def __init__(self, llm: BaseChatModel, retriever: ContextRetriever) -> None:
        self._llm = llm
        self._retriever = retriever

    def extract(
        self,
        message: str,
        prior_slots: SlotSet | None = None,
        date_context: DateContext | None = None,
    ) -> ExtractionResult:
        prior_slots = prior_slots or SlotSet()
        try:
            result = self._extract_with_llm(message, prior_slots, date_context)
        except Exception as exc:
            logger.warning("LLM slot extraction failed (%s); using retrieval fallback", exc)
            return self._extract_from_context(message, prior_slots)
        logger.debug("Extracted %s (confidence %.2f)", result.model_dump(
            include=set(BOOKING_FIELDS) | {"email"}, exclude_none=True,
        ), result.confidence)
        return result

    def _extract_with_llm(
        self, message: str, prior_slots: SlotSet, date_context: DateContext | None,
    ) -> ExtractionResult:
        known = prior_slots.known()
        prompt = EXTRACTION_PROMPT.format(
            today=date_context.date if date_context else "unknown",
            day_of_week=date_context.day_of_week if date_context else "unknown",
            known_slots="\n".join(f"- {k}: {v}" for k, v in known.items()) or "(nothing yet)",
            message=message,
        )
        with metrics.track("anthropic", "extract_slots"):
            response = self._llm.invoke([HumanMessage(content=prompt)])
        return parse_extraction(message_text(response))

    def _extract_from_context(self, message: str, prior_slots: SlotSet) -> ExtractionResult:
        try:
            context = self._retriever.retrieve_context(message)
        except Exception:
            logger.exception("Retrieval fallback failed; returning empty extraction")
            return ExtractionResult(confidence=0.0)

        values: dict[str, str] = {}
        confidence = 0.0
        if context.similar_conversations:
            best = max(context.similar_conversations, key=lambda m: m.score)
            for field in _CONVERSATION_FIELDS:
                if best.slots.get(field):
                    values[field] = best.slots[field]
            avg = sum(m.score for m in context.similar_conversations) / len(
                context.similar_conversations
            )
            confidence = min(CONVERSATION_CONFIDENCE_CAP, avg * 0.8)

        name = values.get("name") or prior_slots.name
        if name:
            history = self._retriever.patient_history(name)
            if history and history.entries:
                context.patient_history = history
                latest = history.entries[0]
                values.setdefault("name", latest.patient_name)
                if latest.procedure:
                    values.setdefault("procedure", latest.procedure)
                if latest.unit:
                    values.setdefault("unit", latest.unit)
                confidence = max(confidence, HISTORY_CONFIDENCE)

        if not values:
            confidence = 0.0
        logger.info(
            "Fallback extraction: %s (confidence %.2f)", sorted(values), confidence,
        )
        return ExtractionResult(
            **values,
            confidence=confidence,
            rag_context=context,
            suggestions=suggestions_from_context(context),
        )
