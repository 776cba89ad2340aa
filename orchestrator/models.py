"""Domain types shared by every stage of the orchestrator.

All types are pydantic models so that the API layer can return them as-is
and tests can build them with keyword arguments.

Slot values are ``str | None``.  ``None`` always means "not yet known":
blank strings are coerced to ``None`` on construction and assignment, which
keeps an empty extraction from ever overwriting a stored value.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

# The five fields that must be known before a booking can be made.
BOOKING_FIELDS: tuple[str, ...] = ("name", "procedure", "unit", "date", "time")
SLOT_FIELDS: tuple[str, ...] = BOOKING_FIELDS + ("email",)


def utcnow() -> datetime:
    return datetime.now(UTC)


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


class Scenario(StrEnum):
    """Conversational state that selects the prompt and proactive rules."""

    GREETING = "greeting"
    INITIAL_MESSAGE = "initial-message"
    DATA_COLLECTION = "data-collection"
    CONFIRMATION = "confirmation"
    SCHEDULING = "scheduling"
    FAQ = "faq"
    ERROR_HANDLING = "error-handling"


# ── Session ──────────────────────────────────────────────────────────


class Message(BaseModel):
    role: Literal["user", "assistant"]
    content: str
    timestamp: datetime = Field(default_factory=utcnow)


class SlotSet(BaseModel):
    """The booking form being filled in over the conversation."""

    model_config = ConfigDict(validate_assignment=True)

    name: str | None = None
    procedure: str | None = None
    unit: str | None = None
    date: str | None = None
    time: str | None = None
    email: str | None = None
    procedure_validated: bool = False
    unit_validated: bool = False
    date_validated: bool = False

    @field_validator(*SLOT_FIELDS, mode="before")
    @classmethod
    def _coerce_blank(cls, value: Any) -> Any:
        return _blank_to_none(value)

    def is_complete(self) -> bool:
        """True when every booking field is known (email is optional)."""
        return all(getattr(self, field) for field in BOOKING_FIELDS)

    def missing(self) -> list[str]:
        return [field for field in BOOKING_FIELDS if not getattr(self, field)]

    def known(self) -> dict[str, str]:
        return {
            field: getattr(self, field)
            for field in SLOT_FIELDS
            if getattr(self, field)
        }


class SessionContext(BaseModel):
    current_step: int = 0
    scenario: Scenario | None = None
    last_function_call: str | None = None
    fallback_count: int = 0
    sentiment: Literal["neutral", "negative"] = "neutral"


class Session(BaseModel):
    session_id: str
    messages: list[Message] = Field(default_factory=list)
    slots: SlotSet = Field(default_factory=SlotSet)
    context: SessionContext = Field(default_factory=SessionContext)
    # Every message ever appended, independent of the bounded buffer
    message_count: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    last_activity: datetime = Field(default_factory=utcnow)


# ── Retrieval ────────────────────────────────────────────────────────


class FAQMatch(BaseModel):
    question: str
    answer: str
    score: float
    category: str | None = None


class ConversationMatch(BaseModel):
    slots: dict[str, str | None] = Field(default_factory=dict)
    outcome: str | None = None
    message: str | None = None
    score: float


class AppointmentHistoryEntry(BaseModel):
    patient_name: str
    procedure: str | None = None
    unit: str | None = None
    date_time: str | None = None
    score: float = 0.0


class PatientHistory(BaseModel):
    entries: list[AppointmentHistoryEntry] = Field(default_factory=list)
    preferred_unit: str | None = None
    # Hour bucket, e.g. "14:00"
    preferred_time: str | None = None
    procedures: list[str] = Field(default_factory=list)


class RAGContext(BaseModel):
    faq_results: list[FAQMatch] = Field(default_factory=list)
    similar_conversations: list[ConversationMatch] = Field(default_factory=list)
    patient_history: PatientHistory | None = None

    def is_empty(self) -> bool:
        return not (
            self.faq_results
            or self.similar_conversations
            or (self.patient_history and self.patient_history.entries)
        )


class Suggestions(BaseModel):
    units: list[str] = Field(default_factory=list)
    procedures: list[str] = Field(default_factory=list)
    times: list[str] = Field(default_factory=list)


class ExtractionResult(BaseModel):
    name: str | None = None
    procedure: str | None = None
    unit: str | None = None
    date: str | None = None
    time: str | None = None
    email: str | None = None
    confidence: float = 0.0
    rag_context: RAGContext | None = None
    suggestions: Suggestions | None = None

    @field_validator(*SLOT_FIELDS, mode="before")
    @classmethod
    def _coerce_blank(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value: Any) -> float:
        try:
            number = float(value)
        except (TypeError, ValueError):
            return 0.0
        return min(max(number, 0.0), 1.0)


# ── Backend functions ────────────────────────────────────────────────


class FunctionCall(BaseModel):
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)


class FunctionCallResult(BaseModel):
    success: bool
    data: Any = None
    error_message: str | None = None
    # set when the backend could not be reached; envelope failures leave it False
    transport_error: bool = False


class ExecutedCall(BaseModel):
    call: FunctionCall
    result: FunctionCallResult


# ── Turn plumbing ────────────────────────────────────────────────────


class DateContext(BaseModel):
    """Today's date as seen by the backend (or the local clock)."""

    date: str
    day_of_week: str
    time: str
    degraded: bool = False


class TurnResult(BaseModel):
    session_id: str
    response: str
    slots: SlotSet
    function_calls: list[ExecutedCall] = Field(default_factory=list)
    needs_human: bool = False
    scenario: Scenario | None = None
    session_completed: bool = False
