"""Pydantic schemas for the FastAPI endpoints."""

from __future__ import annotations

from pydantic import BaseModel, Field

from orchestrator.models import ExecutedCall, Message, Scenario, SessionContext, SlotSet


class ChatRequest(BaseModel):
    """Incoming patient message."""

    message: str = Field(..., min_length=1, max_length=2000, description="The patient's message")
    session_id: str | None = Field(
        default=None,
        max_length=100,
        description="Conversation id; omitted on the first message to get a new one",
    )


class ChatResponse(BaseModel):
    """One completed turn."""

    session_id: str = Field(..., description="The session this turn belongs to")
    response: str = Field(..., description="The assistant's reply")
    slots: SlotSet
    function_calls: list[ExecutedCall] = Field(default_factory=list)
    needs_human: bool = False
    scenario: Scenario | None = None
    session_completed: bool = Field(
        default=False, description="True once an appointment was booked; the session is gone",
    )


class SessionCreateRequest(BaseModel):
    session_id: str | None = Field(default=None, max_length=100)


class SessionCreateResponse(BaseModel):
    session_id: str
    created: bool


class SessionResponse(BaseModel):
    session_id: str
    slots: SlotSet
    context: SessionContext
    messages: list[Message]
    message_count: int


class EmbedRequest(BaseModel):
    text: str = Field(..., min_length=1, max_length=20000)


class EmbedResponse(BaseModel):
    embedding: list[float]
    dimensions: int


class ReindexResponse(BaseModel):
    indexed: int


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    service: str = "clinic-orchestrator"
    sessions: int = 0
    embedding_cache: dict[str, float] = Field(default_factory=dict)
