"""FastAPI route definitions for the clinic orchestrator API."""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, HTTPException, Request

from orchestrator.agent import Agent
from orchestrator.api.schemas import (
    ChatRequest,
    ChatResponse,
    EmbedRequest,
    EmbedResponse,
    HealthResponse,
    ReindexResponse,
    SessionCreateRequest,
    SessionCreateResponse,
    SessionResponse,
)
from orchestrator.services.embeddings import get_embedding_service
from orchestrator.services.faq_indexer import FAQIndexer
from orchestrator.services.vector_store import get_vector_store

logger = logging.getLogger(__name__)

router = APIRouter()


def _get_agent(request: Request) -> Agent:
    """The agent built during the FastAPI lifespan (see ``server.py``)."""
    agent = getattr(request.app.state, "agent", None)
    if agent is None:
        raise HTTPException(
            status_code=503,
            detail="The assistant is still starting up. Please try again in a moment.",
        )
    return agent


# ── Endpoints ────────────────────────────────────────────────────────


@router.get("/health", response_model=HealthResponse)
async def health_check(http_request: Request):
    """Health check endpoint; also reports live sessions and cache stats."""
    agent = getattr(http_request.app.state, "agent", None)
    if agent is None:
        return HealthResponse(status="starting")
    return HealthResponse(
        sessions=len(agent.store),
        embedding_cache=get_embedding_service().stats(),
    )


@router.post("/chat", response_model=ChatResponse)
async def chat(request: ChatRequest, http_request: Request):
    """Run one conversation turn.

    ``process_message`` blocks on the LLM, the vector store and the
    backend, so it runs in the default thread pool via
    ``asyncio.to_thread`` and other sessions keep being served.
    """
    agent = _get_agent(http_request)
    request_id = getattr(http_request.state, "request_id", "?")

    try:
        result = await asyncio.to_thread(
            agent.process_message, request.session_id, request.message,
        )
    except Exception as e:
        logger.exception("[%s] Error processing chat request", request_id)
        raise HTTPException(
            status_code=500,
            detail="An internal error occurred. Please try again.",
        ) from e

    return ChatResponse(**result.model_dump())


@router.post("/sessions", response_model=SessionCreateResponse)
async def create_session(request: SessionCreateRequest, http_request: Request):
    agent = _get_agent(http_request)
    session_id, created = agent.initialize_session(request.session_id)
    return SessionCreateResponse(session_id=session_id, created=created)


@router.get("/sessions/{session_id}", response_model=SessionResponse)
async def get_session(session_id: str, http_request: Request):
    agent = _get_agent(http_request)
    session = agent.store.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found.")
    return SessionResponse(
        session_id=session.session_id,
        slots=session.slots,
        context=session.context,
        messages=session.messages,
        message_count=session.message_count,
    )


@router.post("/embed", response_model=EmbedResponse)
async def embed(request: EmbedRequest, http_request: Request):
    """Embed arbitrary text through the shared cache."""
    request_id = getattr(http_request.state, "request_id", "?")
    try:
        vector = await asyncio.to_thread(get_embedding_service().embed_query, request.text)
    except Exception as e:
        logger.exception("[%s] Embedding provider failed", request_id)
        raise HTTPException(
            status_code=502, detail="The embedding provider is unavailable.",
        ) from e
    return EmbedResponse(embedding=vector, dimensions=len(vector))


@router.post("/admin/reindex-faq", response_model=ReindexResponse)
async def reindex_faq(http_request: Request):
    request_id = getattr(http_request.state, "request_id", "?")
    indexer = FAQIndexer(get_embedding_service(), get_vector_store())
    try:
        count = await asyncio.to_thread(indexer.reindex)
    except Exception as e:
        logger.exception("[%s] FAQ reindex failed", request_id)
        raise HTTPException(
            status_code=500, detail="FAQ reindex failed. See server logs.",
        ) from e
    return ReindexResponse(indexed=count)
