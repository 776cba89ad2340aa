"""FastAPI server for the clinic booking orchestrator.

Run with:
    uvicorn orchestrator.server:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from orchestrator.agent import create_orchestrator_agent
from orchestrator.api.routes import router
from orchestrator.config import (
    CORS_ORIGINS,
    FAQ_SEED_ON_STARTUP,
    SERVER_HOST,
    SERVER_PORT,
    SESSION_SWEEP_INTERVAL_SECONDS,
    SESSION_TIMEOUT_MINUTES,
)
from orchestrator.services.embeddings import get_embedding_service
from orchestrator.services.faq_indexer import FAQIndexer
from orchestrator.services.metrics import metrics
from orchestrator.services.session_store import SessionSweeper
from orchestrator.services.vector_store import get_vector_store

# ── Logging ──────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)


async def _seed_faq() -> None:
    """Index the FAQ seed file into an empty collection.

    The server still starts when this fails; FAQ retrieval is then empty
    until ``POST /api/admin/reindex-faq`` succeeds.
    """
    indexer = FAQIndexer(get_embedding_service(), get_vector_store())
    try:
        count = await asyncio.to_thread(indexer.ensure_seeded)
    except Exception:
        logger.warning("FAQ seeding failed; retrieval starts without FAQs", exc_info=True)
        return
    if count:
        logger.info("Seeded %d FAQ entries", count)


# ── Lifespan: agent, FAQ seed, session sweeper ───────────────────────
@asynccontextmanager
async def lifespan(application: FastAPI):
    """Build the agent once and run the expiry sweeper for its store."""
    logger.info("Building orchestrator agent…")
    agent = create_orchestrator_agent()
    if FAQ_SEED_ON_STARTUP:
        await _seed_faq()

    sweeper = SessionSweeper(
        agent.store,
        interval_seconds=SESSION_SWEEP_INTERVAL_SECONDS,
        timeout_minutes=SESSION_TIMEOUT_MINUTES,
    )
    sweeper.start()
    application.state.agent = agent
    logger.info("Agent ready.")
    try:
        yield
    finally:
        application.state.agent = None
        sweeper.stop()
        metrics.flush()
        logger.info("Orchestrator stopped (%d live sessions dropped)", len(agent.store))


# ── FastAPI application ──────────────────────────────────────────────
app = FastAPI(
    title="Clinic Booking Orchestrator",
    description=(
        "Conversational appointment booking: slot extraction, retrieval, "
        "proactive backend calls and grounded replies."
    ),
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Request-ID and timing middleware ─────────────────────────────────
@app.middleware("http")
async def add_request_id(request: Request, call_next) -> Response:
    """Echo or generate ``X-Request-ID`` and log each request's latency."""
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id
    started = time.perf_counter()

    response = await call_next(request)

    elapsed_ms = (time.perf_counter() - started) * 1000
    logger.info(
        "[%s] %s %s -> %d (%.0f ms)",
        request_id, request.method, request.url.path, response.status_code, elapsed_ms,
    )
    response.headers["X-Request-ID"] = request_id
    return response


app.include_router(router, prefix="/api")


@app.get("/")
async def root():
    """Service name and where to look next."""
    return {
        "service": "Clinic Booking Orchestrator",
        "version": app.version,
        "docs": app.docs_url,
        "health": "/api/health",
        "chat": "/api/chat",
    }


if __name__ == "__main__":
    logger.info("Starting orchestrator API server on %s:%d", SERVER_HOST, SERVER_PORT)
    uvicorn.run(
        "orchestrator.server:app",
        host=SERVER_HOST,
        port=SERVER_PORT,
        reload=True,
    )
