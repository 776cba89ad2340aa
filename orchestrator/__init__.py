"""Clinic Booking Orchestrator — a conversational appointment-booking agent.

Architecture Overview
=====================

Each patient message runs once through a **LangGraph** StateGraph
(``orchestrator/agent.py``):

1. **understand** — slot extraction with Claude (retrieval fallback when
   the call fails), merge into the session, catalog validation, and RAG
   context from three Chroma collections (FAQ, past conversations,
   appointment history).
2. **classify** — scenario detection and the human-handoff check.
3. **proactive** — calls the scenario makes mandatory, run without
   asking the model (list procedures on greeting, re-validate on
   confirmation, book on explicit confirmation, list units when the
   patient has not picked one).
4. **chatbot** — only when nothing was forced: Claude with the seven
   backend functions bound as tools.
5. **execute** — the backend calls, then the response synthesizer, which
   answers from templates whenever the outcome is known (invalid
   reference, listing, unavailable slot, booking, duplicate, failure) and
   asks the model to phrase only what is left.

Key Design Decisions
--------------------
- **Deterministic over generative**: availability, listings and booking
  outcomes are never phrased by the model from memory.
- **Session memory** lives in an in-process store with a per-session
  lock held for the whole turn, swept by a daemon thread when idle.
- **Embeddings** go through a shared FIFO cache so each normalized text
  reaches OpenAI at most once while cached.
- **Resilience**: the backend client retries timeouts and 5xx with
  exponential backoff; every failure path ends in a fixed reply, never a
  raised exception.
- **Dual Interface**: FastAPI server (production) + CLI chat loop.

Package Structure
-----------------
- ``orchestrator/agent.py`` — LangGraph turn pipeline and ``Agent``
- ``orchestrator/config.py`` — configuration from environment variables
- ``orchestrator/models.py`` — pydantic domain types
- ``orchestrator/prompts.py`` — system, scenario, extraction and reply templates
- ``orchestrator/server.py`` — FastAPI application
- ``orchestrator/main.py`` — CLI chat interface
- ``orchestrator/services/`` — extraction, retrieval, backend, memory, synthesis
- ``orchestrator/api/`` — FastAPI routes and schemas
"""
