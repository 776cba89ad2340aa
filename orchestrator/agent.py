"""LangGraph turn pipeline for the clinic booking orchestrator.

Architecture:
  Each patient message runs once through a compiled StateGraph:

    1. **understand** — ground "today", extract slots with the LLM (or the
                        retrieval fallback), merge them into the session,
                        validate against the catalog, retrieve RAG context
    2. **classify**   — scenario detection and the human-handoff check
    3. **handoff**    — fixed handoff reply
    4. **proactive**  — calls the scenario requires, decided by rule
    5. **chatbot**    — tool-calling LLM, only when no call was forced
    6. **execute**    — run backend calls, synthesize the reply

  Routing:
    understand → classify → (needs human?)   → handoff → END
                          → proactive → (forced calls?) → execute → END
                                      → chatbot → (tool calls?) → execute → END
                                                → END

  Memory:
    Conversation state lives in :class:`SessionStore`, not in a LangGraph
    checkpointer: slots, scenario and counters are read and written by
    the nodes, and the agent holds the session's lock for the whole turn.
    A turn never raises; any failure becomes the fixed apology.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any

from langchain_anthropic import ChatAnthropic
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langgraph.graph import END, StateGraph
from typing_extensions import TypedDict

from orchestrator.config import (
    ANTHROPIC_API_KEY,
    EXTRACTION_MODEL_NAME,
    LLM_TEMPERATURE,
    LLM_TIMEOUT_SECONDS,
    MODEL_NAME,
)
from orchestrator.models import (
    DateContext,
    ExecutedCall,
    ExtractionResult,
    FunctionCall,
    RAGContext,
    Scenario,
    Session,
    SlotSet,
    TurnResult,
)
from orchestrator.prompts import APOLOGY_RESPONSE, HANDOFF_RESPONSE
from orchestrator.services.appointment_sync import AppointmentSync
from orchestrator.services.backend_client import BackendClient
from orchestrator.services.context_retrieval import ContextRetriever
from orchestrator.services.embeddings import get_embedding_service
from orchestrator.services.fallback import FallbackDetector, tag_sentiment
from orchestrator.services.functions import (
    CREATE_APPOINTMENT,
    FUNCTION_DEFINITIONS,
    FunctionExecutor,
)
from orchestrator.services.metrics import metrics
from orchestrator.services.proactivity import forced_calls
from orchestrator.services.prompt_builder import build_system_prompt
from orchestrator.services.reference_data import ReferenceDataCache
from orchestrator.services.response_parser import parse_slots_from_response
from orchestrator.services.response_synthesizer import ResponseSynthesizer, message_text
from orchestrator.services.scenario import detect_scenario, is_explicit_confirmation
from orchestrator.services.session_store import SessionStore
from orchestrator.services.slot_extractor import (
    SlotExtractor,
    merge_extraction,
    suggestions_from_context,
)
from orchestrator.services.validation import SlotValidator
from orchestrator.services.vector_store import get_vector_store

logger = logging.getLogger(__name__)

HISTORY_WINDOW = 10


# ── State schema ─────────────────────────────────────────────────────


class TurnState(TypedDict, total=False):
    """Everything one turn produces on its way through the graph.

    The session itself is not in here; nodes read it from the store by
    ``session_id`` so there is one source of truth.
    """

    session_id: str
    message: str
    date_context: DateContext
    extraction: ExtractionResult
    rag_context: RAGContext
    validation_summary: str
    scenario: Scenario
    needs_human: bool
    function_calls: list[FunctionCall]
    executed: list[ExecutedCall]
    response: str
    booking: dict[str, Any] | None
    # True when ``response`` is raw LLM text rather than a synthesized reply
    from_llm_text: bool


# ── LLM builders ────────────────────────────────────────────────────


def _build_llm() -> ChatAnthropic:
    """Conversation model; tools are bound by the chatbot node."""
    return ChatAnthropic(
        model=MODEL_NAME,
        api_key=ANTHROPIC_API_KEY,
        temperature=LLM_TEMPERATURE,
        max_tokens=1024,
        timeout=LLM_TIMEOUT_SECONDS,
        max_retries=2,
    )


def _build_extraction_llm() -> ChatAnthropic:
    """Deterministic, short-output model for JSON slot extraction."""
    return ChatAnthropic(
        model=EXTRACTION_MODEL_NAME,
        api_key=ANTHROPIC_API_KEY,
        temperature=0.0,
        max_tokens=512,
        timeout=LLM_TIMEOUT_SECONDS,
        max_retries=1,
    )


# ── Components ───────────────────────────────────────────────────────


@dataclass
class AgentComponents:
    store: SessionStore
    extractor: SlotExtractor
    retriever: ContextRetriever
    executor: FunctionExecutor
    synthesizer: ResponseSynthesizer
    validator: SlotValidator
    reference: ReferenceDataCache
    fallback: FallbackDetector
    sync: AppointmentSync
    llm: Any


def build_components(store: SessionStore | None = None) -> AgentComponents:
    """Wire the production components together."""
    embeddings = get_embedding_service()
    vector_store = get_vector_store()
    retriever = ContextRetriever(embeddings, vector_store)
    executor = FunctionExecutor(BackendClient())
    reference = ReferenceDataCache(executor)
    llm = _build_llm()
    return AgentComponents(
        store=store or SessionStore(),
        extractor=SlotExtractor(_build_extraction_llm(), retriever),
        retriever=retriever,
        executor=executor,
        synthesizer=ResponseSynthesizer(executor, llm),
        validator=SlotValidator(reference, executor),
        reference=reference,
        fallback=FallbackDetector(),
        sync=AppointmentSync(embeddings, vector_store),
        llm=llm,
    )


def _require_session(c: AgentComponents, session_id: str) -> Session:
    session = c.store.get(session_id)
    if session is None:
        raise LookupError(f"Session {session_id} vanished mid-turn")
    return session


def _history_messages(session: Session) -> list[BaseMessage]:
    history: list[BaseMessage] = []
    for message in session.messages[-HISTORY_WINDOW:]:
        if message.role == "user":
            history.append(HumanMessage(content=message.content))
        else:
            history.append(AIMessage(content=message.content))
    return history


# ── Node: understand ─────────────────────────────────────────────────


def _make_understand_node(c: AgentComponents):
    """Extract, merge and validate slots, then gather retrieval context."""

    def understand_node(state: TurnState) -> dict:
        session_id, message = state["session_id"], state["message"]
        session = _require_session(c, session_id)

        date_context = c.executor.client.current_datetime()
        extraction = c.extractor.extract(message, session.slots, date_context)
        slots = c.store.merge_slots(session_id, merge_extraction(session.slots, extraction))

        summary = ""
        try:
            outcome = c.validator.validate(slots)
            slots = c.store.merge_slots(session_id, outcome.slots.model_dump())
            summary = outcome.summary
        except Exception:
            logger.warning("Slot validation failed; continuing unvalidated", exc_info=True)

        rag_context = extraction.rag_context
        if rag_context is None:
            rag_context = c.retriever.retrieve_context(message, slots)
        extraction = extraction.model_copy(update={
            "rag_context": rag_context,
            "suggestions": extraction.suggestions or suggestions_from_context(rag_context),
        })
        return {
            "date_context": date_context,
            "extraction": extraction,
            "rag_context": rag_context,
            "validation_summary": summary,
        }

    return understand_node


# ── Node: classify ───────────────────────────────────────────────────


def _make_classify_node(c: AgentComponents):
    def classify_node(state: TurnState) -> dict:
        session_id = state["session_id"]
        session = _require_session(c, session_id)

        updates: dict[str, Any] = {"current_step": session.context.current_step + 1}
        if tag_sentiment(state["message"]) == "negative":
            updates["sentiment"] = "negative"
        elif session.context.sentiment == "negative" and is_explicit_confirmation(
            state["message"],
        ):
            # an explicit yes after frustration means the patient carries on here
            updates["sentiment"] = "neutral"

        scenario = detect_scenario(session, state["extraction"])
        updates["scenario"] = scenario
        c.store.merge_context(session_id, updates)

        decision = c.fallback.check(_require_session(c, session_id))
        if decision.needs_human:
            c.store.merge_context(
                session_id, {"fallback_count": session.context.fallback_count + 1},
            )
        logger.info(
            "Session %s: scenario=%s confidence=%.2f handoff=%s",
            session_id, scenario.value, state["extraction"].confidence, decision.needs_human,
        )
        return {"scenario": scenario, "needs_human": decision.needs_human}

    return classify_node


# ── Node: handoff ────────────────────────────────────────────────────


def handoff_node(state: TurnState) -> dict:
    return {"response": HANDOFF_RESPONSE, "executed": []}


# ── Node: proactive ──────────────────────────────────────────────────


def _make_proactive_node(c: AgentComponents):
    def proactive_node(state: TurnState) -> dict:
        session = _require_session(c, state["session_id"])
        calls = forced_calls(state["scenario"], session.slots, session_id=session.session_id)
        if calls:
            logger.info("Forced calls: %s", [call.name for call in calls])
        return {"function_calls": calls}

    return proactive_node


# ── Node: chatbot ────────────────────────────────────────────────────


def _make_chatbot_node(c: AgentComponents):
    """Tool-calling LLM turn.

    The model's text is kept only when it requested no tools; otherwise
    the reply comes from the synthesizer after the calls have run.
    """
    llm_with_tools = c.llm.bind_tools(FUNCTION_DEFINITIONS)

    def chatbot_node(state: TurnState) -> dict:
        session = _require_session(c, state["session_id"])
        system = build_system_prompt(
            scenario=state["scenario"],
            slots=session.slots,
            date_context=state["date_context"],
            reference=c.reference,
            rag_context=state.get("rag_context"),
            validation_summary=state.get("validation_summary", ""),
        )
        with metrics.track("anthropic", "chat"):
            response = llm_with_tools.invoke(
                [SystemMessage(content=system)] + _history_messages(session)
            )

        tool_calls = getattr(response, "tool_calls", None) or []
        if tool_calls:
            calls = []
            for tool_call in tool_calls:
                arguments = dict(tool_call.get("args") or {})
                if tool_call["name"] == CREATE_APPOINTMENT:
                    arguments.setdefault("session_id", session.session_id)
                calls.append(FunctionCall(name=tool_call["name"], arguments=arguments))
            logger.info("Model requested: %s", [call.name for call in calls])
            return {"function_calls": calls}

        return {"function_calls": [], "response": message_text(response), "from_llm_text": True}

    return chatbot_node


# ── Node: execute ────────────────────────────────────────────────────


def _make_execute_node(c: AgentComponents):
    def execute_node(state: TurnState) -> dict:
        session_id = state["session_id"]
        executed = c.executor.execute_all(state.get("function_calls", []))
        session = _require_session(c, session_id)

        result = c.synthesizer.respond(executed, state["message"], session.slots)
        if result.invalid_fields:
            c.store.merge_slots(
                session_id, {f"{field}_validated": False for field in result.invalid_fields},
            )
        if executed:
            c.store.merge_context(session_id, {"last_function_call": executed[-1].call.name})
        return {
            "response": result.text,
            "executed": result.executed,
            "booking": result.booking,
            "from_llm_text": False,
        }

    return execute_node


# ── Conditional edges ────────────────────────────────────────────────


def route_after_classify(state: TurnState) -> str:
    return "handoff" if state.get("needs_human") else "proactive"


def route_after_proactive(state: TurnState) -> str:
    return "execute" if state.get("function_calls") else "chatbot"


def route_after_chatbot(state: TurnState) -> str:
    return "execute" if state.get("function_calls") else END


# ── Graph assembly ───────────────────────────────────────────────────


def build_turn_graph(c: AgentComponents):
    graph = StateGraph(TurnState)

    graph.add_node("understand", _make_understand_node(c))
    graph.add_node("classify", _make_classify_node(c))
    graph.add_node("handoff", handoff_node)
    graph.add_node("proactive", _make_proactive_node(c))
    graph.add_node("chatbot", _make_chatbot_node(c))
    graph.add_node("execute", _make_execute_node(c))

    graph.set_entry_point("understand")
    graph.add_edge("understand", "classify")
    graph.add_conditional_edges(
        "classify", route_after_classify,
        {"handoff": "handoff", "proactive": "proactive"},
    )
    graph.add_edge("handoff", END)
    graph.add_conditional_edges(
        "proactive", route_after_proactive,
        {"execute": "execute", "chatbot": "chatbot"},
    )
    graph.add_conditional_edges(
        "chatbot", route_after_chatbot, {"execute": "execute", END: END},
    )
    graph.add_edge("execute", END)
    return graph.compile()


# ── Agent ────────────────────────────────────────────────────────────


class Agent:
    """Per-message entry point used by the API and the CLI."""

    def __init__(self, components: AgentComponents) -> None:
        self._c = components
        self._graph = build_turn_graph(components)

    @property
    def store(self) -> SessionStore:
        return self._c.store

    def initialize_session(self, session_id: str | None = None) -> tuple[str, bool]:
        """Create (or reuse) a session.  Returns ``(session_id, created)``."""
        existed = bool(session_id) and self._c.store.exists(session_id.strip())
        return self._c.store.create(session_id), not existed

    def process_message(self, session_id: str | None, message: str) -> TurnResult:
        session_id = (session_id or "").strip() or str(uuid.uuid4())
        store = self._c.store

        with store.lock(session_id):
            if not store.exists(session_id):
                store.create(session_id)
            store.append_message(session_id, "user", message)

            try:
                final: TurnState = self._graph.invoke(
                    {"session_id": session_id, "message": message},
                )
            except Exception:
                logger.exception("Turn failed for session %s", session_id)
                return self._finish_failed_turn(session_id)

            response = final.get("response") or ""
            if not response:
                logger.error("Turn for session %s produced no response", session_id)
                return self._finish_failed_turn(session_id)

            if final.get("from_llm_text"):
                self._merge_stated_slots(session_id, response)
            if response == APOLOGY_RESPONSE:
                self._count_failure(session_id)
            store.append_message(session_id, "assistant", response)

            executed = final.get("executed", [])
            scenario = final.get("scenario")
            booking = final.get("booking")
            if booking:
                self._complete_booking(session_id, booking)
                slots = SlotSet()
            else:
                slots = _require_session(self._c, session_id).slots

            return TurnResult(
                session_id=session_id,
                response=response,
                slots=slots,
                function_calls=executed,
                needs_human=bool(final.get("needs_human")),
                scenario=scenario,
                session_completed=bool(booking),
            )

    # ── Helpers ──────────────────────────────────────────────────────

    def _merge_stated_slots(self, session_id: str, response: str) -> None:
        stated = parse_slots_from_response(response)
        if not stated:
            return
        session = _require_session(self._c, session_id)
        updates = merge_extraction(session.slots, ExtractionResult(**stated, confidence=1.0))
        if updates:
            self._c.store.merge_slots(session_id, updates)

    def _count_failure(self, session_id: str) -> None:
        session = self._c.store.get(session_id)
        if session is not None:
            self._c.store.merge_context(
                session_id, {"fallback_count": session.context.fallback_count + 1},
            )

    def _finish_failed_turn(self, session_id: str) -> TurnResult:
        store = self._c.store
        slots = SlotSet()
        if store.exists(session_id):
            self._count_failure(session_id)
            store.append_message(session_id, "assistant", APOLOGY_RESPONSE)
            slots = _require_session(self._c, session_id).slots
        return TurnResult(
            session_id=session_id,
            response=APOLOGY_RESPONSE,
            slots=slots,
            scenario=Scenario.ERROR_HANDLING,
        )

    def _complete_booking(self, session_id: str, booking: dict[str, Any]) -> None:
        """Hand the finished conversation to long-term memory and drop it."""
        snapshot = _require_session(self._c, session_id)
        self._c.sync.spawn(snapshot, booking)
        self._c.store.delete(session_id)
        logger.info("Session %s completed with appointment %s", session_id, booking.get("id"))


def create_orchestrator_agent(store: SessionStore | None = None) -> Agent:
    """Build the production agent."""
    agent = Agent(build_components(store))
    logger.debug("Orchestrator agent compiled (chat: %s, extraction: %s)", MODEL_NAME, EXTRACTION_MODEL_NAME)
    return agent
