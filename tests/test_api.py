"""Tests for the FastAPI endpoints."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from orchestrator.models import (
    ExecutedCall,
    FunctionCall,
    FunctionCallResult,
    Message,
    Scenario,
    Session,
    SlotSet,
    TurnResult,
)
from orchestrator.server import app


@pytest.fixture
def mock_agent():
    """Create a mock agent and attach it to app state (mirrors the lifespan)."""
    agent = MagicMock()
    agent.process_message.return_value = TurnResult(
        session_id="test-session-1",
        response="Hello! Which procedure would you like to book?",
        slots=SlotSet(name="Ana"),
        function_calls=[ExecutedCall(
            call=FunctionCall(name="list_procedures"),
            result=FunctionCallResult(success=True, data=[{"name": "Cleaning"}]),
        )],
        scenario=Scenario.GREETING,
    )
    agent.store.__len__.return_value = 2

    # Attach to app state the same way the lifespan does
    app.state.agent = agent
    yield agent
    app.state.agent = None


@pytest.fixture
def client(mock_agent):
    """FastAPI test client with the mock agent wired up."""
    return TestClient(app)


@pytest.fixture
def embedding_service():
    service = MagicMock()
    service.stats.return_value = {"hits": 3, "misses": 1, "size": 1, "max_size": 1000}
    service.embed_query.return_value = [0.1, 0.2, 0.3]
    with patch("orchestrator.api.routes.get_embedding_service", return_value=service):
        yield service


class TestHealthEndpoint:
    def test_health_returns_ok(self, client, embedding_service):
        response = client.get("/api/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["service"] == "clinic-orchestrator"
        assert data["sessions"] == 2
        assert data["embedding_cache"]["hits"] == 3

    def test_health_while_starting(self):
        app.state.agent = None
        response = TestClient(app).get("/api/health")
        assert response.status_code == 200
        assert response.json()["status"] == "starting"


class TestChatEndpoint:
    def test_chat_returns_turn_result(self, client, mock_agent):
        response = client.post(
            "/api/chat",
            json={"message": "Hello!", "session_id": "test-session-1"},
        )
        assert response.status_code == 200
        data = response.json()
        assert data["session_id"] == "test-session-1"
        assert "procedure" in data["response"]
        assert data["slots"]["name"] == "Ana"
        assert data["scenario"] == "greeting"
        assert data["function_calls"][0]["call"]["name"] == "list_procedures"
        assert data["session_completed"] is False
        mock_agent.process_message.assert_called_once_with("test-session-1", "Hello!")

    def test_chat_without_session_id(self, client, mock_agent):
        response = client.post("/api/chat", json={"message": "Hi!"})
        assert response.status_code == 200
        mock_agent.process_message.assert_called_once_with(None, "Hi!")

    def test_chat_validates_empty_message(self, client):
        response = client.post(
            "/api/chat",
            json={"message": "", "session_id": "test-session"},
        )
        assert response.status_code == 422  # Pydantic validation error

    def test_chat_validates_long_message(self, client):
        response = client.post("/api/chat", json={"message": "x" * 2001})
        assert response.status_code == 422

    def test_chat_handles_agent_error(self, client, mock_agent):
        mock_agent.process_message.side_effect = RuntimeError("LLM exploded")
        response = client.post(
            "/api/chat",
            json={"message": "Hello!", "session_id": "test-session"},
        )
        assert response.status_code == 500
        # Verify we do NOT leak the internal error message to the client
        detail = response.json()["detail"]
        assert "LLM exploded" not in detail
        assert "internal error" in detail.lower()

    def test_response_includes_request_id_header(self, client):
        response = client.post(
            "/api/chat",
            json={"message": "Hello!", "session_id": "test-session"},
        )
        assert "X-Request-ID" in response.headers

    def test_client_supplied_request_id_is_echoed(self, client):
        response = client.post(
            "/api/chat",
            json={"message": "Hello!", "session_id": "test-session"},
            headers={"X-Request-ID": "my-trace-id-123"},
        )
        assert response.headers["X-Request-ID"] == "my-trace-id-123"


class TestSessionEndpoints:
    def test_create_session(self, client, mock_agent):
        mock_agent.initialize_session.return_value = ("abc", True)
        response = client.post("/api/sessions", json={"session_id": "abc"})
        assert response.status_code == 200
        assert response.json() == {"session_id": "abc", "created": True}

    def test_get_session(self, client, mock_agent):
        mock_agent.store.get.return_value = Session(
            session_id="abc",
            slots=SlotSet(name="Ana", unit="Downtown"),
            messages=[Message(role="user", content="hi")],
            message_count=1,
        )
        response = client.get("/api/sessions/abc")
        assert response.status_code == 200
        data = response.json()
        assert data["slots"]["unit"] == "Downtown"
        assert data["messages"][0]["content"] == "hi"
        assert data["message_count"] == 1

    def test_get_unknown_session_is_404(self, client, mock_agent):
        mock_agent.store.get.return_value = None
        assert client.get("/api/sessions/nope").status_code == 404


class TestEmbedEndpoint:
    def test_embed(self, client, embedding_service):
        response = client.post("/api/embed", json={"text": "teeth whitening"})
        assert response.status_code == 200
        assert response.json() == {"embedding": [0.1, 0.2, 0.3], "dimensions": 3}
        embedding_service.embed_query.assert_called_once_with("teeth whitening")

    def test_provider_failure_is_502(self, client, embedding_service):
        embedding_service.embed_query.side_effect = RuntimeError("rate limited")
        response = client.post("/api/embed", json={"text": "teeth whitening"})
        assert response.status_code == 502
        assert "rate limited" not in response.json()["detail"]


class TestReindexEndpoint:
    @patch("orchestrator.api.routes.get_vector_store")
    @patch("orchestrator.api.routes.FAQIndexer")
    def test_reindex(self, mock_indexer, _mock_store, client, embedding_service):
        mock_indexer.return_value.reindex.return_value = 12
        response = client.post("/api/admin/reindex-faq")
        assert response.status_code == 200
        assert response.json() == {"indexed": 12}

    @patch("orchestrator.api.routes.get_vector_store")
    @patch("orchestrator.api.routes.FAQIndexer")
    def test_reindex_failure(self, mock_indexer, _mock_store, client, embedding_service):
        mock_indexer.return_value.reindex.side_effect = ValueError("bad json")
        response = client.post("/api/admin/reindex-faq")
        assert response.status_code == 500


class TestAgentNotReady:
    def test_returns_503_when_agent_not_initialised(self):
        """Before the lifespan has built the agent, chat returns 503."""
        app.state.agent = None
        response = TestClient(app).post(
            "/api/chat",
            json={"message": "Hello!", "session_id": "s1"},
        )
        assert response.status_code == 503
        assert "starting up" in response.json()["detail"].lower()


class TestRootEndpoint:
    def test_root_returns_service_info(self, client):
        response = client.get("/")
        assert response.status_code == 200
        data = response.json()
        assert data["service"] == "Clinic Booking Orchestrator"
        assert "docs" in data
