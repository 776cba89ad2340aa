"""Shared test fixtures for the orchestrator test suite."""

from __future__ import annotations

import os
from unittest.mock import MagicMock

import pytest


def pytest_configure(config):
    """Set test environment variables BEFORE collection starts.

    This runs before any imports, so config.py won't fail on module load.
    """
    os.environ.setdefault("ANTHROPIC_API_KEY", "test-anthropic-key-123")
    os.environ.setdefault("OPENAI_API_KEY", "test-openai-key-456")
    os.environ.setdefault("METRICS_ENABLED", "false")


@pytest.fixture
def mock_backend_response():
    """Factory fixture for creating mock httpx responses."""

    def _make(data, status_code: int = 200):
        mock = MagicMock()
        mock.status_code = status_code
        mock.json.return_value = data
        mock.text = str(data)
        return mock

    return _make


@pytest.fixture
def fake_embeddings():
    """A LangChain-shaped embeddings mock returning a fixed 3-d vector."""
    mock = MagicMock()
    mock.embed_query.side_effect = lambda text: [float(len(text)), 0.0, 1.0]
    mock.embed_documents.side_effect = lambda texts: [[float(len(t)), 0.0, 1.0] for t in texts]
    return mock
