"""Tests for the post-booking sync and the FAQ indexer."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from orchestrator.config import FAQ_DATA_PATH
from orchestrator.models import Message, Session, SlotSet
from orchestrator.services.appointment_sync import AppointmentSync
from orchestrator.services.faq_indexer import FAQIndexer, load_faq
from orchestrator.services.vector_store import APPOINTMENT, CONVERSATION, FAQ


@pytest.fixture
def embeddings():
    mock = MagicMock()
    mock.embed_query.return_value = [0.1, 0.2]
    mock.embed_documents.side_effect = lambda texts: [[0.1, 0.2] for _ in texts]
    return mock


@pytest.fixture
def store():
    mock = MagicMock()
    mock.upsert.side_effect = lambda kind, records: len(records)
    return mock


def _session() -> Session:
    return Session(
        session_id="sess-1",
        messages=[
            Message(role="user", content="Cleaning downtown please"),
            Message(role="assistant", content="Which date?"),
        ],
        slots=SlotSet(name="Ana Lima", procedure="Cleaning", unit="Downtown"),
    )


class TestAppointmentSync:
    def test_appointment_payload(self, embeddings, store):
        sync = AppointmentSync(embeddings, store)

        record_id = sync.sync_appointment({
            "id": "APT-1", "patientName": "Ana Lima", "procedure": "Cleaning",
            "unit": "Downtown", "dateTime": "2025-12-10T14:00:00",
        }, "sess-1")

        assert record_id == "APT-1"
        kind, records = store.upsert.call_args[0]
        assert kind == APPOINTMENT
        assert records[0].payload["patientName"] == "Ana Lima"
        assert records[0].payload["sessionId"] == "sess-1"
        embeddings.embed_query.assert_called_once_with("Ana Lima Cleaning Downtown")

    def test_conversation_archive(self, embeddings, store):
        AppointmentSync(embeddings, store).archive_conversation(_session(), "booked")

        kind, records = store.upsert.call_args[0]
        assert kind == CONVERSATION
        assert records[0].id == "sess-1:booked"
        assert records[0].payload["message"] == "Cleaning downtown please"
        assert records[0].payload["slots"]["unit"] == "Downtown"
        assert "user: Cleaning downtown please" in records[0].document

    def test_spawn_runs_in_background_and_logs_failures(self, embeddings, store):
        store.upsert.side_effect = RuntimeError("chroma down")
        thread = AppointmentSync(embeddings, store).spawn(_session(), {"id": "APT-1"})
        thread.join(timeout=5)
        assert not thread.is_alive()
        assert thread.daemon


class TestFAQIndexer:
    def test_reindex_replaces_collection(self, tmp_path, embeddings, store):
        path = tmp_path / "faq.json"
        path.write_text(json.dumps([
            {"id": "hours", "question": "Hours?", "answer": "8 to 6", "keywords": ["hours"]},
            {"id": "parking", "question": "Parking?", "answer": "Free", "keywords": []},
            {"id": "broken", "question": "", "answer": "no question"},
        ]))

        count = FAQIndexer(embeddings, store).reindex(path)

        assert count == 2
        store.reset.assert_called_once_with(FAQ)
        texts = embeddings.embed_documents.call_args[0][0]
        assert texts[0] == "Hours?\n8 to 6\nhours"

    def test_ensure_seeded_skips_populated_collection(self, tmp_path, embeddings, store):
        store.count.return_value = 4
        assert FAQIndexer(embeddings, store).ensure_seeded(tmp_path / "missing.json") == 0
        store.reset.assert_not_called()

    def test_ensure_seeded_indexes_empty_collection(self, tmp_path, embeddings, store):
        path = tmp_path / "faq.json"
        path.write_text(json.dumps([{"id": "hours", "question": "Hours?", "answer": "8 to 6"}]))
        store.count.return_value = 0
        assert FAQIndexer(embeddings, store).ensure_seeded(path) == 1

    def test_load_faq_rejects_non_list(self, tmp_path):
        path = tmp_path / "faq.json"
        path.write_text(json.dumps({"question": "Hours?"}))
        with pytest.raises(ValueError):
            load_faq(path)

    def test_default_seed_path_is_inside_the_package(self):
        path = Path(FAQ_DATA_PATH)
        assert path.is_absolute()
        assert path.parent.parent.name == "orchestrator"
        assert path.is_file()

    def test_seed_file_is_valid(self):
        entries = load_faq()
        assert len(entries) >= 10
        assert all({"id", "question", "answer", "keywords"} <= set(e) for e in entries)
