"""Long-term memory writers that run after a booking.

Both writes are best-effort: :meth:`AppointmentSync.spawn` runs them on a
daemon thread that the response path never waits for, and any failure is
logged there and dropped.
"""

from __future__ import annotations

import logging
import threading
import uuid
from typing import Any

from orchestrator.models import Session, utcnow
from orchestrator.services.embeddings import EmbeddingService
from orchestrator.services.vector_store import APPOINTMENT, CONVERSATION, VectorRecord, VectorStore

logger = logging.getLogger(__name__)


class AppointmentSync:
    def __init__(self, embeddings: EmbeddingService, store: VectorStore) -> None:
        self._embeddings = embeddings
        self._store = store

    def sync_appointment(self, appointment: dict[str, Any], session_id: str) -> str:
        """Index a booked appointment in the appointment-history collection."""
        patient = appointment.get("patientName") or appointment.get("patient_name") or ""
        procedure = appointment.get("procedure") or ""
        unit = appointment.get("unit") or ""
        date_time = appointment.get("dateTime") or appointment.get("date_time")

        record_id = str(appointment.get("id") or uuid.uuid4())
        text = f"{patient} {procedure} {unit}".strip()
        self._store.upsert(APPOINTMENT, [VectorRecord(
            id=record_id,
            vector=self._embeddings.embed_query(text),
            document=text,
            payload={
                "patientName": patient,
                "procedure": procedure,
                "unit": unit,
                "dateTime": date_time,
                "sessionId": session_id,
                "timestamp": utcnow().isoformat(),
            },
        )])
        logger.info("Appointment %s synced to history", record_id)
        return record_id

    def archive_conversation(self, session: Session, outcome: str) -> str:
        """Index the conversation transcript with its final slots and outcome."""
        transcript = "\n".join(f"{m.role}: {m.content}" for m in session.messages)
        first_user = next((m.content for m in session.messages if m.role == "user"), "")
        duration = (utcnow() - session.created_at).total_seconds()

        record_id = f"{session.session_id}:{outcome}"
        self._store.upsert(CONVERSATION, [VectorRecord(
            id=record_id,
            vector=self._embeddings.embed_query(transcript),
            document=transcript,
            payload={
                "sessionId": session.session_id,
                "message": first_user,
                "slots": session.slots.known(),
                "outcome": outcome,
                "durationSeconds": round(duration, 1),
                "timestamp": utcnow().isoformat(),
            },
        )])
        logger.info("Conversation %s archived (%s)", session.session_id, outcome)
        return record_id

    def spawn(
        self,
        session: Session,
        appointment: dict[str, Any] | None,
        outcome: str = "booked",
    ) -> threading.Thread:
        """Run the writes in the background; the caller does not wait."""

        def _run() -> None:
            try:
                if appointment:
                    self.sync_appointment(appointment, session.session_id)
                self.archive_conversation(session, outcome)
            except Exception:
                logger.exception("Post-booking sync failed for session %s", session.session_id)

        thread = threading.Thread(
            target=_run, daemon=True, name=f"sync-{session.session_id[:8]}",
        )
        thread.start()
        return thread
