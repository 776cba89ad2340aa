"""In-memory short-term session memory.

Design decisions
────────────────
• One :class:`Session` per conversation id, held in a dict guarded by a
  ``threading.Lock``; distinct sessions can be read and written from
  many request threads at once.
• A per-session ``Lock`` (``store.lock(session_id)``) that the agent
  holds for a whole turn, so two requests for the same session cannot
  interleave their read-modify-write cycles.
• The message buffer is a sliding window (``MEMORY_BUFFER_SIZE``, 0 for
  unbounded); ``Session.message_count`` keeps the total.
• Slot merges skip ``None`` values, so a merge can enrich or correct a
  slot but never blank it.  ``reset_slots`` is the only way back to empty.
• Idle sessions are purged by :class:`SessionSweeper`, a daemon thread
  that never touches a session whose lock is held by a turn.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Any, Literal

from orchestrator.config import (
    MEMORY_BUFFER_SIZE,
    SESSION_SWEEP_INTERVAL_SECONDS,
    SESSION_TIMEOUT_MINUTES,
)
from orchestrator.models import Message, Session, SessionContext, SlotSet, utcnow

logger = logging.getLogger(__name__)


class SessionNotFoundError(KeyError):
    """An operation named a session id that does not exist."""


class SessionStore:
    """Thread-safe map of session id → :class:`Session`."""

    def __init__(self, buffer_size: int = MEMORY_BUFFER_SIZE) -> None:
        self._buffer_size = buffer_size
        self._sessions: dict[str, Session] = {}
        self._session_locks: dict[str, threading.Lock] = {}
        self._lock = threading.Lock()

    # ── Lifecycle ────────────────────────────────────────────────────

    def create(self, session_id: str | None = None) -> str:
        """Create a session and return its id.

        Idempotent for client-supplied ids: an existing id is returned
        unchanged (with a warning).  Blank ids get a server-side uuid.
        """
        session_id = (session_id or "").strip() or str(uuid.uuid4())
        with self._lock:
            if session_id in self._sessions:
                logger.warning("Session %s already exists; reusing it", session_id)
                return session_id
            self._sessions[session_id] = Session(session_id=session_id)
            self._session_locks.setdefault(session_id, threading.Lock())
        logger.info("Session created: %s", session_id)
        return session_id

    def get(self, session_id: str) -> Session | None:
        """A snapshot of the session, or ``None`` when absent."""
        with self._lock:
            session = self._sessions.get(session_id)
            return session.model_copy(deep=True) if session else None

    def exists(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._sessions

    def delete(self, session_id: str) -> bool:
        with self._lock:
            removed = self._sessions.pop(session_id, None) is not None
            self._session_locks.pop(session_id, None)
        if removed:
            logger.info("Session deleted: %s", session_id)
        return removed

    def delete_all(self) -> None:
        with self._lock:
            self._sessions.clear()
            self._session_locks.clear()

    @contextmanager
    def lock(self, session_id: str) -> Iterator[None]:
        """Serialize turns for one session."""
        with self._lock:
            session_lock = self._session_locks.setdefault(session_id, threading.Lock())
        with session_lock:
            yield

    # ── Mutations ────────────────────────────────────────────────────

    def _require(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def append_message(
        self, session_id: str, role: Literal["user", "assistant"], content: str,
    ) -> None:
        with self._lock:
            session = self._require(session_id)
            session.messages.append(Message(role=role, content=content))
            session.message_count += 1
            if self._buffer_size > 0 and len(session.messages) > self._buffer_size:
                del session.messages[: len(session.messages) - self._buffer_size]
            session.last_activity = utcnow()

    def merge_slots(self, session_id: str, partial: dict[str, Any]) -> SlotSet:
        """Shallow-merge *partial* into the slots; ``None`` values are skipped."""
        with self._lock:
            session = self._require(session_id)
            updates = {k: v for k, v in partial.items() if v is not None}
            session.slots = SlotSet.model_validate({**session.slots.model_dump(), **updates})
            session.last_activity = utcnow()
            return session.slots.model_copy()

    def reset_slots(self, session_id: str) -> None:
        with self._lock:
            session = self._require(session_id)
            session.slots = SlotSet()
            session.last_activity = utcnow()

    def merge_context(self, session_id: str, partial: dict[str, Any]) -> SessionContext:
        with self._lock:
            session = self._require(session_id)
            session.context = SessionContext.model_validate(
                {**session.context.model_dump(), **partial}
            )
            session.last_activity = utcnow()
            return session.context.model_copy()

    # ── Queries ──────────────────────────────────────────────────────

    def recent_messages(self, session_id: str, n: int = 10) -> list[Message]:
        with self._lock:
            session = self._require(session_id)
            return [m.model_copy() for m in session.messages[-n:]] if n > 0 else []

    def all_sessions(self) -> list[Session]:
        with self._lock:
            return [s.model_copy(deep=True) for s in self._sessions.values()]

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    # ── Expiry ───────────────────────────────────────────────────────

    def sweep_expired(
        self,
        timeout_minutes: float = SESSION_TIMEOUT_MINUTES,
        *,
        now: datetime | None = None,
    ) -> list[str]:
        """Remove sessions idle for longer than *timeout_minutes*.

        Returns the removed ids.
        """
        cutoff = (now or utcnow()) - timedelta(minutes=timeout_minutes)
        with self._lock:
            expired: list[str] = []
            for sid, session in list(self._sessions.items()):
                if session.last_activity >= cutoff:
                    continue
                session_lock = self._session_locks.get(sid)
                if session_lock is not None and not session_lock.acquire(blocking=False):
                    # A turn is in flight
                    continue
                try:
                    del self._sessions[sid]
                    self._session_locks.pop(sid, None)
                    expired.append(sid)
                finally:
                    if session_lock is not None:
                        session_lock.release()
        if expired:
            logger.info("Swept %d expired session(s)", len(expired))
        return expired


class SessionSweeper:
    """Daemon thread that periodically calls :meth:`SessionStore.sweep_expired`."""

    def __init__(
        self,
        store: SessionStore,
        *,
        interval_seconds: float = SESSION_SWEEP_INTERVAL_SECONDS,
        timeout_minutes: float = SESSION_TIMEOUT_MINUTES,
    ) -> None:
        self._store = store
        self._interval = interval_seconds
        self._timeout = timeout_minutes
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, daemon=True, name="session-sweeper")
        self._thread.start()
        logger.info(
            "Session sweeper started (interval=%ss, timeout=%smin)",
            self._interval, self._timeout,
        )

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None

    def _loop(self) -> None:
        while not self._stop.wait(self._interval):
            try:
                self._store.sweep_expired(self._timeout)
            except Exception:
                logger.exception("Session sweep failed")
