"""Human-handoff decision."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from orchestrator.models import Session

logger = logging.getLogger(__name__)

MAX_FALLBACK_ATTEMPTS = 3
MAX_MESSAGES_WITHOUT_NAME = 10

NEGATIVE_MARKERS: tuple[str, ...] = (
    "human", "real person", "speak to someone", "talk to someone", "attendant",
    "receptionist", "manager", "useless", "ridiculous", "frustrated",
    "annoyed", "this is not working", "not helping",
)
_NEGATIVE_RE = re.compile(
    "|".join(rf"\b{re.escape(marker)}\b" for marker in NEGATIVE_MARKERS),
    re.IGNORECASE,
)


def tag_sentiment(message: str) -> str:
    """``negative`` for frustration or an explicit request for a person."""
    return "negative" if _NEGATIVE_RE.search(message) else "neutral"


@dataclass
class FallbackDecision:
    needs_human: bool
    reason: str | None = None


class FallbackDetector:
    def __init__(
        self,
        *,
        max_attempts: int = MAX_FALLBACK_ATTEMPTS,
        max_messages_without_name: int = MAX_MESSAGES_WITHOUT_NAME,
    ) -> None:
        self._max_attempts = max_attempts
        self._max_messages = max_messages_without_name

    def check(self, session: Session) -> FallbackDecision:
        context = session.context
        if context.fallback_count >= self._max_attempts:
            reason = f"{context.fallback_count} failed attempts"
        elif context.sentiment == "negative":
            reason = "negative sentiment"
        elif session.message_count > self._max_messages and not session.slots.name:
            reason = f"{session.message_count} messages without a name"
        else:
            return FallbackDecision(needs_human=False)

        logger.info("Handoff for session %s: %s", session.session_id, reason)
        return FallbackDecision(needs_human=True, reason=reason)
