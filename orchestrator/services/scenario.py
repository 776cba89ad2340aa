"""Conversation scenario detection.

``detect_scenario`` is a pure function of the session and the turn's
extraction result.  Rules, first match wins:

1. all five booking slots known and (confident extraction or explicit
   confirmation) → ``scheduling`` when explicitly confirmed, else
   ``confirmation``
2. FAQ matches and a low-confidence extraction → ``faq``
3. first two messages, no name or procedure, low confidence → ``greeting``
4. first three messages and a confident extraction → ``initial-message``
5. otherwise → ``data-collection``

The session passed in already contains the current user message.
"""

from __future__ import annotations

import re

from orchestrator.config import SCENARIO_CONFIDENCE_THRESHOLD
from orchestrator.models import ExtractionResult, Scenario, Session

CONFIRMATION_PHRASES: tuple[str, ...] = (
    "yes", "yeah", "yep", "yup", "sure", "ok", "okay", "confirm", "confirmed",
    "correct", "that's right", "thats right", "exactly", "perfect", "sounds good",
    "go ahead", "book it", "please book", "all good", "great",
)

DENIAL_PHRASES: tuple[str, ...] = (
    "no", "nope", "not", "don't", "dont", "wrong", "incorrect", "change",
    "instead", "cancel", "wait",
)


def _phrase_pattern(phrases: tuple[str, ...]) -> re.Pattern[str]:
    alternatives = "|".join(re.escape(p) for p in sorted(phrases, key=len, reverse=True))
    return re.compile(rf"(?<![\w'])(?:{alternatives})(?![\w'])", re.IGNORECASE)


_CONFIRMATION_RE = _phrase_pattern(CONFIRMATION_PHRASES)
_DENIAL_RE = _phrase_pattern(DENIAL_PHRASES)


def is_explicit_denial(message: str) -> bool:
    return bool(_DENIAL_RE.search(message))


def is_explicit_confirmation(message: str) -> bool:
    """Affirmative wording with no negation or correction in the same message.

    Phrases match on word boundaries, so "ok" does not fire inside "book".
    """
    return bool(_CONFIRMATION_RE.search(message)) and not is_explicit_denial(message)


def _last_user_message(session: Session) -> str:
    for message in reversed(session.messages):
        if message.role == "user":
            return message.content
    return ""


def detect_scenario(
    session: Session,
    extraction: ExtractionResult,
    *,
    confidence_threshold: float = SCENARIO_CONFIDENCE_THRESHOLD,
) -> Scenario:
    message = _last_user_message(session)
    slots = session.slots
    confident = extraction.confidence > confidence_threshold
    confirmed = is_explicit_confirmation(message)

    if slots.is_complete() and (confident or confirmed):
        return Scenario.SCHEDULING if confirmed else Scenario.CONFIRMATION

    faq_hits = bool(extraction.rag_context and extraction.rag_context.faq_results)
    if faq_hits and extraction.confidence < confidence_threshold:
        return Scenario.FAQ

    count = session.message_count
    if (
        count <= 2
        and not slots.name
        and not slots.procedure
        and extraction.confidence < confidence_threshold
    ):
        return Scenario.GREETING

    if count <= 3 and extraction.confidence >= confidence_threshold:
        return Scenario.INITIAL_MESSAGE

    return Scenario.DATA_COLLECTION
