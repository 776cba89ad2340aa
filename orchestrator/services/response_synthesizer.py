"""Turns executed backend calls into the reply the patient sees.

Outcomes with a known shape are answered from fixed templates so that
options, dates and confirmation numbers always come straight from the
backend.  Checked in this order, first match wins:

  a. invalid procedure / unit    → the authoritative list, nothing else
  b. successful listing          → bulleted list + question
  c. requested time unavailable  → up to 3 closest available times
  d. appointment created         → confirmation template
  e. duplicate booking           → pick another time / date / cancel
  -  booking rejected            → the backend's reason + pick another slot
  -  backend unreachable         → generic apology

Anything else goes to the LLM with a context block made only of the
results already obtained.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage

from orchestrator.config import DUPLICATE_MARKERS
from orchestrator.models import ExecutedCall, FunctionCall, SlotSet
from orchestrator.prompts import (
    APOLOGY_RESPONSE,
    BOOKING_CONFIRMED_TEMPLATE,
    BOOKING_REJECTED_TEMPLATE,
    DUPLICATE_BOOKING_RESPONSE,
    FORBIDDEN_PHRASES,
    INVALID_REFERENCE_NO_LIST,
    INVALID_REFERENCE_TEMPLATE,
    LISTING_HEADERS,
    LISTING_QUESTIONS,
    NO_AVAILABILITY_TEMPLATE,
    SYNTHESIS_PROMPT,
    SYSTEM_PROMPT,
    UNAVAILABLE_SLOT_TEMPLATE,
)
from orchestrator.services.functions import (
    CHECK_AVAILABILITY,
    CHECK_DUPLICATE,
    CREATE_APPOINTMENT,
    LIST_PROCEDURES,
    LIST_UNITS,
    VALIDATE_PROCEDURE,
    VALIDATE_UNIT,
    FunctionExecutor,
)
from orchestrator.services.metrics import metrics
from orchestrator.services.suggestions import find_closest_time_slots, is_time_available

logger = logging.getLogger(__name__)

# kind → (validation function, listing function)
_REFERENCE_KINDS: dict[str, tuple[str, str]] = {
    "procedure": (VALIDATE_PROCEDURE, LIST_PROCEDURES),
    "unit": (VALIDATE_UNIT, LIST_UNITS),
}
_MAX_RESULT_CHARS = 1500


@dataclass
class SynthesisResult:
    text: str
    executed: list[ExecutedCall]
    booking: dict[str, Any] | None = None
    invalid_fields: list[str] = field(default_factory=list)
    used_llm: bool = False


# ── Formatting helpers ───────────────────────────────────────────────


def format_options(kind: str, options: list[dict[str, Any]]) -> str:
    lines = []
    for option in options:
        name = option.get("name")
        if not name:
            continue
        if kind == "procedure" and option.get("durationMinutes"):
            lines.append(f"• **{name}** ({option['durationMinutes']} minutes)")
        elif kind == "unit" and option.get("address"):
            lines.append(f"• **{name}** - {option['address']}")
        else:
            lines.append(f"• **{name}**")
    return "\n".join(lines)


def _find(executed: list[ExecutedCall], name: str) -> ExecutedCall | None:
    for item in executed:
        if item.call.name == name:
            return item
    return None


def _is_rejection(item: ExecutedCall) -> bool:
    """A failure the backend answered with its own reason."""
    result = item.result
    return not result.success and not result.transport_error and bool(result.error_message)


def _split_date_time(date_time: str | None) -> tuple[str, str]:
    if not date_time or "T" not in date_time:
        return date_time or "", ""
    day, clock = date_time.split("T", 1)
    return day, clock[:5]


class ResponseSynthesizer:
    def __init__(
        self,
        executor: FunctionExecutor,
        llm: BaseChatModel,
        *,
        duplicate_markers: list[str] | None = None,
    ) -> None:
        self._executor = executor
        self._llm = llm
        self._duplicate_markers = [
            m.lower() for m in (duplicate_markers or DUPLICATE_MARKERS)
        ]

    def respond(
        self, executed: list[ExecutedCall], user_message: str, slots: SlotSet,
    ) -> SynthesisResult:
        executed = list(executed)

        invalid = self._invalid_references(executed, slots)
        if invalid is not None:
            return invalid

        listing = self._listing_response(executed)
        if listing is not None:
            return SynthesisResult(text=listing, executed=executed)

        unavailable = self._unavailable_slot_response(executed, slots)
        if unavailable is not None:
            return SynthesisResult(text=unavailable, executed=executed)

        booking = _find(executed, CREATE_APPOINTMENT)
        if booking is not None and booking.result.success:
            return self._booking_confirmation(booking, executed)

        if self._is_duplicate(executed):
            logger.info("Duplicate booking detected; offering alternatives")
            return SynthesisResult(
                text=DUPLICATE_BOOKING_RESPONSE.format(
                    patient=slots.name or "this patient", unit=slots.unit or "this unit",
                ),
                executed=executed,
            )

        if booking is not None and _is_rejection(booking):
            logger.info("Booking rejected by the backend: %s", booking.result.error_message)
            return SynthesisResult(
                text=BOOKING_REJECTED_TEMPLATE.format(
                    error=booking.result.error_message.strip(),
                ),
                executed=executed,
            )

        if executed and all(item.result.transport_error for item in executed):
            logger.warning(
                "Backend unreachable for all %d function calls: %s",
                len(executed), [item.call.name for item in executed],
            )
            return SynthesisResult(text=APOLOGY_RESPONSE, executed=executed)

        return SynthesisResult(
            text=self._phrase_with_llm(executed, user_message, slots),
            executed=executed,
            used_llm=True,
        )

    # ── a. invalid reference data ────────────────────────────────────

    def _invalid_references(
        self, executed: list[ExecutedCall], slots: SlotSet,
    ) -> SynthesisResult | None:
        paragraphs: list[str] = []
        invalid_fields: list[str] = []
        for kind, (validate_name, list_name) in _REFERENCE_KINDS.items():
            check = _find(executed, validate_name)
            if check is None or not isinstance(check.result.data, dict):
                continue
            if check.result.data.get("exists") is not False:
                continue

            invalid_fields.append(kind)
            value = check.call.arguments.get("name") or getattr(slots, kind) or ""
            listing = _find(executed, list_name)
            if listing is None:
                # Fetch the authoritative list rather than letting anyone guess
                listing = ExecutedCall(
                    call=FunctionCall(name=list_name),
                    result=self._executor.execute(FunctionCall(name=list_name)),
                )
                executed.append(listing)

            options = listing.result.data if listing.result.success else None
            if isinstance(options, list) and options:
                paragraphs.append(INVALID_REFERENCE_TEMPLATE.format(
                    value=value, kind=kind, options=format_options(kind, options),
                ))
            else:
                paragraphs.append(INVALID_REFERENCE_NO_LIST.format(value=value, kind=kind))

        if not invalid_fields:
            return None
        return SynthesisResult(
            text="\n\n".join(paragraphs), executed=executed, invalid_fields=invalid_fields,
        )

    # ── b. listings ──────────────────────────────────────────────────

    @staticmethod
    def _listing_response(executed: list[ExecutedCall]) -> str | None:
        blocks: list[str] = []
        questions: list[str] = []
        for kind, (_, list_name) in _REFERENCE_KINDS.items():
            listing = _find(executed, list_name)
            if listing is None or not listing.result.success:
                continue
            if not isinstance(listing.result.data, list) or not listing.result.data:
                continue
            blocks.append(
                f"{LISTING_HEADERS[kind]}\n\n{format_options(kind, listing.result.data)}"
            )
            questions.append(LISTING_QUESTIONS[kind])
        if not blocks:
            return None
        return "\n\n".join(blocks) + "\n\n" + questions[0]

    # ── c. unavailable slot ──────────────────────────────────────────

    @staticmethod
    def _unavailable_slot_response(
        executed: list[ExecutedCall], slots: SlotSet,
    ) -> str | None:
        check = _find(executed, CHECK_AVAILABILITY)
        if check is None or not check.result.success or not slots.time:
            return None
        if is_time_available(check.result.data, slots.time):
            return None

        date = check.call.arguments.get("date") or slots.date or ""
        unit = check.call.arguments.get("unit") or slots.unit or ""
        alternatives = find_closest_time_slots(check.result.data, slots.time)
        if not alternatives:
            return NO_AVAILABILITY_TEMPLATE.format(date=date, unit=unit)
        return UNAVAILABLE_SLOT_TEMPLATE.format(
            time=slots.time, date=date, unit=unit,
            options="\n".join(f"• {t}" for t in alternatives),
        )

    # ── d / e. booking outcome ───────────────────────────────────────

    @staticmethod
    def _booking_confirmation(
        booking: ExecutedCall, executed: list[ExecutedCall],
    ) -> SynthesisResult:
        data = booking.result.data if isinstance(booking.result.data, dict) else {}
        args = booking.call.arguments
        date, time = _split_date_time(data.get("dateTime") or args.get("date_time"))
        text = BOOKING_CONFIRMED_TEMPLATE.format(
            patient=data.get("patientName") or args.get("patient_name", ""),
            procedure=data.get("procedure") or args.get("procedure", ""),
            unit=data.get("unit") or args.get("unit", ""),
            date=date,
            time=time,
            confirmation_id=data.get("id", "-"),
        )
        logger.info("Appointment %s created", data.get("id"))
        return SynthesisResult(text=text, executed=executed, booking={**args, **data})

    def _is_duplicate(self, executed: list[ExecutedCall]) -> bool:
        booking = _find(executed, CREATE_APPOINTMENT)
        if booking is not None and not booking.result.success:
            error = (booking.result.error_message or "").lower()
            if any(marker in error for marker in self._duplicate_markers):
                return True
        check = _find(executed, CHECK_DUPLICATE)
        return bool(
            check is not None
            and check.result.success
            and isinstance(check.result.data, dict)
            and check.result.data.get("duplicateExists")
        )

    # ── f. LLM phrasing ──────────────────────────────────────────────

    def _phrase_with_llm(
        self, executed: list[ExecutedCall], user_message: str, slots: SlotSet,
    ) -> str:
        lines = []
        for item in executed:
            payload = json.dumps(item.result.data, ensure_ascii=False, default=str)
            lines.append(
                f"- {item.call.name}({json.dumps(item.call.arguments, ensure_ascii=False)}): "
                f"success={item.result.success}; data={payload[:_MAX_RESULT_CHARS]}"
                + (f"; error={item.result.error_message}" if item.result.error_message else "")
            )
        known = slots.known()
        prompt = SYNTHESIS_PROMPT.format(
            results="\n".join(lines) or "(no results)",
            message=user_message,
            slots="\n".join(f"- {k}: {v}" for k, v in known.items()) or "(none)",
            forbidden=", ".join(f'"{p}"' for p in FORBIDDEN_PHRASES),
        )
        with metrics.track("anthropic", "synthesize"):
            response = self._llm.invoke([
                SystemMessage(content=SYSTEM_PROMPT),
                HumanMessage(content=prompt),
            ])
        return message_text(response)


def message_text(message: Any) -> str:
    """Plain text from an AI message whose content may be a list of blocks."""
    content = getattr(message, "content", message)
    if isinstance(content, list):
        parts = [
            block.get("text", "") if isinstance(block, dict) else str(block)
            for block in content
        ]
        return "".join(parts).strip()
    return str(content).strip()
