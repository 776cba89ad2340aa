"""Backend calls that a scenario requires regardless of what the model would do.

When ``forced_calls`` returns anything, the LLM is skipped for the turn
and the calls go straight to the executor and synthesizer.
"""

from __future__ import annotations

from orchestrator.models import FunctionCall, Scenario, SlotSet
from orchestrator.services.functions import (
    CHECK_AVAILABILITY,
    CHECK_DUPLICATE,
    CREATE_APPOINTMENT,
    LIST_PROCEDURES,
    LIST_UNITS,
    VALIDATE_PROCEDURE,
    VALIDATE_UNIT,
)


def booking_date_time(slots: SlotSet) -> str:
    """``YYYY-MM-DDTHH:MM:00`` from the date and time slots."""
    return f"{slots.date}T{slots.time}:00"


def forced_calls(
    scenario: Scenario, slots: SlotSet, *, session_id: str | None = None,
) -> list[FunctionCall]:
    """Deterministic, side-effect-free list of calls for this turn."""
    if scenario == Scenario.GREETING:
        return [FunctionCall(name=LIST_PROCEDURES)]

    if scenario == Scenario.CONFIRMATION:
        # Validation flags from earlier turns are not trusted
        calls: list[FunctionCall] = []
        if slots.procedure:
            calls.append(FunctionCall(name=VALIDATE_PROCEDURE, arguments={"name": slots.procedure}))
        if slots.unit:
            calls.append(FunctionCall(name=VALIDATE_UNIT, arguments={"name": slots.unit}))
        if slots.unit and slots.date and slots.time:
            calls.append(FunctionCall(
                name=CHECK_AVAILABILITY,
                arguments={"unit": slots.unit, "date": slots.date},
            ))
            duplicate_args = {
                "patient_name": slots.name,
                "date_time": booking_date_time(slots),
                "unit": slots.unit,
            }
            if slots.email:
                duplicate_args["email"] = slots.email
            calls.append(FunctionCall(name=CHECK_DUPLICATE, arguments=duplicate_args))
        return calls

    if scenario == Scenario.SCHEDULING and slots.is_complete():
        arguments = {
            "patient_name": slots.name,
            "procedure": slots.procedure,
            "unit": slots.unit,
            "date_time": booking_date_time(slots),
        }
        if session_id:
            arguments["session_id"] = session_id
        if slots.email:
            arguments["email"] = slots.email
        return [FunctionCall(name=CREATE_APPOINTMENT, arguments=arguments)]

    if scenario == Scenario.DATA_COLLECTION and slots.name and slots.procedure and not slots.unit:
        return [FunctionCall(name=LIST_UNITS)]

    return []
