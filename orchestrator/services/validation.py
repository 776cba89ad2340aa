"""Per-turn validation of collected slots against backend reference data."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from orchestrator.models import FunctionCall, SlotSet
from orchestrator.services.functions import CHECK_AVAILABILITY, FunctionExecutor
from orchestrator.services.reference_data import ReferenceDataCache

logger = logging.getLogger(__name__)


@dataclass
class ValidationOutcome:
    slots: SlotSet
    notes: list[str] = field(default_factory=list)

    @property
    def summary(self) -> str:
        return "\n".join(f"- {note}" for note in self.notes)


def available_times(data: object) -> list[str]:
    """``HH:MM`` of every slot marked available in an availability payload."""
    if isinstance(data, dict):
        data = data.get("slots", [])
    if not isinstance(data, list):
        return []
    times: list[str] = []
    for slot in data:
        if not isinstance(slot, dict) or not slot.get("available"):
            continue
        date_time = str(slot.get("dateTime", ""))
        if "T" in date_time:
            times.append(date_time.split("T", 1)[1][:5])
    return times


class SlotValidator:
    """Normalizes procedure and unit names and checks the date has availability.

    Only fields not yet validated are checked, so a steady conversation
    costs at most one availability call per new date.
    """

    def __init__(self, reference: ReferenceDataCache, executor: FunctionExecutor) -> None:
        self._reference = reference
        self._executor = executor

    def validate(self, slots: SlotSet) -> ValidationOutcome:
        slots = slots.model_copy()
        outcome = ValidationOutcome(slots=slots)

        if slots.procedure and not slots.procedure_validated:
            self._check_reference(
                outcome, "procedure", self._reference.procedures(),
                self._reference.match_procedure,
            )
        if slots.unit and not slots.unit_validated:
            self._check_reference(
                outcome, "unit", self._reference.units(),
                self._reference.match_unit,
            )
        if slots.unit_validated and slots.date and not slots.date_validated:
            self._check_date(outcome)
        return outcome

    @staticmethod
    def _check_reference(outcome, kind, options, matcher) -> None:
        slots = outcome.slots
        value = getattr(slots, kind)
        if not options:
            # Catalog unavailable: leave the flag unset and try next turn
            return
        canonical = matcher(value)
        if canonical:
            setattr(slots, kind, canonical)
            setattr(slots, f"{kind}_validated", True)
            outcome.notes.append(f"{kind.capitalize()} \"{canonical}\" is valid.")
        else:
            setattr(slots, f"{kind}_validated", False)
            outcome.notes.append(
                f"{kind.capitalize()} \"{value}\" is NOT offered; ask the patient to pick from the list."
            )
            logger.info("Invalid %s: %r", kind, value)

    def _check_date(self, outcome: ValidationOutcome) -> None:
        slots = outcome.slots
        result = self._executor.execute(FunctionCall(
            name=CHECK_AVAILABILITY,
            arguments={"unit": slots.unit, "date": slots.date},
        ))
        if not result.success:
            logger.warning("Availability check failed: %s", result.error_message)
            return
        times = available_times(result.data)
        if times:
            slots.date_validated = True
            outcome.notes.append(
                f"Available times on {slots.date} at {slots.unit}: {', '.join(times)}."
            )
        else:
            outcome.notes.append(f"No available times on {slots.date} at {slots.unit}.")
