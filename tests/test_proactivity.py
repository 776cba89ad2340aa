"""Tests for the proactive call rules."""

from __future__ import annotations

from orchestrator.models import Scenario, SlotSet
from orchestrator.services.functions import (
    CHECK_AVAILABILITY,
    CHECK_DUPLICATE,
    CREATE_APPOINTMENT,
    LIST_PROCEDURES,
    LIST_UNITS,
    VALIDATE_PROCEDURE,
    VALIDATE_UNIT,
)
from orchestrator.services.proactivity import booking_date_time, forced_calls

FULL_SLOTS = SlotSet(
    name="Ana Lima", procedure="Cleaning", unit="Downtown", date="2025-12-10", time="14:00",
)


def _names(calls):
    return [call.name for call in calls]


class TestGreeting:
    def test_lists_procedures(self):
        assert _names(forced_calls(Scenario.GREETING, SlotSet())) == [LIST_PROCEDURES]


class TestConfirmation:
    def test_revalidates_even_when_already_validated(self):
        slots = FULL_SLOTS.model_copy(update={
            "procedure_validated": True, "unit_validated": True, "date_validated": True,
        })
        calls = forced_calls(Scenario.CONFIRMATION, slots)
        assert _names(calls) == [VALIDATE_PROCEDURE, VALIDATE_UNIT, CHECK_AVAILABILITY, CHECK_DUPLICATE]
        assert calls[0].arguments == {"name": "Cleaning"}
        assert calls[2].arguments == {"unit": "Downtown", "date": "2025-12-10"}

    def test_duplicate_check_uses_combined_date_time(self):
        calls = forced_calls(Scenario.CONFIRMATION, FULL_SLOTS)
        assert calls[3].arguments == {
            "patient_name": "Ana Lima", "date_time": "2025-12-10T14:00:00", "unit": "Downtown",
        }

    def test_duplicate_check_includes_email_when_known(self):
        slots = FULL_SLOTS.model_copy(update={"email": "ana@example.com"})
        calls = forced_calls(Scenario.CONFIRMATION, slots)
        assert calls[3].arguments["email"] == "ana@example.com"

    def test_no_availability_check_without_time(self):
        slots = SlotSet(name="Ana", procedure="Cleaning", unit="Downtown", date="2025-12-10")
        assert _names(forced_calls(Scenario.CONFIRMATION, slots)) == [VALIDATE_PROCEDURE, VALIDATE_UNIT]


class TestScheduling:
    def test_books_with_complete_slots(self):
        calls = forced_calls(Scenario.SCHEDULING, FULL_SLOTS, session_id="s-1")
        assert _names(calls) == [CREATE_APPOINTMENT]
        assert calls[0].arguments == {
            "patient_name": "Ana Lima",
            "procedure": "Cleaning",
            "unit": "Downtown",
            "date_time": "2025-12-10T14:00:00",
            "session_id": "s-1",
        }

    def test_email_omitted_rather_than_empty(self):
        slots = FULL_SLOTS.model_copy(update={"email": ""})
        assert "email" not in forced_calls(Scenario.SCHEDULING, slots)[0].arguments

    def test_incomplete_slots_book_nothing(self):
        slots = FULL_SLOTS.model_copy(update={"time": None})
        assert forced_calls(Scenario.SCHEDULING, slots) == []


class TestDataCollection:
    def test_lists_units_when_unit_missing(self):
        slots = SlotSet(name="Ana", procedure="Cleaning")
        assert _names(forced_calls(Scenario.DATA_COLLECTION, slots)) == [LIST_UNITS]

    def test_nothing_when_unit_known(self):
        slots = SlotSet(name="Ana", procedure="Cleaning", unit="Downtown")
        assert forced_calls(Scenario.DATA_COLLECTION, slots) == []

    def test_nothing_without_procedure(self):
        assert forced_calls(Scenario.DATA_COLLECTION, SlotSet(name="Ana")) == []


class TestOtherScenarios:
    def test_faq_and_initial_message_force_nothing(self):
        assert forced_calls(Scenario.FAQ, FULL_SLOTS) == []
        assert forced_calls(Scenario.INITIAL_MESSAGE, SlotSet(name="Ana")) == []

    def test_booking_date_time(self):
        assert booking_date_time(FULL_SLOTS) == "2025-12-10T14:00:00"
