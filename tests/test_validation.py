"""Tests for the reference-data catalog and per-turn slot validation."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

from orchestrator.models import FunctionCallResult, SlotSet
from orchestrator.services.functions import CHECK_AVAILABILITY, LIST_PROCEDURES, LIST_UNITS
from orchestrator.services.reference_data import ReferenceDataCache
from orchestrator.services.validation import SlotValidator, available_times

PROCEDURES = [{"name": "Teeth Cleaning"}, {"name": "Whitening"}]
UNITS = [{"name": "Downtown"}, {"name": "Riverside"}]


def _executor(availability=None, *, catalog_ok: bool = True):
    executor = MagicMock()

    def _execute(call):
        if call.name == LIST_PROCEDURES:
            return FunctionCallResult(success=catalog_ok, data=PROCEDURES if catalog_ok else None)
        if call.name == LIST_UNITS:
            return FunctionCallResult(success=catalog_ok, data=UNITS if catalog_ok else None)
        if call.name == CHECK_AVAILABILITY:
            return FunctionCallResult(success=True, data=availability or [])
        raise AssertionError(call.name)

    executor.execute.side_effect = _execute
    return executor


class TestReferenceDataCache:
    def test_catalog_is_cached_within_ttl(self):
        executor = _executor()
        cache = ReferenceDataCache(executor, ttl_seconds=300)
        cache.units()
        cache.units()
        assert executor.execute.call_count == 1

    def test_refetches_after_ttl(self):
        executor = _executor()
        cache = ReferenceDataCache(executor, ttl_seconds=300)
        with patch("orchestrator.services.reference_data.time.monotonic", side_effect=[0.0, 10.0, 400.0, 400.0]):
            cache.units()
            cache.units()
            cache.units()
        assert executor.execute.call_count == 2

    def test_failed_refresh_keeps_previous_copy(self):
        executor = _executor()
        cache = ReferenceDataCache(executor, ttl_seconds=0)
        assert cache.units() == UNITS
        executor.execute.side_effect = lambda call: FunctionCallResult(success=False, error_message="down")
        assert cache.units() == UNITS

    def test_failed_refresh_is_not_retried_until_retry_window_passes(self):
        executor = _executor(catalog_ok=False)
        cache = ReferenceDataCache(executor, ttl_seconds=300, retry_seconds=30)
        with patch("orchestrator.services.reference_data.time.monotonic", side_effect=[0.0, 10.0, 40.0, 40.0]):
            assert cache.units() == []
            assert cache.units() == []
            assert cache.units() == []
        assert executor.execute.call_count == 2

    def test_matching_is_case_insensitive_substring(self):
        cache = ReferenceDataCache(_executor())
        assert cache.match_procedure("cleaning") == "Teeth Cleaning"
        assert cache.match_unit("RIVERSIDE unit") == "Riverside"
        assert cache.match_unit("Uptown") is None


class TestAvailableTimes:
    def test_accepts_list_or_wrapped_payload(self):
        payload = [
            {"dateTime": "2025-12-10T09:00:00", "available": True},
            {"dateTime": "2025-12-10T10:00:00", "available": False},
        ]
        assert available_times(payload) == ["09:00"]
        assert available_times({"slots": payload}) == ["09:00"]
        assert available_times("nonsense") == []


class TestSlotValidator:
    def _validator(self, executor):
        return SlotValidator(ReferenceDataCache(executor), executor)

    def test_normalizes_and_flags_valid_values(self):
        outcome = self._validator(_executor()).validate(
            SlotSet(procedure="cleaning", unit="downtown"),
        )
        assert outcome.slots.procedure == "Teeth Cleaning"
        assert outcome.slots.procedure_validated
        assert outcome.slots.unit == "Downtown"
        assert outcome.slots.unit_validated

    def test_unknown_value_is_flagged_invalid_with_note(self):
        outcome = self._validator(_executor()).validate(SlotSet(procedure="Botox"))
        assert outcome.slots.procedure == "Botox"
        assert not outcome.slots.procedure_validated
        assert "NOT offered" in outcome.summary

    def test_catalog_outage_leaves_flags_unset(self):
        outcome = self._validator(_executor(catalog_ok=False)).validate(SlotSet(unit="Downtown"))
        assert not outcome.slots.unit_validated
        assert outcome.notes == []

    def test_date_validated_when_any_time_available(self):
        executor = _executor([{"dateTime": "2025-12-10T09:00:00", "available": True}])
        outcome = self._validator(executor).validate(
            SlotSet(unit="Downtown", unit_validated=True, date="2025-12-10"),
        )
        assert outcome.slots.date_validated
        assert "09:00" in outcome.summary

    def test_already_validated_fields_are_not_rechecked(self):
        executor = _executor()
        self._validator(executor).validate(SlotSet(
            procedure="Whitening", procedure_validated=True,
            unit="Downtown", unit_validated=True,
            date="2025-12-10", date_validated=True,
        ))
        executor.execute.assert_not_called()
