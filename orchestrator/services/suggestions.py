"""Alternative time suggestions when the requested slot is taken."""

from __future__ import annotations

from orchestrator.services.validation import available_times


def _minutes(hhmm: str) -> int | None:
    try:
        hours, minutes = hhmm.split(":", 1)
        return int(hours) * 60 + int(minutes[:2])
    except ValueError:
        return None


def find_closest_time_slots(
    availability: object, requested_time: str, limit: int = 3,
) -> list[str]:
    """Available ``HH:MM`` times closest to *requested_time*.

    Ordered by absolute minute distance, ties broken by the earlier time.

    >>> slots = [{"dateTime": f"2025-12-10T{t}:00", "available": True}
    ...          for t in ("09:00", "09:30", "14:00")]
    >>> find_closest_time_slots(slots, "13:45")
    ['14:00', '09:30', '09:00']
    """
    target = _minutes(requested_time)
    candidates: dict[str, int] = {}
    for hhmm in available_times(availability):
        minutes = _minutes(hhmm)
        if minutes is not None:
            candidates[hhmm] = minutes
    if target is None:
        return sorted(candidates, key=candidates.__getitem__)[:limit]
    ranked = sorted(candidates, key=lambda t: (abs(candidates[t] - target), candidates[t]))
    return ranked[:limit]


def is_time_available(availability: object, requested_time: str) -> bool:
    return requested_time[:5] in available_times(availability)
