"""Picks explicit ``Date:`` / ``Time:`` lines out of a free-text LLM reply."""

from __future__ import annotations

import re
from datetime import datetime

_ISO_DATE_RE = re.compile(r"\bDate\W*(\d{4}-\d{2}-\d{2})", re.IGNORECASE)
_DMY_DATE_RE = re.compile(r"\bDate\W*(\d{1,2})/(\d{1,2})/(\d{4})", re.IGNORECASE)
_LONG_DATE_RE = re.compile(r"\bDate\W*(\d{1,2} [A-Za-z]+ \d{4})", re.IGNORECASE)
_TIME_RE = re.compile(r"\bTime\W*(\d{1,2}):(\d{2})", re.IGNORECASE)


def parse_slots_from_response(text: str) -> dict[str, str]:
    """``{"date": "YYYY-MM-DD", "time": "HH:MM"}`` for whatever the reply states."""
    found: dict[str, str] = {}

    iso = _ISO_DATE_RE.search(text)
    dmy = _DMY_DATE_RE.search(text)
    long_form = _LONG_DATE_RE.search(text)
    if iso:
        found["date"] = iso.group(1)
    elif dmy:
        day, month, year = (int(g) for g in dmy.groups())
        if 1 <= day <= 31 and 1 <= month <= 12:
            found["date"] = f"{year:04d}-{month:02d}-{day:02d}"
    elif long_form:
        try:
            parsed = datetime.strptime(long_form.group(1), "%d %B %Y")
        except ValueError:
            parsed = None
        if parsed:
            found["date"] = parsed.strftime("%Y-%m-%d")

    clock = _TIME_RE.search(text)
    if clock:
        hours, minutes = int(clock.group(1)), int(clock.group(2))
        if hours < 24 and minutes < 60:
            found["time"] = f"{hours:02d}:{minutes:02d}"
    return found
