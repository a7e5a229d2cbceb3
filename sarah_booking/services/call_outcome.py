# sarah_booking/services/call_outcome.py
"""Lead / non-lead framing for post-call notifications. No effect on booking."""
from __future__ import annotations

import re
from typing import Any, Mapping, Optional

from sarah_booking.core.config import settings
from sarah_booking.schemas.booking import clean_value, parse_flag

NON_LEAD_PHRASES = (
    "wrong number",
    "misdial",
    "mis-dial",
    "dialed by mistake",
    "called by mistake",
    "dialed the wrong",
)

_SERVICE_RE = re.compile(
    r"\b(leak\w*|drip\w*|clog\w*|drain\w*|sewer|toilet|faucet|water heater|sump|pipe\w*|"
    r"backup|backed up|garbage disposal|plumb\w*|flood\w*|burst)\b",
    re.IGNORECASE,
)

MIN_ISSUE_LENGTH = 15

_CONFIRMED_KEYS = ("confirmed", "should_book", "booking_confirmed", "appointment_booked", "booked")
_SCHEDULE_KEYS = ("street", "day", "appointment_day", "time_window")


def _has_phrase(text: str, phrases) -> bool:
    lowered = text.lower()
    return any(p in lowered for p in phrases)


def is_lead(
    summary: Optional[str],
    transcript: Optional[str],
    duration_ms: Optional[int],
    fields: Optional[Mapping[str, Any]] = None,
) -> bool:
    """First matching rule wins."""
    summary = summary or ""
    transcript = transcript or ""
    fields = fields or {}
    duration_ms = duration_ms or 0

    if _has_phrase(summary, NON_LEAD_PHRASES) or _has_phrase(transcript, NON_LEAD_PHRASES):
        return False

    if any(parse_flag(fields.get(k)) for k in _CONFIRMED_KEYS):
        return True
    if any(clean_value(fields.get(k)) for k in _SCHEDULE_KEYS):
        return True

    issue = clean_value(fields.get("issue")) or ""
    if len(issue) >= MIN_ISSUE_LENGTH:
        return True

    if _SERVICE_RE.search(transcript):
        return True

    if duration_ms < settings.SHORT_CALL_MS and not issue:
        return False

    return duration_ms >= settings.LEAD_MIN_DURATION_MS
