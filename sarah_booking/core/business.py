# sarah_booking/core/business.py
"""
Business calendar for a single US Eastern shop.

Civil-time <-> UTC conversion uses the US DST rule re-derived per year
(second Sunday of March through first Sunday of November), so booking
timestamps never depend on the host's tz database.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Optional
from zoneinfo import ZoneInfo

LOCAL_TZ = ZoneInfo("America/New_York")
UTC = timezone.utc

BUSINESS_OPEN_HOUR = 8
BUSINESS_CLOSE_HOUR = 17

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


class TimeWindow(str, Enum):
    MORNING = "morning"
    MIDDAY = "midday"
    AFTERNOON = "afternoon"

    @property
    def start_hour(self) -> int:
        return ARRIVAL_WINDOWS[self][0]

    @property
    def end_hour(self) -> int:
        return ARRIVAL_WINDOWS[self][1]


# Eastern local hours, contiguous over 08:00-17:00
ARRIVAL_WINDOWS = {
    TimeWindow.MORNING: (8, 11),
    TimeWindow.MIDDAY: (11, 14),
    TimeWindow.AFTERNOON: (14, 17),
}

_WINDOW_ALIASES = {
    "morning": TimeWindow.MORNING,
    "am": TimeWindow.MORNING,
    "early": TimeWindow.MORNING,
    "midday": TimeWindow.MIDDAY,
    "mid-day": TimeWindow.MIDDAY,
    "mid day": TimeWindow.MIDDAY,
    "noon": TimeWindow.MIDDAY,
    "lunch": TimeWindow.MIDDAY,
    "afternoon": TimeWindow.AFTERNOON,
    "pm": TimeWindow.AFTERNOON,
}

_TIMESTAMP_RE = re.compile(
    r"^(\d{4})-(\d{2})-(\d{2})[T ](\d{2}):(\d{2})(?::(\d{2})(?:\.\d+)?)?\s*(Z|[+-]\d{2}:?\d{2})?$"
)


# ---------- DST and offsets ----------

def _first_sunday(year: int, month: int) -> int:
    # isoweekday: Mon=1 .. Sun=7
    return 1 + (7 - date(year, month, 1).isoweekday()) % 7


def dst_transitions_utc(year: int) -> tuple[datetime, datetime]:
    """Naive UTC instants DST starts (02:00 EST) and ends (02:00 EDT) in ``year``."""
    start = datetime(year, 3, _first_sunday(year, 3) + 7, 7)
    end = datetime(year, 11, _first_sunday(year, 11), 6)
    return start, end


def is_dst_in_effect(year: int, month: int, day: int) -> bool:
    """US Eastern DST for a civil date (month is 1-based)."""
    if month < 3 or month > 11:
        return False
    if 3 < month < 11:
        return True

    first_sunday = _first_sunday(year, month)
    if month == 3:
        return day >= first_sunday + 7
    return day < first_sunday


def utc_offset_hours(year: int, month: int, day: int) -> int:
    """Hours to add to Eastern civil time to reach UTC (4 in EDT, 5 in EST)."""
    return 4 if is_dst_in_effect(year, month, day) else 5


def local_hour_to_utc(year: int, month: int, day: int, local_hour: int) -> str:
    """Eastern civil date + whole hour -> ``YYYY-MM-DDTHH:00:00Z``."""
    if not 0 <= local_hour <= 23:
        raise ValueError(f"local_hour must be 0-23, got {local_hour}")
    civil = datetime(year, month, day)
    instant = civil + timedelta(hours=local_hour + utc_offset_hours(year, month, day))
    return instant.strftime("%Y-%m-%dT%H:00:00Z")


def parse_utc_timestamp(value: str) -> datetime:
    """
    Parse a platform timestamp into an aware UTC datetime.
    Accepts a ``Z`` suffix, numeric offsets and 7-digit fractional seconds.
    Naive values are taken as UTC.
    """
    m = _TIMESTAMP_RE.match(value.strip())
    if not m:
        raise ValueError(f"Unrecognized timestamp: {value!r}")
    year, month, day, hour, minute = (int(m.group(i)) for i in range(1, 6))
    second = int(m.group(6) or 0)
    dt = datetime(year, month, day, hour, minute, second, tzinfo=UTC)

    tz = m.group(7)
    if tz and tz != "Z":
        sign = -1 if tz[0] == "-" else 1
        digits = tz[1:].replace(":", "")
        offset = timedelta(hours=int(digits[:2]), minutes=int(digits[2:]))
        dt = dt - sign * offset
    return dt


def utc_to_local(instant: datetime) -> datetime:
    """Aware (or naive UTC) instant -> naive Eastern civil datetime."""
    if instant.tzinfo is not None:
        instant = instant.astimezone(UTC).replace(tzinfo=None)
    dst_start, dst_end = dst_transitions_utc(instant.year)
    if dst_start <= instant < dst_end:
        return instant - timedelta(hours=4)
    return instant - timedelta(hours=5)


def local_now(now_utc: Optional[datetime] = None) -> datetime:
    """Current Eastern wall-clock time as an aware datetime."""
    now_utc = now_utc or datetime.now(tz=UTC)
    return now_utc.astimezone(LOCAL_TZ)


# ---------- Windows ----------

def classify_window(local_hour: int) -> Optional[TimeWindow]:
    for window, (start, end) in ARRIVAL_WINDOWS.items():
        if start <= local_hour < end:
            return window
    return None


def classify_utc_hour(utc_hour: int, offset_hours: int) -> Optional[TimeWindow]:
    return classify_window((utc_hour - offset_hours) % 24)


def parse_window(token: Optional[str]) -> Optional[TimeWindow]:
    """Map a spoken/extracted window ("Morning", "mid-day", "tomorrow afternoon") to a TimeWindow."""
    if not token:
        return None
    t = str(token).strip().lower()
    if t in _WINDOW_ALIASES:
        return _WINDOW_ALIASES[t]
    for window in TimeWindow:
        if window.value in t:
            return window
    if "mid" in t:
        return TimeWindow.MIDDAY
    return None


def window_has_started(window: TimeWindow, now_local: datetime) -> bool:
    return now_local.hour >= window.start_hour


# ---------- Dates ----------

def _weekday_index(token: str) -> Optional[int]:
    t = token
    for prefix in ("next ", "this ", "on "):
        if t.startswith(prefix):
            t = t[len(prefix):]
    t = t.strip().rstrip("s")  # "wednesdays"
    if len(t) < 3:
        return None
    for idx, name in enumerate(WEEKDAYS):
        if name == t or name.startswith(t):
            return idx
    return None


def resolve_target_date(preferred_day: Optional[str], now_local: datetime) -> date:
    """
    Caller's day preference -> a weekday (Mon-Fri) civil date.

    Absent or unrecognized -> tomorrow. "today" only holds before closing.
    A weekday name is the next occurrence strictly after today.
    Weekends roll forward to Monday.
    """
    today = now_local.date()
    tomorrow = today + timedelta(days=1)
    token = (preferred_day or "").strip().lower()

    if not token or token == "tomorrow":
        target = tomorrow
    elif token == "today":
        target = today if now_local.hour < BUSINESS_CLOSE_HOUR else tomorrow
    else:
        idx = _weekday_index(token)
        if idx is None:
            target = tomorrow
        else:
            days_until = (idx - today.weekday()) % 7 or 7
            target = today + timedelta(days=days_until)

    while target.weekday() >= 5:
        target += timedelta(days=1)
    return target


@dataclass(frozen=True)
class BusinessDay:
    date: date
    label: str
    is_today: bool = False

    @property
    def date_str(self) -> str:
        return self.date.isoformat()


def next_business_days(now_local: datetime, count: int = 5) -> list[BusinessDay]:
    """Next ``count`` weekdays starting today; today only counts before closing."""
    days: list[BusinessDay] = []
    today = now_local.date()
    check = today
    while len(days) < count:
        if check.weekday() < 5:
            is_today = check == today
            if not is_today or now_local.hour < BUSINESS_CLOSE_HOUR:
                days.append(BusinessDay(
                    date=check,
                    label="today" if is_today else day_name(check),
                    is_today=is_today,
                ))
        check += timedelta(days=1)
    return days


def day_name(d: date) -> str:
    return WEEKDAYS[d.weekday()].capitalize()


def today_phrase(now_local: datetime) -> str:
    """'Monday, October 19' for the agent's {{today_date}} variable."""
    return f"{day_name(now_local.date())}, {now_local.strftime('%B')} {now_local.day}"


# ---------- Appointment blocks ----------

@dataclass(frozen=True)
class AppointmentBlock:
    date: date
    window: TimeWindow
    start: str
    end: str

    @property
    def arrival_window_start(self) -> str:
        return self.start

    @property
    def arrival_window_end(self) -> str:
        return self.end

    def to_payload(self) -> dict[str, str]:
        return {
            "start": self.start,
            "end": self.end,
            "arrivalWindowStart": self.arrival_window_start,
            "arrivalWindowEnd": self.arrival_window_end,
        }


def appointment_block(target: date, window: TimeWindow) -> AppointmentBlock:
    """The 3-hour arrival block for ``window`` on ``target``, in UTC."""
    return AppointmentBlock(
        date=target,
        window=window,
        start=local_hour_to_utc(target.year, target.month, target.day, window.start_hour),
        end=local_hour_to_utc(target.year, target.month, target.day, window.end_hour),
    )
