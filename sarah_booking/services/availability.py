# sarah_booking/services/availability.py
"""
Offerable {date, window} pairs for the next few business days.

Two data sources are supported: the dispatch capacity endpoint (explicit
availability flags) and appointment density (booked appointments counted
against a per-window ceiling). When the platform can't be reached the
result is degraded: every window is offered and ``degraded`` is set.
"""
from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Iterable, Optional

from sarah_booking.core.business import (
    BusinessDay,
    TimeWindow,
    classify_window,
    local_hour_to_utc,
    local_now,
    next_business_days,
    parse_utc_timestamp,
    utc_to_local,
    window_has_started,
)
from sarah_booking.core.config import settings
from sarah_booking.core.errors import ExternalApiError, log_error
from sarah_booking.core.logging import get_logger
from sarah_booking.schemas.servicetitan import AppointmentRecord, CapacitySlot

logger = get_logger(__name__)

FULLY_BOOKED_MESSAGE = (
    "We're all booked up this week. Can I take your number and have someone "
    "call you when we have an opening?"
)
DEGRADED_MESSAGE = "We've got morning, midday, and afternoon slots available this week. What works best?"


@dataclass
class DayAvailability:
    label: str
    date: date
    windows: list[TimeWindow] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "day": self.label,
            "date": self.date.isoformat(),
            "windows": [w.value for w in self.windows],
        }


@dataclass
class AvailabilityResult:
    days: list[DayAvailability]
    degraded: bool = False

    @property
    def has_availability(self) -> bool:
        return bool(self.days)

    @property
    def next_available(self) -> Optional[DayAvailability]:
        return self.days[0] if self.days else None

    def slots(self) -> list[dict]:
        return [d.to_dict() for d in self.days]

    def slot_text(self, limit: int = 3, separator: str = " - ") -> str:
        """'Monday - morning, midday. Tuesday - afternoon' for the first ``limit`` days."""
        return ". ".join(
            f"{d.label}{separator}{', '.join(w.value for w in d.windows)}"
            for d in self.days[:limit]
        )

    def spoken_summary(self, limit: int = 3) -> str:
        if self.degraded:
            return DEGRADED_MESSAGE
        if not self.days:
            return FULLY_BOOKED_MESSAGE
        return f"I've got {self.slot_text(limit)}. What works best for you?"


# ---------- Pure reducers ----------

def _local_slot(start: str) -> Optional[tuple[date, TimeWindow]]:
    try:
        local = utc_to_local(parse_utc_timestamp(start))
    except ValueError:
        logger.warning("availability_bad_timestamp", start=start)
        return None
    window = classify_window(local.hour)
    if window is None:
        return None
    return local.date(), window


def _assemble(
    open_windows: dict[date, set[TimeWindow]],
    days: list[BusinessDay],
    now_local: datetime,
) -> list[DayAvailability]:
    result: list[DayAvailability] = []
    for day in days:
        windows = [w for w in TimeWindow if w in open_windows.get(day.date, ())]
        if day.is_today:
            windows = [w for w in windows if not window_has_started(w, now_local)]
        if windows:
            result.append(DayAvailability(label=day.label, date=day.date, windows=windows))
    return result


def reduce_capacity(
    slots: Iterable[CapacitySlot],
    days: list[BusinessDay],
    now_local: datetime,
) -> list[DayAvailability]:
    """A window is open when any slot inside it reports open capacity."""
    open_windows: dict[date, set[TimeWindow]] = defaultdict(set)
    for slot in slots:
        if not slot.has_open_capacity:
            continue
        located = _local_slot(slot.start)
        if located:
            open_windows[located[0]].add(located[1])
    return _assemble(open_windows, days, now_local)


def reduce_appointment_density(
    appointments: Iterable[AppointmentRecord],
    days: list[BusinessDay],
    now_local: datetime,
    window_capacity: int,
) -> list[DayAvailability]:
    """A window is open while its booked (non-canceled) appointments stay under ``window_capacity``."""
    booked: dict[tuple[date, TimeWindow], int] = defaultdict(int)
    for appt in appointments:
        if appt.is_canceled:
            continue
        located = _local_slot(appt.start)
        if located:
            booked[located] += 1

    open_windows: dict[date, set[TimeWindow]] = {
        day.date: {w for w in TimeWindow if booked[(day.date, w)] < window_capacity}
        for day in days
    }
    return _assemble(open_windows, days, now_local)


def degraded_days(days: list[BusinessDay], now_local: datetime) -> list[DayAvailability]:
    return _assemble({day.date: set(TimeWindow) for day in days}, days, now_local)


def query_range(days: list[BusinessDay]) -> tuple[str, str]:
    """UTC bounds from local midnight of the first day to local midnight after the last."""
    first = days[0].date
    after_last = days[-1].date + timedelta(days=1)
    return (
        local_hour_to_utc(first.year, first.month, first.day, 0),
        local_hour_to_utc(after_last.year, after_last.month, after_last.day, 0),
    )


# ---------- Resolver ----------

async def get_availability(
    gateway,
    *,
    now_local: Optional[datetime] = None,
    days: Optional[int] = None,
    source: Optional[str] = None,
    window_capacity: Optional[int] = None,
) -> AvailabilityResult:
    now_local = now_local or local_now()
    count = days or settings.AVAILABILITY_DAYS
    source = (source or settings.AVAILABILITY_SOURCE).lower()
    capacity = settings.WINDOW_CAPACITY if window_capacity is None else window_capacity

    business_days = next_business_days(now_local, count)
    start, end = query_range(business_days)

    try:
        if source == "appointments":
            appointments = await gateway.list_appointments(start, end)
            offered = reduce_appointment_density(appointments, business_days, now_local, capacity)
        else:
            slots = await gateway.get_capacity(start, end)
            offered = reduce_capacity(slots, business_days, now_local)
    except ExternalApiError as e:
        log_error(e, {"operation": "get_availability", "source": source})
        return AvailabilityResult(days=degraded_days(business_days, now_local), degraded=True)

    logger.info(
        "availability_resolved",
        source=source,
        range_start=start,
        range_end=end,
        offered_days=len(offered),
    )
    return AvailabilityResult(days=offered)
