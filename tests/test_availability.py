"""
Tests for the availability resolver (capacity and appointment-density modes).
"""

from datetime import date

import httpx
import pytest

from sarah_booking.core.business import TimeWindow
from sarah_booking.core.config import settings
from sarah_booking.schemas.servicetitan import AppointmentRecord, CapacitySlot
from sarah_booking.services.availability import (
    DEGRADED_MESSAGE,
    FULLY_BOOKED_MESSAGE,
    get_availability,
)
from sarah_booking.services.servicetitan import ServiceTitanClient


def _slot(start, available=True, **extra):
    return CapacitySlot.model_validate({"start": start, "end": start, "isAvailable": available, **extra})


def _appt(appt_id, start, status="Scheduled"):
    return AppointmentRecord.model_validate({"id": appt_id, "start": start, "status": status})


@pytest.mark.unit
class TestCapacityMode:
    @pytest.mark.asyncio
    async def test_queries_whole_span_once(self, fake_st, now_local):
        await get_availability(fake_st, now_local=now_local, source="capacity")
        assert fake_st.called("get_capacity") == 1
        # Mon 2025-03-03 00:00 EST through Sat 2025-03-08 00:00 EST
        assert fake_st.calls[0][1:] == ("2025-03-03T05:00:00Z", "2025-03-08T05:00:00Z")

    @pytest.mark.asyncio
    async def test_reduces_slots_to_windows(self, fake_st, now_local):
        fake_st.capacity = [
            _slot("2025-03-03T13:00:00Z"),                   # today morning, already started
            _slot("2025-03-03T19:00:00Z"),                   # today afternoon
            _slot("2025-03-04T13:00:00Z", available=False),  # Tue morning, full
            _slot("2025-03-04T16:00:00Z"),                   # Tue midday
            _slot("2025-03-04T16:30:00Z"),                   # same window twice
            _slot("2025-03-05T23:00:00Z"),                   # Wed 18:00 local, outside hours
            _slot("2025-03-06T13:00:00Z", openSlots=0),      # Thu morning, no open slots
        ]
        result = await get_availability(fake_st, now_local=now_local, source="capacity")

        assert not result.degraded
        assert [(d.label, d.date, d.windows) for d in result.days] == [
            ("today", date(2025, 3, 3), [TimeWindow.AFTERNOON]),
            ("Tuesday", date(2025, 3, 4), [TimeWindow.MIDDAY]),
        ]
        assert result.spoken_summary() == "I've got today - afternoon. Tuesday - midday. What works best for you?"

    @pytest.mark.asyncio
    async def test_windows_come_back_in_day_order(self, fake_st, now_local):
        fake_st.capacity = [
            _slot("2025-03-05T19:00:00Z"),
            _slot("2025-03-05T13:00:00Z"),
            _slot("2025-03-05T16:00:00Z"),
        ]
        result = await get_availability(fake_st, now_local=now_local, source="capacity")
        assert result.days[0].windows == [TimeWindow.MORNING, TimeWindow.MIDDAY, TimeWindow.AFTERNOON]
        assert result.slots() == [{
            "day": "Wednesday", "date": "2025-03-05", "windows": ["morning", "midday", "afternoon"],
        }]

    @pytest.mark.asyncio
    async def test_zero_capacity_is_empty_not_error(self, fake_st, now_local):
        fake_st.capacity = [_slot("2025-03-04T13:00:00Z", available=False)]
        result = await get_availability(fake_st, now_local=now_local, source="capacity")
        assert result.days == []
        assert not result.has_availability
        assert not result.degraded
        assert result.spoken_summary() == FULLY_BOOKED_MESSAGE

    @pytest.mark.asyncio
    async def test_summary_names_at_most_three_days(self, fake_st, now_local):
        fake_st.capacity = [_slot(f"2025-03-0{d}T19:00:00Z") for d in range(4, 8)]
        result = await get_availability(fake_st, now_local=now_local, source="capacity")
        assert len(result.days) == 4
        assert "Friday" not in result.spoken_summary()

    @pytest.mark.asyncio
    async def test_daylight_time_slots(self, fake_st):
        from datetime import datetime, timezone
        from sarah_booking.core.business import LOCAL_TZ

        # Monday 2025-07-14 10:00 EDT; 12:00Z on Tuesday is 08:00 local
        now = datetime(2025, 7, 14, 14, 0, tzinfo=timezone.utc).astimezone(LOCAL_TZ)
        fake_st.capacity = [_slot("2025-07-15T12:00:00Z"), _slot("2025-07-15T21:00:00Z")]
        result = await get_availability(fake_st, now_local=now, source="capacity")
        assert [(d.date, d.windows) for d in result.days] == [(date(2025, 7, 15), [TimeWindow.MORNING])]


@pytest.mark.unit
class TestDegradedMode:
    @pytest.mark.asyncio
    async def test_api_failure_offers_everything_flagged(self, fake_st, now_local):
        fake_st.fail_with("get_capacity")
        result = await get_availability(fake_st, now_local=now_local, source="capacity")

        assert result.degraded
        assert result.has_availability
        assert len(result.days) == 5
        # today's morning has already started at 10:00
        assert result.days[0].windows == [TimeWindow.MIDDAY, TimeWindow.AFTERNOON]
        assert result.spoken_summary() == DEGRADED_MESSAGE

    @pytest.mark.asyncio
    async def test_unreadable_capacity_slot_degrades(self, now_local):
        def handler(request):
            if request.url.path == "/connect/token":
                return httpx.Response(200, json={"access_token": "t", "expires_in": 900})
            return httpx.Response(200, json={
                "availabilities": [{"start": "2025-03-04T13:00:00Z", "isAvailable": None}],
            })

        client = ServiceTitanClient(settings, transport=httpx.MockTransport(handler))
        result = await get_availability(client, now_local=now_local, source="capacity")

        assert result.degraded
        assert len(result.days) == 5


@pytest.mark.unit
class TestAppointmentDensityMode:
    @pytest.mark.asyncio
    async def test_full_windows_are_dropped(self, fake_st, now_local):
        fake_st.appointments = [
            _appt(1, "2025-03-04T13:00:00Z"),
            _appt(2, "2025-03-04T14:00:00Z"),
            _appt(3, "2025-03-04T16:00:00Z"),
            _appt(4, "2025-03-04T17:00:00Z", status="Canceled"),
        ]
        result = await get_availability(
            fake_st, now_local=now_local, source="appointments", window_capacity=2,
        )

        assert fake_st.called("list_appointments") == 1
        by_date = {d.date: d.windows for d in result.days}
        assert by_date[date(2025, 3, 3)] == [TimeWindow.MIDDAY, TimeWindow.AFTERNOON]
        assert by_date[date(2025, 3, 4)] == [TimeWindow.MIDDAY, TimeWindow.AFTERNOON]
        assert by_date[date(2025, 3, 5)] == list(TimeWindow)

    @pytest.mark.asyncio
    async def test_zero_ceiling_means_nothing_offered(self, fake_st, now_local):
        result = await get_availability(fake_st, now_local=now_local, source="appointments", window_capacity=0)
        assert result.days == []
