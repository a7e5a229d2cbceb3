"""
Tests for the Slack call summary and the timeout helpers.
"""

import asyncio
import json

import httpx
import pytest

from sarah_booking.services.notifications import CallSummary, format_call_summary, send_call_summary
from sarah_booking.utils.timeout_protection import CallFlowTimer, with_timeout


def _summary(**overrides):
    values = dict(
        is_lead=True,
        status="booked",
        customer_name="Sam Jones",
        address="1 Main St, Dayton, OH 45402",
        phone="9378843414",
        issue="leaky faucet",
        duration_ms=125000,
        transcript="User: my faucet leaks",
        job_id=1234,
        call_id="call_1",
    )
    values.update(overrides)
    return CallSummary(**values)


def _field(payload, title):
    return next(f["value"] for f in payload["attachments"][0]["fields"] if f["title"] == title)


@pytest.mark.unit
class TestFormatCallSummary:
    def test_lead_headline_and_fields(self):
        payload = format_call_summary(_summary())
        assert payload["text"] == "New lead: Sam Jones"
        assert _field(payload, "Phone") == "(937) 884-3414"
        assert _field(payload, "Duration") == "2m 05s"
        assert _field(payload, "Booking") == "booked (job 1234)"
        assert _field(payload, "Transcript") == "User: my faucet leaks"

    def test_non_lead_without_name(self):
        payload = format_call_summary(_summary(is_lead=False, customer_name="", status="no_booking", job_id=None))
        assert payload["text"] == "Call (not a lead): (937) 884-3414"
        assert _field(payload, "Customer") == "Unknown"
        assert _field(payload, "Booking") == "no_booking"

    def test_long_transcript_keeps_the_end(self):
        transcript = "a" * 1000 + "THE END"
        summary = _summary(transcript=transcript)
        assert summary.transcript_excerpt.startswith("...")
        assert summary.transcript_excerpt.endswith("THE END")
        assert len(summary.transcript_excerpt) == 603

    def test_no_transcript_field_when_empty(self):
        payload = format_call_summary(_summary(transcript=""))
        titles = [f["title"] for f in payload["attachments"][0]["fields"]]
        assert "Transcript" not in titles


@pytest.mark.unit
class TestSendCallSummary:
    @pytest.mark.asyncio
    async def test_posts_to_webhook(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, text="ok")

        sent = await send_call_summary(
            _summary(), webhook_url="https://hooks.slack.test/T/B/X", transport=httpx.MockTransport(handler),
        )
        assert sent
        assert str(seen[0].url) == "https://hooks.slack.test/T/B/X"
        assert json.loads(seen[0].content)["text"] == "New lead: Sam Jones"

    @pytest.mark.asyncio
    async def test_not_configured(self):
        assert await send_call_summary(_summary()) is False

    @pytest.mark.asyncio
    async def test_delivery_failure_is_swallowed(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(500, text="no_service"))
        sent = await send_call_summary(_summary(), webhook_url="https://hooks.slack.test/x", transport=transport)
        assert sent is False


@pytest.mark.unit
class TestTimeoutProtection:
    @pytest.mark.asyncio
    async def test_fast_result_passes_through(self):
        async def quick():
            return "value"
        assert await with_timeout(quick(), 1.0, "default") == "value"

    @pytest.mark.asyncio
    async def test_slow_result_is_defaulted(self):
        async def slow():
            await asyncio.sleep(1)
            return "late"
        assert await with_timeout(slow(), 0.01, "default") == "default"

    @pytest.mark.asyncio
    async def test_errors_propagate(self):
        async def broken():
            raise RuntimeError("boom")
        with pytest.raises(RuntimeError):
            await with_timeout(broken(), 1.0, "default")

    def test_timer_measures(self):
        with CallFlowTimer("lookup", max_seconds=5.0) as timer:
            pass
        assert timer.elapsed() >= 0.0
        assert CallFlowTimer("unused").elapsed() == 0.0
