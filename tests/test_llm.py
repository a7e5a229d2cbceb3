"""
Tests for transcript extraction through the OpenAI chat completions API.
"""

import json

import httpx
import pytest

from sarah_booking.core.config import settings
from sarah_booking.core.errors import ExtractionError
from sarah_booking.services.llm import _coerce_json, _strip_json_fences, extract_booking_fields

TRANSCRIPT = (
    "Agent: Thanks for calling, this is Sarah.\n"
    "User: Hi, it's Sam. My kitchen faucet is leaking.\n"
    "Agent: I've got Wednesday morning.\n"
    "User: That works."
)


def _completion(content):
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


def _transport(content=None, status=200, seen=None):
    def handler(request):
        if seen is not None:
            seen.append(request)
        if status != 200:
            return httpx.Response(status, json={"error": {"message": "rate limited"}})
        return httpx.Response(200, json=_completion(content))
    return httpx.MockTransport(handler)


@pytest.mark.unit
class TestJsonCoercion:
    def test_strips_code_fence(self):
        assert _strip_json_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
        assert _strip_json_fences('  {"a": 1} ') == '{"a": 1}'

    def test_finds_object_in_chatter(self):
        assert _coerce_json('Sure! {"first_name": "Sam"} Hope that helps.') == {"first_name": "Sam"}

    @pytest.mark.parametrize("text", ["no json here", "[1, 2]", "{broken"])
    def test_rejects_non_objects(self, text):
        with pytest.raises(ExtractionError):
            _coerce_json(text)


@pytest.mark.unit
class TestExtractBookingFields:
    @pytest.mark.asyncio
    async def test_successful_extraction(self):
        seen = []
        content = json.dumps({
            "should_book": True, "first_name": "Sam", "last_name": None, "phone": 9378843414,
            "street": "1 Main St", "city": "Dayton", "state": "OH", "zip": 45402,
            "issue": "leaky kitchen faucet", "day": "Wednesday", "time_window": "morning",
            "service_tier": None, "notification_pref": "text", "is_homeowner": True,
        })

        extracted = await extract_booking_fields(TRANSCRIPT, "9378843414", transport=_transport(content, seen=seen))

        assert extracted.should_book
        assert extracted.phone == "9378843414"
        assert extracted.zip == "45402"
        assert extracted.time_window == "morning"
        assert extracted.to_payload()["street"] == "1 Main St"

        body = json.loads(seen[0].content)
        assert seen[0].url.path == "/v1/chat/completions"
        assert seen[0].headers["Authorization"] == "Bearer test_key"
        assert body["temperature"] == 0
        assert body["response_format"] == {"type": "json_object"}
        assert "9378843414" in body["messages"][1]["content"]
        assert "Wednesday morning" in body["messages"][1]["content"]

    @pytest.mark.asyncio
    async def test_null_should_book_is_false(self):
        extracted = await extract_booking_fields(
            TRANSCRIPT, transport=_transport(json.dumps({"should_book": None, "first_name": "Sam"})),
        )
        assert extracted.should_book is False
        assert extracted.first_name == "Sam"

    @pytest.mark.asyncio
    async def test_fenced_content_is_accepted(self):
        extracted = await extract_booking_fields(
            TRANSCRIPT, transport=_transport('```json\n{"should_book": true}\n```'),
        )
        assert extracted.should_book is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize("transcript", ["", "   ", None])
    async def test_empty_transcript(self, transcript):
        with pytest.raises(ExtractionError):
            await extract_booking_fields(transcript)

    @pytest.mark.asyncio
    async def test_missing_api_key(self, monkeypatch):
        monkeypatch.setattr(settings, "OPENAI_API_KEY", None)
        with pytest.raises(ExtractionError):
            await extract_booking_fields(TRANSCRIPT, transport=_transport("{}"))

    @pytest.mark.asyncio
    async def test_http_error_is_not_retried(self):
        seen = []
        with pytest.raises(ExtractionError):
            await extract_booking_fields(TRANSCRIPT, transport=_transport(status=429, seen=seen))
        assert len(seen) == 1

    @pytest.mark.asyncio
    async def test_unusable_content(self):
        with pytest.raises(ExtractionError):
            await extract_booking_fields(TRANSCRIPT, transport=_transport("I could not find anything."))

    @pytest.mark.asyncio
    async def test_invalid_field_types(self):
        with pytest.raises(ExtractionError):
            await extract_booking_fields(
                TRANSCRIPT, transport=_transport(json.dumps({"should_book": "perhaps"})),
            )

    @pytest.mark.asyncio
    async def test_response_without_choices(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"choices": []}))
        with pytest.raises(ExtractionError):
            await extract_booking_fields(TRANSCRIPT, transport=transport)
