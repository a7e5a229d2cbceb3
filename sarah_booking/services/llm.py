# sarah_booking/services/llm.py
from __future__ import annotations

import json
import re
from typing import Any, Dict, Optional

import httpx
from pydantic import BaseModel, Field, ValidationError, field_validator

from sarah_booking.core.config import settings
from sarah_booking.core.errors import ExtractionError
from sarah_booking.core.logging import get_logger

logger = get_logger(__name__)


# ---------- Public contract (what we return to the post-call flow) ----------

class ExtractedBooking(BaseModel):
    should_book: bool = Field(False, description="False if the caller declined or nothing was confirmed")
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = Field(None, description="Digits only when the model gets it right")
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip: Optional[str] = None
    issue: Optional[str] = Field(None, description="Brief description of the plumbing problem")
    day: Optional[str] = Field(None, description="Day of week the caller chose")
    time_window: Optional[str] = Field(None, description="morning, midday or afternoon")
    service_tier: Optional[str] = None
    notification_pref: Optional[str] = None
    is_homeowner: Optional[bool] = None

    @field_validator("should_book", mode="before")
    @classmethod
    def _null_is_false(cls, v):
        return False if v is None else v

    @field_validator("phone", "zip", mode="before")
    @classmethod
    def _numbers_as_text(cls, v):
        return str(v) if isinstance(v, (int, float)) else v

    def to_payload(self) -> dict[str, Any]:
        """Dict in the same key shape the agent's analysis data uses."""
        return self.model_dump()


# ---------- Helpers ----------

_JSON_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL | re.IGNORECASE)


def _strip_json_fences(s: str) -> str:
    """
    If the model wraps JSON in ```json ...```, strip the fence.
    """
    m = _JSON_FENCE_RE.match(s.strip())
    return m.group(1) if m else s.strip()


def _coerce_json(s: str) -> Dict[str, Any]:
    """
    Parse the model's text as a JSON object; the first {...} block is tried
    when there's surrounding chatter. Raises ExtractionError otherwise.
    """
    s = _strip_json_fences(s)
    try:
        obj = json.loads(s)
    except json.JSONDecodeError:
        brace_start = s.find("{")
        brace_end = s.rfind("}")
        if brace_start == -1 or brace_end <= brace_start:
            raise ExtractionError("Model output is not JSON")
        try:
            obj = json.loads(s[brace_start: brace_end + 1])
        except json.JSONDecodeError as e:
            raise ExtractionError("Model output is not JSON") from e
    if not isinstance(obj, dict):
        raise ExtractionError("Model output is not a JSON object")
    return obj


def _build_messages(transcript: str, caller_phone: Optional[str]) -> list[dict[str, str]]:
    SYSTEM = (
        "You extract booking details from plumbing company call transcripts.\n"
        "Return ONLY a single JSON object with fields (null when not found):\n"
        '{ "should_book": boolean, "first_name": string, "last_name": string|null, '
        '"phone": string, "street": string, "city": string, "state": string, "zip": string, '
        '"issue": string, "day": string, "time_window": string, "service_tier": string|null, '
        '"notification_pref": string|null, "is_homeowner": boolean|null }.\n'
        "Rules: should_book is false if the customer declined, hung up early, was just asking "
        "questions, or no appointment was confirmed. phone is digits only. state defaults to OH. "
        "zip is 5 digits. day is the day of week they chose. time_window is morning, midday or "
        "afternoon. service_tier is shield, standard or economy. notification_pref is text or call.\n"
        "No markdown. No code fences. No extra keys."
    )
    USER = (
        f"Caller phone: {caller_phone or 'unknown'}\n\n"
        "Transcript:\n"
        f"{transcript}\n\n"
        "Respond with JSON ONLY."
    )
    return [
        {"role": "system", "content": SYSTEM},
        {"role": "user", "content": USER},
    ]


def _openai_base_url() -> str:
    """
    Allow overriding the base URL (useful for proxies/self-hosted gateways).
    """
    return (settings.OPENAI_BASE_URL or "https://api.openai.com").rstrip("/")


# ---------- Core call ----------

async def extract_booking_fields(
    transcript: str,
    caller_phone: Optional[str] = None,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ExtractedBooking:
    """
    Single entrypoint for LLM extraction.
    - Enforces JSON-only via response_format
    - Validates into ExtractedBooking
    - Any failure raises ExtractionError; nothing is retried
    """
    if not transcript or not transcript.strip():
        raise ExtractionError("Transcript is empty.")

    api_key = settings.OPENAI_API_KEY
    if not api_key:
        raise ExtractionError("OPENAI_API_KEY is not set.")

    payload = {
        "model": settings.OPENAI_MODEL,
        "messages": _build_messages(transcript, caller_phone),
        "temperature": 0,
        "max_tokens": settings.RESPONSE_MAX_TOKENS,
        "response_format": {"type": "json_object"},
    }
    headers = {
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json",
    }

    try:
        async with httpx.AsyncClient(
            base_url=_openai_base_url(), timeout=settings.HTTP_TIMEOUT_SECONDS * 3, transport=transport
        ) as client:
            resp = await client.post("/v1/chat/completions", headers=headers, json=payload)
            resp.raise_for_status()
            data = resp.json()
    except httpx.HTTPStatusError as e:
        logger.error("llm_http_error", status=e.response.status_code, body=e.response.text)
        raise ExtractionError(f"OpenAI returned {e.response.status_code}") from e
    except (httpx.HTTPError, ValueError) as e:
        logger.error("llm_request_failed", error=str(e))
        raise ExtractionError(f"OpenAI request failed: {e}") from e

    try:
        text = data["choices"][0]["message"]["content"] or ""
    except (KeyError, IndexError, TypeError) as e:
        raise ExtractionError("OpenAI response had no message content") from e

    obj = _coerce_json(text)
    try:
        parsed = ExtractedBooking.model_validate(obj)
    except ValidationError as ve:
        raise ExtractionError(f"LLM extraction validation failed: {ve.error_count()} errors") from ve

    logger.info("llm_extraction_complete", should_book=parsed.should_book,
                has_address=bool(parsed.street), window=parsed.time_window)
    return parsed
