# sarah_booking/services/notifications.py
"""Post-call summary to the office Slack channel (incoming webhook)."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import httpx

from sarah_booking.core.config import settings
from sarah_booking.core.logging import get_logger
from sarah_booking.utils.phone import format_phone_for_display

logger = get_logger(__name__)

TRANSCRIPT_EXCERPT_CHARS = 600

_STATUS_COLORS = {
    "booked": "#2EB67D",
    "duplicate": "#2EB67D",
    "no_booking": "#CCCCCC",
    "incomplete": "#FFCC00",
    "invalid_phone": "#FFCC00",
    "failed": "#FF6600",
    "error": "#FF0000",
}


@dataclass
class CallSummary:
    is_lead: bool
    status: str
    customer_name: str = ""
    address: str = ""
    phone: str = ""
    issue: str = ""
    duration_ms: int = 0
    transcript: str = ""
    job_id: Optional[int] = None
    call_id: Optional[str] = None

    @property
    def duration_text(self) -> str:
        seconds = max(int(self.duration_ms or 0) // 1000, 0)
        return f"{seconds // 60}m {seconds % 60:02d}s"

    @property
    def transcript_excerpt(self) -> str:
        text = (self.transcript or "").strip()
        if len(text) <= TRANSCRIPT_EXCERPT_CHARS:
            return text
        return "..." + text[-TRANSCRIPT_EXCERPT_CHARS:]


def format_call_summary(summary: CallSummary) -> dict:
    headline = "New lead" if summary.is_lead else "Call (not a lead)"
    status = summary.status
    if summary.job_id:
        status = f"{status} (job {summary.job_id})"

    fields = [
        {"title": "Customer", "value": summary.customer_name or "Unknown", "short": True},
        {"title": "Phone", "value": format_phone_for_display(summary.phone) or "Unknown", "short": True},
        {"title": "Address", "value": summary.address or "Not given", "short": False},
        {"title": "Issue", "value": summary.issue or "Not given", "short": False},
        {"title": "Duration", "value": summary.duration_text, "short": True},
        {"title": "Booking", "value": status, "short": True},
    ]
    if summary.transcript_excerpt:
        fields.append({"title": "Transcript", "value": summary.transcript_excerpt, "short": False})

    return {
        "text": f"{headline}: {summary.customer_name or format_phone_for_display(summary.phone) or 'unknown caller'}",
        "attachments": [{
            "color": _STATUS_COLORS.get(summary.status, "#CCCCCC"),
            "fields": fields,
        }],
    }


async def send_call_summary(
    summary: CallSummary,
    *,
    webhook_url: Optional[str] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> bool:
    """Fire-and-forget; returns whether Slack accepted it. Never raises on delivery failure."""
    url = webhook_url or settings.SLACK_WEBHOOK_URL
    if not url:
        logger.debug("slack_not_configured")
        return False

    try:
        async with httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS, transport=transport) as client:
            response = await client.post(url, json=format_call_summary(summary))
            response.raise_for_status()
    except httpx.HTTPError as e:
        logger.error("slack_notification_failed", call_id=summary.call_id, error=str(e))
        return False

    logger.info("slack_notification_sent", call_id=summary.call_id, status=summary.status, is_lead=summary.is_lead)
    return True
