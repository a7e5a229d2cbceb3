# sarah_booking/api/routes/webhooks.py
"""
Voice-agent lifecycle webhooks: call_inbound (personalize the call before
it connects) and call_ended / call_analyzed (book from the finished call
and notify the office).
"""
import asyncio
from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from sarah_booking.api.routes.tools import read_json
from sarah_booking.core.business import local_now, today_phrase
from sarah_booking.core.config import settings
from sarah_booking.core.errors import ErrorSeverity, ExternalApiError, ExtractionError, InvalidPhoneError, log_error
from sarah_booking.core.logging import get_logger, mask_phone, set_call_context
from sarah_booking.db.session import get_session
from sarah_booking.schemas.booking import BookingRequest, call_info, clean_value
from sarah_booking.services.availability import get_availability
from sarah_booking.services.booking import BookingStatus, book_appointment
from sarah_booking.services.call_outcome import is_lead
from sarah_booking.services.identity import lookup_caller
from sarah_booking.services.llm import extract_booking_fields
from sarah_booking.services.notifications import CallSummary, send_call_summary
from sarah_booking.services.servicetitan import ServiceTitanClient, get_servicetitan
from sarah_booking.utils.phone import normalize_phone
from sarah_booking.utils.timeout_protection import CallFlowTimer, with_timeout

router = APIRouter(prefix="/api", tags=["webhooks"])
logger = get_logger(__name__)

POST_CALL_EVENTS = ("call_ended", "call_analyzed")

NOT_CUSTOMER_VARS = {"is_existing_customer": "false"}
DEGRADED_AVAILABILITY_VARS = {
    "available_slots": "morning, midday, and afternoon this week",
    "has_availability": "true",
}


# ---------- call_inbound ----------

async def _customer_variables(gateway, from_number: Optional[str]) -> dict[str, str]:
    try:
        phone = normalize_phone(from_number)
        profile = await lookup_caller(gateway, phone)
    except InvalidPhoneError:
        return dict(NOT_CUSTOMER_VARS)
    except ExternalApiError as e:
        log_error(e, {"operation": "inbound_customer_lookup"}, ErrorSeverity.LOW)
        return dict(NOT_CUSTOMER_VARS)

    if not profile.found:
        return dict(NOT_CUSTOMER_VARS)
    return {
        "customer_id": str(profile.customer_id),
        "customer_name": profile.name,
        "customer_first_name": profile.first_name,
        "customer_street": profile.address.street,
        "customer_city": profile.address.city,
        "customer_state": profile.address.state,
        "customer_zip": profile.address.zip,
        "is_existing_customer": "true",
    }


async def _availability_variables(gateway, now: datetime) -> dict[str, str]:
    availability = await get_availability(gateway, now_local=now)
    if availability.degraded:
        return dict(DEGRADED_AVAILABILITY_VARS)
    first = availability.next_available
    if first is None:
        return {"available_slots": "We're all booked up this week", "has_availability": "false"}
    return {
        "available_slots": availability.slot_text(separator=": "),
        "has_availability": "true",
        "next_available_day": first.label,
        "next_available_date": first.date.isoformat(),
    }


@router.post("/inbound-webhook")
async def inbound_webhook(request: Request, gateway: ServiceTitanClient = Depends(get_servicetitan)):
    """Dynamic variables for the agent; any problem returns {} so the call still connects."""
    body = await read_json(request)
    if not isinstance(body, dict) or body.get("event") != "call_inbound":
        return {}
    inbound = body.get("call_inbound")
    if not isinstance(inbound, dict):
        return {}

    from_number = clean_value(inbound.get("from_number"))
    timeout = settings.INBOUND_TIMEOUT_SECONDS
    now = local_now()
    logger.info("inbound_call", phone=mask_phone(from_number))

    try:
        with CallFlowTimer("inbound_webhook", max_seconds=timeout):
            customer_vars, availability_vars = await asyncio.gather(
                with_timeout(_customer_variables(gateway, from_number), timeout,
                             dict(NOT_CUSTOMER_VARS), operation="inbound_customer_lookup"),
                with_timeout(_availability_variables(gateway, now), timeout,
                             dict(DEGRADED_AVAILABILITY_VARS), operation="inbound_availability"),
            )
    except Exception as e:
        log_error(e, {"endpoint": "inbound-webhook"}, ErrorSeverity.HIGH)
        return {}

    dynamic_variables = {**customer_vars, **availability_vars, "today_date": today_phrase(now)}
    return {"call_inbound": {"dynamic_variables": dynamic_variables}}


# ---------- call_ended / call_analyzed ----------

def _analysis_fields(call: dict[str, Any]) -> Optional[dict[str, Any]]:
    analysis = call.get("call_analysis")
    if isinstance(analysis, dict) and isinstance(analysis.get("custom_analysis_data"), dict):
        return analysis["custom_analysis_data"]
    if isinstance(call.get("post_call_analysis_data"), dict):
        return call["post_call_analysis_data"]
    return None


def _call_summary_text(call: dict[str, Any]) -> str:
    analysis = call.get("call_analysis")
    if isinstance(analysis, dict):
        return clean_value(analysis.get("call_summary")) or ""
    return ""


def _queue_notification(
    background_tasks: BackgroundTasks,
    call: dict[str, Any],
    fields: dict[str, Any],
    request: Optional[BookingRequest],
    status: str,
    job_id: Optional[int] = None,
) -> None:
    transcript = call.get("transcript") or ""
    duration_ms = call.get("duration_ms") or 0
    address = ""
    if request is not None:
        address = ", ".join(p for p in (request.street, request.city, request.state, request.zip) if p)
    summary = CallSummary(
        is_lead=is_lead(_call_summary_text(call), transcript, duration_ms, fields),
        status=status,
        customer_name=request.full_name if request else "",
        address=address,
        phone=(request.phone if request and request.phone else call.get("from_number")) or "",
        issue=(request.issue if request else None) or "",
        duration_ms=duration_ms,
        transcript=transcript,
        job_id=job_id,
        call_id=call.get("call_id"),
    )
    background_tasks.add_task(send_call_summary, summary)


@router.post("/post-call")
async def post_call(
    request: Request,
    background_tasks: BackgroundTasks,
    gateway: ServiceTitanClient = Depends(get_servicetitan),
    db: AsyncSession = Depends(get_session),
):
    body = await read_json(request)
    if not isinstance(body, dict):
        return {"status": "error", "reason": "malformed_request"}

    event = body.get("event")
    if event not in POST_CALL_EVENTS:
        return {"status": "ignored", "reason": f"unhandled event {event!r}"}

    call = call_info(body)
    call_id = clean_value(call.get("call_id"))
    set_call_context(call_id=call_id, event=event)

    try:
        fields = _analysis_fields(call)
        transcript = clean_value(call.get("transcript"))
        from_number = clean_value(call.get("from_number"))

        if fields is None:
            if not transcript:
                logger.info("post_call_skipped", reason="no_transcript_or_analysis")
                return {"status": "skipped", "reason": "missing data"}
            try:
                fields = (await extract_booking_fields(transcript, from_number)).to_payload()
            except ExtractionError as e:
                log_error(e, {"operation": "extract_booking_fields"}, ErrorSeverity.MEDIUM)
                _queue_notification(background_tasks, call, {}, None, "no_booking")
                return {"status": "no_booking", "reason": "extraction_failed"}

        booking_request = BookingRequest.from_payload(fields)
        if not booking_request.phone and from_number:
            booking_request = booking_request.model_copy(update={"phone": from_number})

        if booking_request.confirmed is False:
            logger.info("post_call_no_booking", reason="not_confirmed")
            _queue_notification(background_tasks, call, fields, booking_request, "no_booking")
            return {"status": "no_booking", "reason": "booking not confirmed"}

        result = await book_appointment(
            gateway,
            booking_request,
            db=db,
            idempotency_key=call_id,
            dialed_number=clean_value(call.get("to_number")),
        )
    except Exception as e:
        log_error(e, {"endpoint": "post-call"}, ErrorSeverity.HIGH)
        return {"status": "error", "reason": "internal_error"}

    # a redelivered event already notified once
    if result.status != BookingStatus.DUPLICATE:
        _queue_notification(background_tasks, call, fields, booking_request, result.status.value, result.job_id)

    return {**result.to_response(), "call_id": call_id}
