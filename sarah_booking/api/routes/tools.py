# sarah_booking/api/routes/tools.py
"""
Custom functions the voice agent calls mid-conversation.

Every answer is HTTP 200 with a conversational ``result``; the agent reads
it out, so failures are phrased, never raised.
"""
from typing import Any, Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from sarah_booking.core.errors import ErrorSeverity, ExternalApiError, InvalidPhoneError, log_error
from sarah_booking.core.logging import get_logger, mask_phone, set_call_context
from sarah_booking.db.session import get_session
from sarah_booking.schemas.booking import BookingRequest, call_info, clean_value, unwrap_tool_payload
from sarah_booking.services.availability import get_availability
from sarah_booking.services.booking import FAILED_MESSAGE, book_appointment
from sarah_booking.services.identity import lookup_caller
from sarah_booking.services.servicetitan import ServiceTitanClient, get_servicetitan
from sarah_booking.utils.phone import normalize_phone

router = APIRouter(prefix="/api", tags=["tools"])
logger = get_logger(__name__)

ASK_PHONE = "What's a good callback number for you?"
ASK_FULL_PHONE = "Can you give me the full number with area code?"
ACKNOWLEDGE = "Got it."
UNREADABLE_REQUEST = "Sorry, I didn't catch that. Can you give me that info one more time?"


async def read_json(request: Request) -> Optional[Any]:
    """Request body as JSON, or None when it isn't JSON at all."""
    try:
        return await request.json()
    except ValueError:
        logger.warning("request_body_not_json", path=request.url.path)
        return None


def caller_phone(body: Any) -> Optional[str]:
    """Explicit ``phone`` arg first, then whatever the platform knows about the caller."""
    if not isinstance(body, dict):
        return None
    args = unwrap_tool_payload(body)
    call = call_info(body)
    dynamic = body.get("retell_llm_dynamic_variables") or call.get("retell_llm_dynamic_variables") or {}
    candidates = (
        args.get("phone"),
        body.get("phone"),
        call.get("from_number"),
        body.get("from_number"),
        dynamic.get("from-number") if isinstance(dynamic, dict) else None,
    )
    for candidate in candidates:
        value = clean_value(candidate)
        if value:
            return value
    return None


@router.post("/check-customer")
async def check_customer(request: Request, gateway: ServiceTitanClient = Depends(get_servicetitan)):
    body = await read_json(request)
    set_call_context(call_id=call_info(body).get("call_id"))

    phone = caller_phone(body)
    if not phone:
        return {"result": ASK_PHONE, "need_phone": True}

    try:
        normalized = normalize_phone(phone)
    except InvalidPhoneError:
        return {"result": ASK_FULL_PHONE, "need_phone": True}

    try:
        profile = await lookup_caller(gateway, normalized)
    except ExternalApiError as e:
        log_error(e, {"endpoint": "check-customer", "phone": mask_phone(normalized)})
        return {"result": ACKNOWLEDGE, "found": False}

    if not profile.found:
        return {"result": ACKNOWLEDGE, "found": False, "customer_id": None}

    return {
        "result": ACKNOWLEDGE,
        "found": True,
        "customer_id": profile.customer_id,
        "customer_name": profile.name,
        "street": profile.address.street,
        "city": profile.address.city,
        "state": profile.address.state,
        "zip": profile.address.zip,
    }


@router.post("/check-availability")
async def check_availability(request: Request, gateway: ServiceTitanClient = Depends(get_servicetitan)):
    body = await read_json(request)
    set_call_context(call_id=call_info(body).get("call_id"))

    availability = await get_availability(gateway)
    return {
        "result": availability.spoken_summary(),
        "slots": availability.slots(),
        "has_availability": availability.has_availability,
        "degraded": availability.degraded,
    }


@router.post("/book-appointment")
async def book(
    request: Request,
    gateway: ServiceTitanClient = Depends(get_servicetitan),
    db: AsyncSession = Depends(get_session),
):
    body = await read_json(request)
    if not isinstance(body, dict):
        return {"result": UNREADABLE_REQUEST, "success": False, "status": "failed", "reason": "malformed_request"}

    call = call_info(body)
    call_id = clean_value(call.get("call_id"))
    set_call_context(call_id=call_id)

    booking_request = BookingRequest.from_payload(unwrap_tool_payload(body))
    logger.info(
        "book_appointment_request",
        phone=mask_phone(booking_request.phone),
        day=booking_request.day,
        window=booking_request.time_window,
        has_customer_id=booking_request.customer_id is not None,
    )

    try:
        result = await book_appointment(
            gateway,
            booking_request,
            db=db,
            idempotency_key=call_id,
            dialed_number=clean_value(call.get("to_number")),
        )
    except Exception as e:
        # booking must never surface as a transport failure mid-call
        log_error(e, {"endpoint": "book-appointment"}, ErrorSeverity.HIGH)
        return {
            "result": FAILED_MESSAGE,
            "success": False,
            "status": "failed",
            "reason": "internal_error",
        }
    return result.to_response()
