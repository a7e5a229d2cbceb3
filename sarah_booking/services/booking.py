# sarah_booking/services/booking.py
from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from sarah_booking.core.business import (
    UTC,
    AppointmentBlock,
    TimeWindow,
    appointment_block,
    day_name,
    local_now,
    parse_window,
    resolve_target_date,
)
from sarah_booking.core.config import settings
from sarah_booking.core.errors import (
    BookingFailedError,
    DuplicateBookingError,
    ErrorSeverity,
    ExternalApiError,
    InvalidPhoneError,
    log_error,
)
from sarah_booking.core.logging import get_logger, mask_phone
from sarah_booking.crud.booking_claim import claim_booking, complete_claim, release_claim
from sarah_booking.schemas.booking import BookingRequest
from sarah_booking.schemas.servicetitan import AppointmentPayload, Customer, JobRequest
from sarah_booking.services.campaigns import resolve_campaign_id
from sarah_booking.services.identity import find_customer_by_phone, resolve_identity
from sarah_booking.utils.phone import normalize_phone

logger = get_logger(__name__)

_DRAIN_RE = re.compile(r"drain|sewer|clog|backup|snake", re.IGNORECASE)

FAILED_MESSAGE = (
    "Something went wrong with the booking. Let me try again - "
    "can you give me that info one more time?"
)
INVALID_PHONE_MESSAGE = "Can you give me the full number with area code?"
DUPLICATE_MESSAGE = "You're all set, I already have that appointment on the books."

SERVICE_CALL_DESCRIPTION = (
    "Includes travel and on-site labor for diagnosing and addressing minor plumbing issues."
)


# ---------- Public contract returned to the route ----------

class BookingStatus(str, Enum):
    BOOKED = "booked"
    INCOMPLETE = "incomplete"
    INVALID_PHONE = "invalid_phone"
    DUPLICATE = "duplicate"
    FAILED = "failed"


class BookResult(BaseModel):
    success: bool = Field(..., description="Whether the caller should hear a confirmation")
    status: BookingStatus
    message_for_caller: str = Field(..., description="Plain sentence to speak back to caller")
    job_id: Optional[int] = None
    job_number: Optional[str] = None
    appointment_id: Optional[int] = None
    customer_id: Optional[int] = None
    location_id: Optional[int] = None
    day: Optional[str] = None
    date: Optional[str] = None
    window: Optional[str] = None
    missing: list[str] = Field(default_factory=list)
    reason: Optional[str] = Field(None, description="Short failure code; never raw API text")

    def to_response(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "result": self.message_for_caller,
            "success": self.success,
            "status": self.status.value,
            "job_id": self.job_id,
            "job_number": self.job_number,
            "appointment_id": self.appointment_id,
            "customer_id": self.customer_id,
            "location_id": self.location_id,
            "day": self.day,
            "date": self.date,
            "window": self.window,
        }
        if self.missing:
            body["missing"] = self.missing
        if self.reason:
            body["reason"] = self.reason
        return body


@dataclass(frozen=True)
class JobRouting:
    business_unit_id: int
    job_type_id: int
    is_drain: bool


@dataclass(frozen=True)
class SchedulePlan:
    target: date
    window: TimeWindow
    block: AppointmentBlock

    @property
    def day_label(self) -> str:
        return day_name(self.target)


# ---------- Internal helpers ----------

def classify_issue(issue: Optional[str]) -> JobRouting:
    """Drain-type wording routes to the drain unit; everything else is general plumbing."""
    if issue and _DRAIN_RE.search(issue):
        return JobRouting(settings.ST_BUSINESS_UNIT_DRAIN, settings.ST_JOB_TYPE_DRAIN, True)
    return JobRouting(settings.ST_BUSINESS_UNIT_PLUMBING, settings.ST_JOB_TYPE_SERVICE, False)


def plan_schedule(request: BookingRequest, now_local: datetime) -> SchedulePlan:
    window = parse_window(request.time_window)
    if window is None:
        logger.info("time_window_defaulted", requested=request.time_window, window=TimeWindow.MORNING.value)
        window = TimeWindow.MORNING
    target = resolve_target_date(request.day, now_local)
    return SchedulePlan(target=target, window=window, block=appointment_block(target, window))


def _spoken_hour(hour: int) -> int:
    return hour % 12 or 12


def _compose_success_message(plan: SchedulePlan) -> str:
    return (
        f"Got you all set for {plan.day_label} {plan.window.value}. "
        f"Tech will be there between {_spoken_hour(plan.window.start_hour)} "
        f"and {_spoken_hour(plan.window.end_hour)}."
    )


def _compose_missing_message(missing: list[str]) -> str:
    return f"I still need the {missing[0]}."


def _as_utc(now_local: datetime) -> datetime:
    if now_local.tzinfo is None:
        raise ValueError("now_local must be timezone-aware")
    return now_local.astimezone(UTC)


async def _existing_customer(gateway, request: BookingRequest, phone: str) -> Optional[Customer]:
    if request.customer_id:
        try:
            return await gateway.get_customer(request.customer_id)
        except ExternalApiError as e:
            # stale id from the agent; fall back to the phone
            log_error(e, {"operation": "get_customer", "customer_id": request.customer_id}, ErrorSeverity.LOW)
    return await find_customer_by_phone(gateway, phone)


async def _check_recent_jobs(gateway, customer_id: int, now_local: datetime) -> None:
    cutoff = _as_utc(now_local) - timedelta(minutes=settings.DEDUPE_WINDOW_MINUTES)
    recent = await gateway.list_recent_jobs(customer_id, cutoff)
    if recent:
        raise DuplicateBookingError(reason="recent_job", job_id=recent[0].id)


async def _add_service_call_line(gateway, job_id: int) -> None:
    sku_id = settings.ST_SERVICE_CALL_SKU_ID
    if not sku_id:
        return
    try:
        invoices = await gateway.list_job_invoices(job_id)
        invoice_id = invoices[0].get("id") if invoices else None
        if not invoice_id:
            logger.info("service_call_line_skipped", job_id=job_id, reason="no_invoice")
            return
        await gateway.add_invoice_item(invoice_id, {
            "skuId": sku_id,
            "skuName": settings.ST_SERVICE_CALL_SKU_NAME,
            "description": SERVICE_CALL_DESCRIPTION,
            "quantity": 1,
            "unitPrice": settings.ST_SERVICE_CALL_PRICE,
            "cost": 0,
            "isAddOn": False,
        })
        logger.info("service_call_line_added", job_id=job_id, invoice_id=invoice_id)
    except ExternalApiError as e:
        log_error(e, {"operation": "add_service_call_line", "job_id": job_id}, ErrorSeverity.LOW)


async def _release(db: Optional[AsyncSession], key: Optional[str]) -> None:
    if db is None or not key:
        return
    try:
        await release_claim(db, key)
    except SQLAlchemyError as e:
        log_error(e, {"operation": "release_claim"}, ErrorSeverity.HIGH)


def _duplicate_result(e: DuplicateBookingError) -> BookResult:
    logger.info("booking_duplicate_suppressed", reason=e.reason, job_id=e.job_id)
    return BookResult(
        success=True,
        status=BookingStatus.DUPLICATE,
        message_for_caller=DUPLICATE_MESSAGE,
        job_id=e.job_id,
        reason=e.reason,
    )


# ---------- Core orchestration ----------

async def book_appointment(
    gateway,
    request: BookingRequest,
    *,
    db: Optional[AsyncSession] = None,
    idempotency_key: Optional[str] = None,
    dialed_number: Optional[str] = None,
    now_local: Optional[datetime] = None,
) -> BookResult:
    """
    One booking attempt, strictly in order:
    1) Validate required fields and the phone (no external calls on failure)
    2) Resolve schedule and job routing before anything is created
    3) Claim the call id in the ledger, then check the 5-minute job history
    4) Resolve customer + location, campaign, create the job
    5) Optional service-call invoice line; return the spoken confirmation
    """
    # 1) Validate
    missing = request.missing_fields()
    if missing:
        logger.info("booking_incomplete", missing=missing)
        return BookResult(
            success=False,
            status=BookingStatus.INCOMPLETE,
            message_for_caller=_compose_missing_message(missing),
            missing=missing,
        )

    try:
        phone = normalize_phone(request.phone)
    except InvalidPhoneError:
        logger.info("booking_invalid_phone", phone=mask_phone(request.phone))
        return BookResult(
            success=False,
            status=BookingStatus.INVALID_PHONE,
            message_for_caller=INVALID_PHONE_MESSAGE,
            reason="invalid_phone",
        )

    # 2) Schedule + routing are pure; doing them first keeps failures from orphaning records
    now_local = now_local or local_now()
    plan = plan_schedule(request, now_local)
    routing = classify_issue(request.issue)

    # 3) Idempotency ledger
    claimed_key: Optional[str] = None
    if db is not None and idempotency_key:
        try:
            await claim_booking(db, idempotency_key, phone=phone)
            claimed_key = idempotency_key
        except DuplicateBookingError as e:
            return _duplicate_result(e)
        except SQLAlchemyError as e:
            log_error(e, {"operation": "claim_booking"}, ErrorSeverity.HIGH)

    stage = "customer_lookup"
    try:
        existing = await _existing_customer(gateway, request, phone)
        if existing is not None:
            stage = "dedupe_check"
            await _check_recent_jobs(gateway, existing.id, now_local)

        # 4) Identity, campaign, job
        stage = "identity"
        identity = await resolve_identity(gateway, request, phone, existing=existing)

        stage = "campaign"
        campaign_id = await resolve_campaign_id(gateway, dialed_number)

        stage = "create_job"
        job = await gateway.create_job(JobRequest(
            customer_id=identity.customer_id,
            location_id=identity.location_id,
            business_unit_id=routing.business_unit_id,
            job_type_id=routing.job_type_id,
            summary=request.issue,
            campaign_id=campaign_id,
            appointments=[AppointmentPayload.model_validate(plan.block.to_payload())],
        ))
    except DuplicateBookingError as e:
        await _release(db, claimed_key)
        return _duplicate_result(e)
    except (ExternalApiError, BookingFailedError) as e:
        log_error(e, {"operation": "book_appointment", "stage": stage, "phone": mask_phone(phone)},
                  ErrorSeverity.HIGH)
        await _release(db, claimed_key)
        return BookResult(
            success=False,
            status=BookingStatus.FAILED,
            message_for_caller=FAILED_MESSAGE,
            reason=f"{stage}_failed",
        )
    except Exception:
        # no job exists yet; free the key for redelivery
        await _release(db, claimed_key)
        raise

    if claimed_key:
        try:
            await complete_claim(db, claimed_key, job.id)
        except SQLAlchemyError as e:
            log_error(e, {"operation": "complete_claim", "job_id": job.id}, ErrorSeverity.HIGH)

    # 5) Optional invoice line, never fails the booking
    await _add_service_call_line(gateway, job.id)

    logger.info(
        "booking_created",
        job_id=job.id,
        customer_id=identity.customer_id,
        location_id=identity.location_id,
        created_customer=identity.created_customer,
        created_location=identity.created_location,
        business_unit_id=routing.business_unit_id,
        date=plan.target.isoformat(),
        window=plan.window.value,
        start=plan.block.start,
    )
    return BookResult(
        success=True,
        status=BookingStatus.BOOKED,
        message_for_caller=_compose_success_message(plan),
        job_id=job.id,
        job_number=job.job_number,
        appointment_id=job.first_appointment_id,
        customer_id=identity.customer_id,
        location_id=identity.location_id,
        day=plan.day_label,
        date=plan.target.isoformat(),
        window=plan.window.value,
    )
