# sarah_booking/crud/booking_claim.py

from __future__ import annotations
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError

from sarah_booking.core.errors import DuplicateBookingError
from sarah_booking.db.models.booking_claim import BookingClaim

PENDING = "pending"
BOOKED = "booked"


async def get_claim(db: AsyncSession, key: str) -> Optional[BookingClaim]:
    res = await db.execute(sa.select(BookingClaim).where(BookingClaim.idempotency_key == key))
    return res.scalar_one_or_none()


async def claim_booking(db: AsyncSession, key: str, *, phone: Optional[str] = None) -> BookingClaim:
    """
    Insert a pending claim for ``key``. A second claim for the same key,
    pending or booked, raises DuplicateBookingError.
    """
    claim = BookingClaim(idempotency_key=key, phone=phone, status=PENDING)
    db.add(claim)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        existing = await get_claim(db, key)
        raise DuplicateBookingError(
            reason="idempotency_key",
            job_id=existing.job_id if existing else None,
        )
    await db.refresh(claim)
    return claim


async def complete_claim(db: AsyncSession, key: str, job_id: int) -> None:
    await db.execute(
        sa.update(BookingClaim)
        .where(BookingClaim.idempotency_key == key)
        .values(status=BOOKED, job_id=job_id)
    )
    await db.commit()


async def release_claim(db: AsyncSession, key: str) -> None:
    """Drop a pending claim so a redelivered event can try again."""
    await db.execute(
        sa.delete(BookingClaim).where(
            BookingClaim.idempotency_key == key,
            BookingClaim.status == PENDING,
        )
    )
    await db.commit()
