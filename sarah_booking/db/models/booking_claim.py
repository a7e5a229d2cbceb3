# sarah_booking/db/models/booking_claim.py

from __future__ import annotations
from datetime import datetime, timezone
import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column
from sarah_booking.db.session import Base


class BookingClaim(Base):
    """One row per booking attempt keyed by the voice-agent call id."""

    __tablename__ = "booking_claims"
    __table_args__ = (
        sa.UniqueConstraint("idempotency_key", name="uq_booking_claims_idempotency_key"),
    )

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    idempotency_key: Mapped[str] = mapped_column(sa.String(128), nullable=False)
    phone: Mapped[str | None] = mapped_column(sa.String(20))
    job_id: Mapped[int | None] = mapped_column(sa.BigInteger)
    status: Mapped[str] = mapped_column(sa.String(16), nullable=False, default="pending")

    # Store as timezone-aware UTC
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
