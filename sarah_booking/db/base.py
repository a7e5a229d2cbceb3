# sarah_booking/db/base.py

"""
Imports every ORM model so ``Base.metadata`` knows about it before
``create_all`` runs. Add new models here.
"""
from sarah_booking.db.models.booking_claim import BookingClaim  # noqa: F401
from sarah_booking.db.session import engine, Base


async def init_db(bind=None):
    """Create all tables (idempotent)."""
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
