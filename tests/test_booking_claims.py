"""
Tests for the idempotency ledger.
"""

import pytest

from sarah_booking.core.errors import DuplicateBookingError
from sarah_booking.crud.booking_claim import (
    BOOKED,
    PENDING,
    claim_booking,
    complete_claim,
    get_claim,
    release_claim,
)


@pytest.mark.unit
class TestBookingClaims:
    @pytest.mark.asyncio
    async def test_first_claim_is_pending(self, db_session):
        claim = await claim_booking(db_session, "call_a", phone="9378843414")
        assert claim.status == PENDING
        assert claim.job_id is None
        assert claim.created_at is not None

    @pytest.mark.asyncio
    async def test_second_claim_is_duplicate(self, db_session):
        await claim_booking(db_session, "call_a")
        with pytest.raises(DuplicateBookingError) as exc:
            await claim_booking(db_session, "call_a")
        assert exc.value.reason == "idempotency_key"
        assert exc.value.job_id is None

    @pytest.mark.asyncio
    async def test_completed_claim_reports_job(self, db_session):
        await claim_booking(db_session, "call_b")
        await complete_claim(db_session, "call_b", 8812)

        claim = await get_claim(db_session, "call_b")
        assert claim.status == BOOKED
        assert claim.job_id == 8812

        with pytest.raises(DuplicateBookingError) as exc:
            await claim_booking(db_session, "call_b")
        assert exc.value.job_id == 8812

    @pytest.mark.asyncio
    async def test_release_frees_pending_key(self, db_session):
        await claim_booking(db_session, "call_c")
        await release_claim(db_session, "call_c")
        assert await get_claim(db_session, "call_c") is None

        again = await claim_booking(db_session, "call_c")
        assert again.status == PENDING

    @pytest.mark.asyncio
    async def test_release_keeps_booked_claims(self, db_session):
        await claim_booking(db_session, "call_d")
        await complete_claim(db_session, "call_d", 42)
        await release_claim(db_session, "call_d")
        assert (await get_claim(db_session, "call_d")).job_id == 42

    @pytest.mark.asyncio
    async def test_keys_are_independent(self, db_session):
        await claim_booking(db_session, "call_e")
        other = await claim_booking(db_session, "call_f")
        assert other.idempotency_key == "call_f"
