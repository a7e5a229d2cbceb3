# sarah_booking/services/campaigns.py
"""Marketing attribution: dialed number -> ServiceTitan campaign id."""
from __future__ import annotations

from typing import Optional

from sarah_booking.core.config import settings
from sarah_booking.core.errors import ExternalApiError, log_error
from sarah_booking.core.logging import get_logger
from sarah_booking.utils.phone import extract_digits

logger = get_logger(__name__)

_campaign_cache: dict[str, int] = {}


def clear_campaign_cache() -> None:
    _campaign_cache.clear()


async def resolve_campaign_id(gateway, dialed_number: Optional[str]) -> int:
    """
    Configured mapping first, then the platform's campaign search, then the
    default campaign. Search failures fall back to the default and are not cached.
    """
    default = settings.ST_CAMPAIGN_ID
    digits = extract_digits(dialed_number)[-10:]
    if len(digits) != 10:
        return default

    mapped = settings.campaign_numbers.get(digits)
    if mapped is not None:
        return mapped

    if digits in _campaign_cache:
        return _campaign_cache[digits]

    try:
        campaign = await gateway.find_campaign_by_phone(digits)
    except ExternalApiError as e:
        log_error(e, {"operation": "resolve_campaign_id"})
        return default

    campaign_id = campaign.id if campaign else default
    _campaign_cache[digits] = campaign_id
    logger.info("campaign_resolved", dialed=digits[-4:], campaign_id=campaign_id,
                matched=campaign is not None)
    return campaign_id
