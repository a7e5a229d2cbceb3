# sarah_booking/services/identity.py
"""
Caller identity: phone -> ServiceTitan customer + service location.

Creates the minimum records when nothing matches. A booking for a different
property adds a Location; it never rewrites the customer's home address.
"""
from __future__ import annotations

import re
import time
from dataclasses import dataclass, field
from typing import Optional

from sarah_booking.core.config import settings
from sarah_booking.core.errors import BookingFailedError, ExternalApiError, InvalidPhoneError
from sarah_booking.core.logging import get_logger, mask_phone
from sarah_booking.schemas.booking import BookingRequest
from sarah_booking.schemas.servicetitan import Address, Customer, Location
from sarah_booking.utils.phone import normalize_phone

logger = get_logger(__name__)

_STREET_ABBREVIATIONS = {
    "street": "st", "avenue": "ave", "av": "ave", "road": "rd", "drive": "dr",
    "lane": "ln", "boulevard": "blvd", "court": "ct", "place": "pl",
    "circle": "cir", "parkway": "pkwy", "highway": "hwy", "terrace": "ter",
    "north": "n", "south": "s", "east": "e", "west": "w",
    "apartment": "apt", "suite": "ste",
}


@dataclass
class ResolvedIdentity:
    customer_id: int
    location_id: int
    customer_name: str = ""
    created_customer: bool = False
    created_location: bool = False


def normalize_street(street: Optional[str]) -> str:
    tokens = re.findall(r"[a-z0-9]+", (street or "").lower())
    return " ".join(_STREET_ABBREVIATIONS.get(t, t) for t in tokens)


def same_address(on_file: Address, street: Optional[str], zip_code: Optional[str]) -> bool:
    """Street match after normalization; zip only compared when both sides have one."""
    if normalize_street(on_file.street) != normalize_street(street):
        return False
    a, b = (on_file.zip or "")[:5], (zip_code or "")[:5]
    return not a or not b or a == b


def request_address(request: BookingRequest) -> Address:
    return Address(
        street=request.street or "",
        city=request.city or "",
        state=request.state or settings.DEFAULT_STATE,
        zip=request.zip or "",
    )


async def find_customer_by_phone(gateway, phone: str, *, strict: Optional[bool] = None) -> Optional[Customer]:
    """
    First customer the platform returns for ``phone``.

    In strict mode each candidate's contact list must contain the number;
    candidates that don't are skipped.
    """
    strict = settings.STRICT_PHONE_MATCH if strict is None else strict
    candidates = await gateway.find_customers_by_phone(phone)
    if not candidates:
        return None
    if not strict:
        if len(candidates) > 1:
            logger.info("customer_lookup_multiple", phone=mask_phone(phone),
                        candidates=len(candidates), chosen=candidates[0].id)
        return candidates[0]

    for candidate in candidates:
        for contact in await gateway.list_customer_contacts(candidate.id):
            try:
                if normalize_phone(contact.value) == phone:
                    return candidate
            except InvalidPhoneError:
                continue
    logger.info("customer_lookup_no_exact_match", phone=mask_phone(phone), candidates=len(candidates))
    return None


async def _pick_location(gateway, customer: Customer, request: BookingRequest, phone: str) -> tuple[int, bool]:
    locations: list[Location] = await gateway.list_locations(customer.id)
    address = request_address(request)

    matching = next((loc for loc in locations if same_address(loc.address, request.street, request.zip)), None)
    if matching:
        return matching.id, False

    if locations and same_address(customer.address, request.street, request.zip):
        return locations[0].id, False

    # different property, or a customer with no locations yet
    name = request.full_name or customer.name
    created = await gateway.create_location(customer.id, name, address, phone)
    logger.info("location_created", customer_id=customer.id, location_id=created.id,
                had_locations=bool(locations))
    return created.id, True


async def resolve_identity(
    gateway,
    request: BookingRequest,
    phone: str,
    *,
    existing: Optional[Customer] = None,
) -> ResolvedIdentity:
    """Customer + location ids for this booking, creating records as needed."""
    try:
        if existing is None:
            name = request.full_name
            created = await gateway.create_customer(name, request_address(request), phone)
            if not created.locations:
                raise BookingFailedError("customer created without a location")
            logger.info("customer_created", customer_id=created.id, phone=mask_phone(phone))
            return ResolvedIdentity(
                customer_id=created.id,
                location_id=created.locations[0].id,
                customer_name=name,
                created_customer=True,
                created_location=True,
            )

        location_id, created_location = await _pick_location(gateway, existing, request, phone)
        return ResolvedIdentity(
            customer_id=existing.id,
            location_id=location_id,
            customer_name=existing.name or request.full_name,
            created_location=created_location,
        )
    except ExternalApiError as e:
        raise BookingFailedError(f"identity resolution failed: {e}") from e


# ---------- Caller lookup for the check-customer tool / inbound webhook ----------

@dataclass
class CallerProfile:
    found: bool
    customer_id: Optional[int] = None
    name: str = ""
    address: Address = field(default_factory=Address)

    @property
    def first_name(self) -> str:
        return (self.name or "").split(" ")[0]


class CallerLookupCache:
    """Per-process cache of phone -> CallerProfile, five minutes by default."""

    def __init__(self, ttl_seconds: float = 300.0):
        self.ttl_seconds = ttl_seconds
        self._entries: dict[str, tuple[float, CallerProfile]] = {}

    def get(self, phone: str) -> Optional[CallerProfile]:
        entry = self._entries.get(phone)
        if entry is None:
            return None
        stored_at, profile = entry
        if time.monotonic() - stored_at > self.ttl_seconds:
            self._entries.pop(phone, None)
            return None
        return profile

    def set(self, phone: str, profile: CallerProfile) -> None:
        now = time.monotonic()
        self._entries = {
            key: entry for key, entry in self._entries.items()
            if now - entry[0] <= self.ttl_seconds
        }
        self._entries[phone] = (now, profile)

    def __len__(self) -> int:
        return len(self._entries)

    def clear(self) -> None:
        self._entries.clear()


caller_cache = CallerLookupCache()


async def lookup_caller(gateway, phone: str, *, cache: Optional[CallerLookupCache] = caller_cache) -> CallerProfile:
    """Look up a normalized phone; ExternalApiError propagates to the route."""
    if cache is not None:
        cached = cache.get(phone)
        if cached is not None:
            logger.debug("caller_cache_hit", phone=mask_phone(phone))
            return cached

    customer = await find_customer_by_phone(gateway, phone)
    if customer is None:
        profile = CallerProfile(found=False)
    else:
        profile = CallerProfile(found=True, customer_id=customer.id, name=customer.name, address=customer.address)

    if cache is not None:
        cache.set(phone, profile)
    return profile
