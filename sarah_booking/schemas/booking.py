# sarah_booking/schemas/booking.py
"""
Canonical booking request plus the input adapter that maps the voice
agent's field-name variants onto it. Field-name tolerance lives here
and nowhere else.
"""
from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field

_BLANKS = {"", "null", "none", "n/a", "na", "unknown", "undefined"}

# canonical field -> accepted payload keys, in priority order
_FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "first_name": ("first_name", "firstName", "customer_first_name"),
    "last_name": ("last_name", "lastName", "customer_last_name"),
    "phone": ("phone", "phone_number", "phoneNumber", "callback_number", "customer_phone"),
    "street": ("street", "street_address", "customer_street", "address_line1"),
    "city": ("city", "customer_city"),
    "state": ("state", "customer_state"),
    "zip": ("zip", "zip_code", "zipcode", "postal_code", "customer_zip"),
    "issue": ("issue", "issue_description", "problem", "description", "summary"),
    "day": ("day", "appointment_day", "preferred_day"),
    "time_window": ("time_window", "window", "appointment_window", "preferred_window", "timeWindow"),
    "customer_id": ("customer_id", "customerId"),
}

_FULL_NAME_KEYS = ("customer_name", "name", "full_name", "caller_name")
_CONFIRMATION_KEYS = ("should_book", "booking_confirmed", "appointment_booked", "booked")

# (label spoken back to the caller, canonical field)
REQUIRED_FIELDS: tuple[tuple[str, str], ...] = (
    ("first name", "first_name"),
    ("phone", "phone"),
    ("street address", "street"),
    ("city", "city"),
    ("zip code", "zip"),
    ("what the issue is", "issue"),
    ("time window", "time_window"),
)


def clean_value(value: Any) -> Optional[str]:
    """Strip a payload value; blanks and unsubstituted ``{{template}}`` vars become None."""
    if value is None or isinstance(value, (dict, list)):
        return None
    if isinstance(value, bool):
        return None
    text = str(value).strip()
    if text.lower() in _BLANKS or "{{" in text:
        return None
    return text


def parse_flag(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    text = clean_value(value)
    if text is None:
        return None
    lowered = text.lower()
    if lowered in ("true", "yes", "y", "1", "confirmed", "booked"):
        return True
    if lowered in ("false", "no", "n", "0", "declined"):
        return False
    return None


class BookingRequest(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip: Optional[str] = None
    issue: Optional[str] = None
    day: Optional[str] = None
    time_window: Optional[str] = None
    customer_id: Optional[int] = None
    confirmed: Optional[bool] = Field(None, description="Booking confirmed on the call, when known")

    @property
    def full_name(self) -> str:
        parts = [p for p in (self.first_name, self.last_name) if p]
        return " ".join(parts)

    def missing_fields(self) -> list[str]:
        return [label for label, field in REQUIRED_FIELDS if not getattr(self, field)]

    @classmethod
    def from_payload(cls, payload: Optional[dict[str, Any]]) -> "BookingRequest":
        """Build a request from any of the shapes the agent or the analysis step send."""
        payload = payload or {}
        values: dict[str, Any] = {}

        address = payload.get("address")
        if isinstance(address, dict):
            for key in ("street", "city", "state", "zip"):
                values[key] = clean_value(address.get(key))
        elif address is not None:
            values["street"] = clean_value(address)

        for field, keys in _FIELD_ALIASES.items():
            for key in keys:
                value = clean_value(payload.get(key))
                if value is not None:
                    values[field] = value
                    break

        if not values.get("first_name"):
            for key in _FULL_NAME_KEYS:
                full = clean_value(payload.get(key))
                if full:
                    first, _, rest = full.partition(" ")
                    values["first_name"] = first
                    if not values.get("last_name") and rest.strip():
                        values["last_name"] = rest.strip()
                    break

        zip_code = values.get("zip")
        if zip_code:
            digits = "".join(ch for ch in zip_code if ch.isdigit())
            values["zip"] = digits[:5] if len(digits) >= 5 else zip_code

        customer_id = values.get("customer_id")
        values["customer_id"] = int(customer_id) if customer_id and customer_id.isdigit() else None

        for key in _CONFIRMATION_KEYS:
            if key in payload:
                flag = parse_flag(payload.get(key))
                if flag is not None:
                    values["confirmed"] = flag
                    break

        return cls(**{k: v for k, v in values.items() if v is not None})


def unwrap_tool_payload(body: Any) -> dict[str, Any]:
    """
    Custom-function calls arrive either flat or as ``{"name", "call", "args"}``.
    Returns the argument dict in both cases.
    """
    if not isinstance(body, dict):
        return {}
    args = body.get("args")
    if isinstance(args, dict):
        return args
    return body


def call_info(body: Any) -> dict[str, Any]:
    """The ``call`` object of a webhook or function-call body, or ``{}``."""
    if isinstance(body, dict) and isinstance(body.get("call"), dict):
        return body["call"]
    return {}
