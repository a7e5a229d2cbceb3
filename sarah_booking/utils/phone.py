# sarah_booking/utils/phone.py
"""
Phone helpers. ``normalize_phone`` is the identity key for customers:
digits only, US national number, exactly 10 digits.
"""
from __future__ import annotations

from typing import Optional

import phonenumbers
from phonenumbers import PhoneNumberFormat

from sarah_booking.core.errors import InvalidPhoneError


def extract_digits(raw: Optional[str]) -> str:
    return "".join(ch for ch in str(raw or "") if ch.isdigit())


def normalize_phone(raw: Optional[str]) -> str:
    """
    "1-937-884-3414" -> "9378843414". Anything that is not 10 digits after
    dropping a leading US country code raises InvalidPhoneError.
    """
    digits = extract_digits(raw)
    if len(digits) == 11 and digits.startswith("1"):
        digits = digits[1:]
    if len(digits) != 10:
        raise InvalidPhoneError(raw)
    return digits


def try_normalize_phone(raw: Optional[str]) -> Optional[str]:
    try:
        return normalize_phone(raw)
    except InvalidPhoneError:
        return None


def format_phone_for_display(raw: Optional[str]) -> str:
    """'9378843414' -> '(937) 884-3414'; unparseable input comes back as given."""
    if not raw:
        return ""
    try:
        parsed = phonenumbers.parse(str(raw), "US")
    except phonenumbers.NumberParseException:
        return str(raw)
    if not phonenumbers.is_possible_number(parsed):
        return str(raw)
    return phonenumbers.format_number(parsed, PhoneNumberFormat.NATIONAL)
