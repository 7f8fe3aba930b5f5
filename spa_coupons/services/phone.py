from __future__ import annotations

import re

from spa_coupons.services.errors import InvalidPhone

_E164 = re.compile(r"^\+\d{1,15}$")
_NON_DIGITS = re.compile(r"\D")


def normalize_phone(phone: str | None, *, default_country_code: str = "90") -> str:
    """
    Normalize a customer phone number to E.164.

    Accepted inputs (with the default Turkish country code):
      +905551234567, 905551234567, 05551234567, 5551234567, "+90 555 123 45 67"
    """
    raw = (phone or "").strip()
    if not raw:
        raise InvalidPhone("Phone number is required")

    has_plus = raw.startswith("+")
    digits = _NON_DIGITS.sub("", raw)
    if not digits:
        raise InvalidPhone("Phone number contains no digits")

    cc = default_country_code
    if has_plus:
        normalized = "+" + digits
    elif digits.startswith(cc):
        normalized = "+" + digits
    elif digits.startswith("0"):
        normalized = "+" + cc + digits[1:]
    elif len(digits) == 10:
        normalized = "+" + cc + digits
    else:
        normalized = "+" + digits

    if not _E164.match(normalized):
        raise InvalidPhone(f"Invalid phone number format: {mask_phone(raw)}")

    # Turkish numbers carry exactly 10 national digits
    if normalized.startswith("+90") and len(normalized) != 13:
        raise InvalidPhone("Invalid Turkish phone number (expected 10 digits after +90)")

    return normalized


def mask_phone(phone: str | None) -> str:
    """+905551234567 -> *********4567"""
    if not phone:
        return ""
    s = str(phone)
    if len(s) <= 4:
        return "*" * (len(s) - 1) + s[-1:]
    return "*" * (len(s) - 4) + s[-4:]


def mask_token(token: str | None) -> str:
    """ABC123DEF456 -> ABC1****F456"""
    if not token:
        return ""
    s = str(token)
    if len(s) <= 4:
        return s
    if len(s) <= 8:
        return s[:2] + "*" * (len(s) - 4) + s[-2:]
    return s[:4] + "*" * (len(s) - 8) + s[-4:]
