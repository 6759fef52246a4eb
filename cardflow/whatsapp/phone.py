"""Brazilian mobile numbers as used by WPP-Connect: 55 + DDD + 9 + 8 digits."""

import re

from cardflow.core.exceptions import BadRequestError

_NON_DIGITS = re.compile(r"\D")


class InvalidPhoneError(BadRequestError):
    def __init__(self, phone: str | None, message: str):
        self.phone = phone
        super().__init__(message, code="INVALID_PHONE")


def extract_digits(value: str) -> str:
    return _NON_DIGITS.sub("", value or "")


def normalize_brazilian_phone(raw: str) -> str:
    if not raw or not isinstance(raw, str):
        raise InvalidPhoneError(raw, "Phone number is required")
    digits = extract_digits(raw)
    if len(digits) < 8:
        raise InvalidPhoneError(raw, "Phone number too short")

    if len(digits) == 13 and digits.startswith("55"):
        return digits
    if len(digits) == 12 and digits.startswith("55"):
        # landline-style subscriber: insert the mobile 9 after the DDD
        return f"55{digits[2:4]}9{digits[4:]}"
    if len(digits) == 11:
        return f"55{digits}"
    if len(digits) == 10:
        return f"55{digits[:2]}9{digits[2:]}"
    if len(digits) in (8, 9):
        raise InvalidPhoneError(raw, "Phone number missing DDD (area code)")
    raise InvalidPhoneError(raw, f"Invalid phone number format: {len(digits)} digits")


def extract_phone_from_wpp_id(wpp_id: str) -> str:
    """'5511999998888@c.us' -> '5511999998888'."""
    if not wpp_id or not isinstance(wpp_id, str):
        raise InvalidPhoneError(wpp_id, "WPP ID is required")
    parts = wpp_id.split("@")
    if len(parts) != 2:
        raise InvalidPhoneError(wpp_id, "Invalid WPP ID format")
    digits = extract_digits(parts[0])
    if len(digits) < 10:
        raise InvalidPhoneError(wpp_id, "Invalid phone number in WPP ID")
    return digits


def is_valid_brazilian_phone(phone: str) -> bool:
    digits = extract_digits(phone) if isinstance(phone, str) else ""
    if len(digits) != 13 or not digits.startswith("55"):
        return False
    if not 11 <= int(digits[2:4]) <= 99:
        return False
    return digits[4] == "9"


def is_whitelisted_admin(phone: str, whitelist: list[str]) -> bool:
    if not phone or not whitelist:
        return False
    try:
        normalized = normalize_brazilian_phone(phone)
    except InvalidPhoneError:
        digits = extract_digits(phone)
        return any(extract_digits(w) == digits for w in whitelist)
    for entry in whitelist:
        try:
            if normalize_brazilian_phone(entry) == normalized:
                return True
        except InvalidPhoneError:
            if extract_digits(entry) == normalized:
                return True
    return False


def format_phone_for_display(phone: str) -> str:
    digits = extract_digits(phone)
    if len(digits) >= 4:
        return f"****-{digits[-4:]}"
    return "****"
