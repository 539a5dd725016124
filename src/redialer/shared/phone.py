"""
Phone number canonicalization.

Every component keys its state by the canonical E.164 form so that
"+1 (555) 010-2030", "5550102030" and "+15550102030" land on the same line.
"""

import re

_NON_DIGITS = re.compile(r"\D")


class InvalidPhoneNumberError(ValueError):
    """Raised when a value cannot be read as a dialable phone number."""

    def __init__(self, value: object) -> None:
        super().__init__(f"Invalid phone number: {value!r}")
        self.value = value


def normalize_phone(value: str | None) -> str:
    """Return the canonical E.164 form of ``value``.

    Ten-digit numbers are treated as North American and get a ``+1`` prefix.
    Explicit international numbers (leading ``+``) keep their country code.

    Raises:
        InvalidPhoneNumberError: empty input, or a digit count outside E.164.
    """
    if value is None:
        raise InvalidPhoneNumberError(value)
    raw = str(value).strip()
    if not raw:
        raise InvalidPhoneNumberError(value)

    digits = _NON_DIGITS.sub("", raw)
    if raw.startswith("+"):
        if not 8 <= len(digits) <= 15 or digits.startswith("0"):
            raise InvalidPhoneNumberError(value)
        return f"+{digits}"

    if len(digits) == 10:
        return f"+1{digits}"
    if len(digits) == 11 and digits.startswith("1"):
        return f"+{digits}"
    raise InvalidPhoneNumberError(value)


def is_valid_phone(value: str | None) -> bool:
    try:
        normalize_phone(value)
    except InvalidPhoneNumberError:
        return False
    return True
