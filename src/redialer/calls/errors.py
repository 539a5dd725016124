"""
Exceptions raised by the redial core.
"""

from typing import Any

from redialer.shared.phone import InvalidPhoneNumberError


class RedialError(Exception):
    """Base exception for redial scheduling errors."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.error_code = error_code
        self.details = details or {}


class MalformedRecordError(RedialError):
    """A retry record cannot be dispatched and must be quarantined."""

    def __init__(self, reason: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(reason, error_code="MALFORMED_RECORD", details=details)
        self.reason = reason


class DispatchTimeoutError(RedialError):
    """The voice provider did not answer a dispatch within the bounded timeout."""


__all__ = [
    "DispatchTimeoutError",
    "InvalidPhoneNumberError",
    "MalformedRecordError",
    "RedialError",
]
