"""
Error taxonomy for phone accounts.

Every failure surfaced to a caller is one of these kinds, each with a stable
`kind` string and a human-readable message. Transport layers can map
`status_code` straight onto their own error codes.
"""

from enum import Enum
from typing import Optional


class PhoneAccountsError(Exception):
    """Base class for all errors raised by this package."""

    kind = "error"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.kind, "message": self.message}


class ValidationError(PhoneAccountsError):
    """Malformed or missing input. Not retryable as-is."""

    kind = "validation_error"
    status_code = 400


class NotFoundError(PhoneAccountsError):
    """No account matches the given phone or id."""

    kind = "not_found"
    status_code = 403


class ConflictError(PhoneAccountsError):
    """Uniqueness constraint violated (duplicate phone number)."""

    kind = "conflict"
    status_code = 409


class InternalError(PhoneAccountsError):
    """Store or delivery failure. Safe to retry."""

    kind = "internal_error"
    status_code = 500


class ConfigurationError(PhoneAccountsError):
    """A required setting or collaborator is missing at construction time."""

    kind = "configuration_error"
    status_code = 500


class RateLimitError(PhoneAccountsError):
    """
    Verification code requested too often.

    `wait` is expressed in `unit` ("seconds" or "minutes"), matching the
    message shown to the user. `retry_after` is always in seconds.
    """

    kind = "rate_limited"
    status_code = 429

    def __init__(self, message: str, wait: int, unit: str):
        super().__init__(message)
        self.wait = wait
        self.unit = unit
        self.retry_after = wait * 60 if unit == "minutes" else wait

    def to_dict(self) -> dict:
        result = super().to_dict()
        result["retry_after"] = self.retry_after
        return result


class AuthFailure(str, Enum):
    """Reasons an authentication or verification attempt was rejected."""

    USER_NOT_FOUND = "User not found"
    NO_PASSWORD = "User has no password set"
    INCORRECT_PASSWORD = "Incorrect password"
    INVALID_CODE = "Not a valid code"
    INVALID_PHONE = "Invalid phone"
    NOT_LOGGED_IN = "Must be logged in"
    INVALID_TOKEN = "Invalid session token"


class AuthError(PhoneAccountsError):
    """Wrong password, wrong code or unauthenticated caller."""

    kind = "auth_error"
    status_code = 403

    def __init__(self, reason: AuthFailure, message: Optional[str] = None):
        super().__init__(message or reason.value)
        self.reason = reason
        if reason in (AuthFailure.NOT_LOGGED_IN, AuthFailure.INVALID_TOKEN):
            self.status_code = 401

    @property
    def public_message(self) -> str:
        """
        Message safe to show to the end user.

        Login failures currently keep their detailed wording ("User not
        found" vs "Incorrect password"), so existing clients see the same
        text. Unifying them is a policy change that only touches this property.
        """
        return self.message

    def to_dict(self) -> dict:
        return {"error": self.kind, "message": self.public_message}
