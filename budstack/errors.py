"""Exception hierarchy for the BudStack integration layer.

Exception Hierarchy:
    BudStackError (base)
    ├── ConfigurationError - Required settings are missing
    ├── CredentialError - Credential pair cannot be used
    │   ├── MissingCredentialsError - API key or secret absent
    │   ├── SigningError - Key material cannot sign
    │   └── DecryptionError - Stored value cannot be decrypted
    ├── ExternalApiError - Non-2xx or transport failure from Dr. Green
    ├── UpstreamLogicError - 2xx response with a failed envelope
    ├── DeliveryFailure - Webhook POST failed (internal to the dispatcher)
    ├── InvalidSubscriptionError - Subscription input rejected
    └── SubscriptionNotFoundError - Subscription missing or not owned
"""

from typing import Any


class BudStackError(Exception):
    """Base exception for all BudStack errors.

    Attributes:
        message: Human-readable error message.
        details: Additional error details.
    """

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for logging/API responses."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationError(BudStackError):
    """A required setting is missing or invalid."""


class CredentialError(BudStackError):
    """The external credential pair cannot be used for a call."""


class MissingCredentialsError(CredentialError):
    """API key or secret key is absent.

    Raised before any network call is attempted.
    """

    code = "MISSING_CREDENTIALS"

    def __init__(
        self,
        message: str = "MISSING_CREDENTIALS",
        *,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details=details)


class SigningError(CredentialError):
    """Key material is malformed and cannot produce a signature."""


class DecryptionError(CredentialError):
    """An encrypted value is malformed or fails authentication."""


class ExternalApiError(BudStackError):
    """The Dr. Green API answered outside the 2xx range.

    A status code of 0 means the request never got a response
    (connection error, timeout).

    Attributes:
        status_code: HTTP status code.
        status_text: HTTP reason phrase.
        body: Parsed JSON error body, or the raw text when unparseable.
    """

    def __init__(
        self,
        status_code: int,
        status_text: str = "",
        body: Any = None,
    ) -> None:
        super().__init__(
            f"Doctor Green API Error: {status_code} {status_text} - {body!r}",
            details={"status_code": status_code},
        )
        self.status_code = status_code
        self.status_text = status_text
        self.body = body

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        base = super().to_dict()
        base.update(
            {
                "status_code": self.status_code,
                "status_text": self.status_text,
                "body": self.body,
            }
        )
        return base


class UpstreamLogicError(BudStackError):
    """A 2xx response whose envelope reports failure or cannot be parsed."""

    def __init__(self, message: str, *, body: Any = None) -> None:
        super().__init__(message)
        self.body = body


class DeliveryFailure(BudStackError):
    """A webhook POST returned a non-2xx status.

    Only used inside the dispatcher to drive logging and retries.
    """

    def __init__(self, status_code: int, response: str = "") -> None:
        super().__init__(f"HTTP {status_code}", details={"status_code": status_code})
        self.status_code = status_code
        self.response = response


class InvalidSubscriptionError(BudStackError):
    """Subscription input failed validation."""


class SubscriptionNotFoundError(BudStackError):
    """Subscription does not exist or belongs to another tenant."""


# User-facing messages keyed by substrings of upstream/client errors.
_USER_MESSAGES: list[tuple[str, str]] = [
    (
        "complete consultation",
        "Please complete your medical consultation before placing orders",
    ),
    (
        "MISSING_CREDENTIALS",
        "This store is not connected to Dr. Green yet. Please contact the store administrator.",
    ),
    ("Cart is empty", "Your cart is empty. Add items before placing an order."),
]

GENERIC_UPSTREAM_MESSAGE = "Could not complete the request with Dr. Green. Please try again."


def describe_upstream_error(exc: BaseException) -> str:
    """Turn a client or upstream error into a message safe to show a user.

    Args:
        exc: Error raised by the Dr. Green client or a caller.

    Returns:
        Human-readable message.
    """
    text = str(exc)
    if isinstance(exc, MissingCredentialsError):
        text = exc.code
    for needle, message in _USER_MESSAGES:
        if needle.lower() in text.lower():
            return message
    if isinstance(exc, UpstreamLogicError):
        return exc.message
    return GENERIC_UPSTREAM_MESSAGE
