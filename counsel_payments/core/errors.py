"""
Payment error taxonomy.

Every error carries a machine-readable code, a message that is safe to show
to the caller, and the HTTP status the API layer answers with.
"""
from typing import Any, Dict, Optional


class PaymentError(Exception):
    """Base exception for payment processing errors."""

    error_code = "payment_error"
    http_status = 500
    default_message = "Payment processing failed"

    def __init__(self, message: Optional[str] = None, **context: Any):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.context = context

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for API responses"""
        return {"error": self.message, "code": self.error_code}


class PaymentValidationError(PaymentError):
    """Missing or inconsistent input; the caller can retry with corrected data."""

    error_code = "validation_error"
    http_status = 400
    default_message = "Missing required fields"


class AuthenticationError(PaymentError):
    """No usable session token."""

    error_code = "unauthorized"
    http_status = 401
    default_message = "Unauthorized"


class AuthorizationError(PaymentError):
    """Authenticated caller may not act on this case."""

    error_code = "forbidden"
    http_status = 403
    default_message = "Forbidden"


class NotFoundError(PaymentError):
    """Referenced case does not exist. Not retryable."""

    error_code = "not_found"
    http_status = 404
    default_message = "Case not found"


class UpstreamFormatError(PaymentError):
    """
    Provider sent a value we cannot parse (e.g. the amount).

    Never surfaced to callers: reconciliation logs it and falls back to a
    default so a formatting quirk cannot lose a transaction.
    """

    error_code = "upstream_format_error"
    http_status = 400
    default_message = "Unparseable provider value"


class InternalError(PaymentError):
    """Data-access failure. Safe to retry, reconciliation is idempotent."""

    error_code = "internal_error"
    http_status = 500
    default_message = "Internal server error"
