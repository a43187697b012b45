"""Provider status token normalization."""
from typing import Any

from counsel_payments.database.models import PaymentStatus

COMPLETED_TOKENS = frozenset({"successful", "success", "completed"})
FAILED_TOKENS = frozenset({"failed", "failure", "error"})
CANCELLED_TOKENS = frozenset({"cancelled", "canceled"})

# Provider redirects without a status on success.
IMPLICIT_LANDING_STATUS = "successful"


def _token(raw: Any) -> str:
    if not isinstance(raw, str):
        return ""
    return raw.strip().lower()


def normalize_status(raw: Any) -> PaymentStatus:
    """
    Map a free-text provider status onto a PaymentStatus.

    Total: unknown wording, empty strings, None and non-string values all
    map to PENDING, so a provider wording change never loses a transaction.

    Args:
        raw: Status token as received from the provider

    Returns:
        PaymentStatus: COMPLETED, FAILED or PENDING
    """
    token = _token(raw)
    if token in COMPLETED_TOKENS:
        return PaymentStatus.COMPLETED
    if token in FAILED_TOKENS:
        return PaymentStatus.FAILED
    return PaymentStatus.PENDING


def is_cancelled(raw: Any) -> bool:
    """True when the provider reports a checkout the user abandoned."""
    return _token(raw) in CANCELLED_TOKENS
