"""Payment reconciliation core."""
from counsel_payments.core.errors import (
    AuthenticationError,
    AuthorizationError,
    InternalError,
    NotFoundError,
    PaymentError,
    PaymentValidationError,
    UpstreamFormatError,
)
from counsel_payments.core.policy import Outcome
from counsel_payments.core.reconciliation import (
    Channel,
    ReconciliationResult,
    ReconciliationService,
)
from counsel_payments.core.status import normalize_status

__all__ = [
    "AuthenticationError",
    "AuthorizationError",
    "Channel",
    "InternalError",
    "NotFoundError",
    "Outcome",
    "PaymentError",
    "PaymentValidationError",
    "ReconciliationResult",
    "ReconciliationService",
    "UpstreamFormatError",
    "normalize_status",
]
