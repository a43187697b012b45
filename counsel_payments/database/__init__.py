"""Database package for payment reconciliation."""
from .connection import close_db, get_db, init_db
from .models import (
    Base,
    Case,
    CaseStatus,
    LawyerProfile,
    Notification,
    Payment,
    PaymentEvent,
    PaymentStatus,
    PendingTransaction,
    User,
    UserRole,
)
from .repository import PaymentRepository

__all__ = [
    "Base",
    "Case",
    "CaseStatus",
    "LawyerProfile",
    "Notification",
    "Payment",
    "PaymentEvent",
    "PaymentRepository",
    "PaymentStatus",
    "PendingTransaction",
    "User",
    "UserRole",
    "close_db",
    "get_db",
    "init_db",
]
