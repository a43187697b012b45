"""FastAPI application and routes."""
from .main import app
from .schemas import (
    CallbackPayload,
    CheckoutRequest,
    CheckoutResponse,
    ProcessPaymentRequest,
    ProcessPaymentResponse,
)

__all__ = [
    "app",
    "CallbackPayload",
    "CheckoutRequest",
    "CheckoutResponse",
    "ProcessPaymentRequest",
    "ProcessPaymentResponse",
]
