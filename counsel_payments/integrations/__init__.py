"""Checkout provider integrations."""
from counsel_payments.integrations.paychangu import (
    build_checkout_config,
    callback_url,
    verify_signature,
)

__all__ = ["build_checkout_config", "callback_url", "verify_signature"]
