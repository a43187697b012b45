"""
PayChangu integration.

PayChangu checkout runs in the browser (inline popup). This service only
prepares the popup configuration and verifies the server callback.
"""
import hashlib
import hmac
from decimal import Decimal
from typing import Any, Dict, Optional

import structlog

from counsel_payments.config import Settings, get_settings

logger = structlog.get_logger(__name__)

CALLBACK_PATH = "/payments/callback"
SIGNATURE_HEADER = "Signature"
CHECKOUT_TITLE = "Legal Consultation Payment"
DEFAULT_LAST_NAME = "Client"


def callback_url(settings: Optional[Settings] = None) -> str:
    """Absolute URL the provider posts callbacks (and redirects browsers) to."""
    settings = settings or get_settings()
    return f"{settings.public_base_url}{CALLBACK_PATH}"


def split_name(full_name: Optional[str]) -> tuple[str, str]:
    """First word is the first name; the rest, or 'Client', the last name."""
    parts = (full_name or "").split()
    if not parts:
        return "", DEFAULT_LAST_NAME
    return parts[0], " ".join(parts[1:]) or DEFAULT_LAST_NAME


def build_checkout_config(
    tx_ref: str,
    amount: Decimal,
    case_id: str,
    case_title: str,
    user_id: str,
    email: str,
    name: Optional[str],
    settings: Optional[Settings] = None,
) -> Dict[str, Any]:
    """
    Build the configuration passed to the PayChangu checkout popup.

    Args:
        tx_ref: Transaction reference for this attempt
        amount: Amount to charge
        case_id: Case being paid for
        case_title: Case title shown on the checkout page
        user_id: Paying user
        email: Customer email
        name: Customer full name
        settings: Optional settings override

    Returns:
        Dict[str, Any]: Popup configuration
    """
    settings = settings or get_settings()
    first_name, last_name = split_name(name)
    url = callback_url(settings)

    return {
        "public_key": settings.paychangu_public_key,
        "tx_ref": tx_ref,
        "amount": float(amount),
        "currency": settings.payment_currency,
        "callback_url": url,
        # Closing the popup lands back on the callback as a cancellation
        "return_url": f"{url}?status=cancelled&tx_ref={tx_ref}",
        "customer": {
            "email": email,
            "first_name": first_name,
            "last_name": last_name,
        },
        "customization": {
            "title": CHECKOUT_TITLE,
            "description": f"Payment for case: {case_title}",
        },
        "meta": {
            "caseId": case_id,
            "userId": user_id,
        },
    }


def compute_signature(payload: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of the raw callback body."""
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def verify_signature(payload: bytes, signature: Optional[str], secret: str) -> bool:
    """
    Verify a callback signature.

    Args:
        payload: Raw request body as bytes
        signature: Signature header value
        secret: Shared webhook secret

    Returns:
        bool: True if the signature matches
    """
    if not signature:
        logger.warning("callback_signature_missing")
        return False

    expected = compute_signature(payload, secret)
    is_valid = hmac.compare_digest(expected, signature.strip().lower())
    if not is_valid:
        logger.warning("callback_signature_mismatch")
    return is_valid
