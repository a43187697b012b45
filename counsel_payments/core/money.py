"""
Amount parsing and minor-unit conversion.

Amounts are stored as integer minor units (tambala for MWK) and handled as
Decimal everywhere else. Never use float for money.
"""
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional

from counsel_payments.core.errors import UpstreamFormatError

CENT = Decimal("0.01")

# Payment amounts are BIGINT minor units
MAX_CENTS = 2**63 - 1


def parse_amount(raw: Any) -> Optional[Decimal]:
    """
    Parse a provider or caller supplied amount.

    Args:
        raw: Numeric string, int, float or None

    Returns:
        Optional[Decimal]: Amount rounded to two places, None when absent

    Raises:
        UpstreamFormatError: If the value is present but not a finite,
            non-negative number that fits in BIGINT minor units
    """
    if raw is None:
        return None
    if isinstance(raw, bool):
        raise UpstreamFormatError(f"Boolean is not an amount: {raw!r}")
    if isinstance(raw, str):
        raw = raw.strip().replace(",", "")
        if not raw:
            return None

    try:
        amount = Decimal(str(raw))
    except (InvalidOperation, ValueError) as e:
        raise UpstreamFormatError(f"Unparseable amount: {raw!r}") from e

    if not amount.is_finite():
        raise UpstreamFormatError(f"Amount is not finite: {raw!r}")
    if amount < 0:
        raise UpstreamFormatError(f"Amount is negative: {raw!r}")

    try:
        amount = amount.quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation as e:
        raise UpstreamFormatError(f"Amount out of range: {raw!r}") from e
    if amount * 100 > MAX_CENTS:
        raise UpstreamFormatError(f"Amount out of range: {raw!r}")
    return amount


def to_cents(amount: Decimal) -> int:
    """Convert a decimal amount to integer minor units."""
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_cents(cents: int) -> Decimal:
    """Convert integer minor units back to a two-place Decimal."""
    return (Decimal(cents) / 100).quantize(CENT)


def format_amount(cents: int, currency: str) -> str:
    """Human readable amount, e.g. 'MWK 1,500.00'."""
    return f"{currency} {from_cents(cents):,.2f}"
