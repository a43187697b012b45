"""
Settlement policy.

Decides what an incoming assertion does to an existing payment. Pure: it
only looks at the row as read and the assertion.

Rules:
- A COMPLETED payment never goes back to PENDING.
- A COMPLETED payment only becomes FAILED when the failure carries a newer
  transaction reference than the one that completed it (reversal or a new
  checkout attempt). A failure for the same checkout is stale and ignored,
  as is a failure whose reference was generated here because the browser
  came back without one.
- Everything else is last-write-wins.
"""
import enum
from typing import Optional

from counsel_payments.core.transaction_ref import is_newer_reference
from counsel_payments.database.models import Payment, PaymentStatus


class Outcome(str, enum.Enum):
    CREATED = "created"
    TRANSITIONED = "transitioned"
    REFRESHED = "refreshed"
    UNCHANGED = "unchanged"
    IGNORED = "ignored"


WRITING_OUTCOMES = frozenset({Outcome.CREATED, Outcome.TRANSITIONED, Outcome.REFRESHED})


def decide(
    existing: Optional[Payment],
    status: PaymentStatus,
    transaction_id: str,
    amount_cents: int,
    reference_generated: bool = False,
) -> Outcome:
    """
    Classify an assertion against the current payment row.

    Args:
        existing: Payment as read, None if the case has none yet
        status: Normalized asserted status
        transaction_id: Asserted transaction reference
        amount_cents: Resolved settlement amount
        reference_generated: The reference was made up locally, not
            reported by the provider

    Returns:
        Outcome: What applying the assertion amounts to
    """
    if existing is None:
        return Outcome.CREATED

    if existing.status == PaymentStatus.COMPLETED.value:
        if status == PaymentStatus.PENDING:
            return Outcome.IGNORED
        if status == PaymentStatus.FAILED and (
            reference_generated
            or not is_newer_reference(transaction_id, existing.transaction_id)
        ):
            return Outcome.IGNORED

    if existing.status != status.value:
        return Outcome.TRANSITIONED

    if existing.transaction_id == transaction_id and existing.amount_cents == amount_cents:
        return Outcome.UNCHANGED
    return Outcome.REFRESHED


def notifies(outcome: Outcome, status: PaymentStatus) -> bool:
    """Settlement notifications go out once, on entering COMPLETED."""
    return status == PaymentStatus.COMPLETED and outcome in (
        Outcome.CREATED,
        Outcome.TRANSITIONED,
    )
