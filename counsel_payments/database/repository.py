"""
Data access for payment reconciliation.

Thin async wrapper over the tables this service reads and writes. Callers
own the transaction: nothing here commits.
"""
from datetime import datetime
from typing import Any, Dict, Optional

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from counsel_payments.database.models import (
    Case,
    LawyerProfile,
    Notification,
    Payment,
    PaymentEvent,
    PendingTransaction,
    User,
    utcnow,
)

logger = structlog.get_logger(__name__)


class PaymentRepository:
    """Repository for payment-related database operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_case_by_id(self, case_id: str) -> Optional[Case]:
        """Get case by ID"""
        result = await self.db.execute(select(Case).where(Case.id == case_id))
        return result.scalar_one_or_none()

    async def find_user_by_id(self, user_id: str) -> Optional[User]:
        """Get user by ID"""
        result = await self.db.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    async def find_lawyer_hourly_rate(self, lawyer_id: str) -> Optional[int]:
        """Hourly rate of a lawyer in minor units, None if not configured."""
        result = await self.db.execute(
            select(LawyerProfile.hourly_rate_cents).where(LawyerProfile.user_id == lawyer_id)
        )
        return result.scalar_one_or_none()

    async def find_payment_by_case_id(self, case_id: str) -> Optional[Payment]:
        """
        Get the payment for a case.

        Always reloads from the database so a row changed by a concurrent
        request is not masked by the session's identity map.
        """
        stmt = (
            select(Payment)
            .where(Payment.case_id == case_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def upsert_payment(
        self,
        case_id: str,
        values: Dict[str, Any],
        expected: Optional[Payment] = None,
    ) -> Optional[Payment]:
        """
        Write the payment for a case without taking locks.

        With no `expected` row, inserts inside a SAVEPOINT. With an `expected`
        row, updates only if status, transaction reference and amount still
        match what the caller read (compare-and-set).

        Args:
            case_id: Case the payment belongs to
            values: Column values to write
            expected: Payment row as previously read, None if none existed

        Returns:
            Optional[Payment]: The written row, or None if a concurrent
            request got there first (caller should re-read and retry)
        """
        if expected is None:
            return await self._insert_payment(case_id, values)
        return await self._compare_and_set_payment(expected, values)

    async def _insert_payment(self, case_id: str, values: Dict[str, Any]) -> Optional[Payment]:
        payment = Payment(case_id=case_id, **values)
        try:
            async with self.db.begin_nested():
                self.db.add(payment)
                await self.db.flush()
        except IntegrityError:
            logger.info("payment_insert_conflict", case_id=case_id)
            return None
        return payment

    async def _compare_and_set_payment(
        self, expected: Payment, values: Dict[str, Any]
    ) -> Optional[Payment]:
        stmt = (
            update(Payment)
            .where(
                Payment.id == expected.id,
                Payment.status == expected.status,
                Payment.transaction_id == expected.transaction_id,
                Payment.amount_cents == expected.amount_cents,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        if result.rowcount == 0:
            logger.info(
                "payment_compare_and_set_lost",
                payment_id=expected.id,
                case_id=expected.case_id,
            )
            return None
        return await self.find_payment_by_case_id(expected.case_id)

    async def create_notification(self, user_id: str, title: str, message: str) -> Notification:
        """Queue a notification row for a user."""
        notification = Notification(user_id=user_id, title=title, message=message)
        self.db.add(notification)
        await self.db.flush()
        return notification

    async def record_payment_event(
        self,
        payment_id: str,
        event_type: str,
        event_data: Dict[str, Any],
        correlation_id: str,
    ) -> None:
        """
        Record a payment event for audit trail.

        Args:
            payment_id: Payment ID
            event_type: Event type
            event_data: Event data
            correlation_id: Correlation ID for tracing
        """
        self.db.add(
            PaymentEvent(
                payment_id=payment_id,
                event_type=event_type,
                event_data=event_data,
                correlation_id=correlation_id,
                created_at=utcnow(),
            )
        )
        await self.db.flush()

    async def has_payment_event(
        self, payment_id: str, event_type: str, matching: Dict[str, Any]
    ) -> bool:
        """Whether an event of this type already carries the given data fields."""
        result = await self.db.execute(
            select(PaymentEvent.event_data).where(
                PaymentEvent.payment_id == payment_id,
                PaymentEvent.event_type == event_type,
            )
        )
        return any(
            all(data.get(key) == value for key, value in matching.items())
            for data in result.scalars()
        )

    async def find_pending_transaction(self, tx_ref: str) -> Optional[PendingTransaction]:
        """Get the checkout record for a transaction reference."""
        result = await self.db.execute(
            select(PendingTransaction).where(PendingTransaction.tx_ref == tx_ref)
        )
        return result.scalar_one_or_none()

    async def create_pending_transaction(
        self,
        tx_ref: str,
        case_id: str,
        user_id: str,
        amount_cents: int,
        currency: str,
    ) -> PendingTransaction:
        """Store a checkout attempt before handing the user to the provider."""
        pending = PendingTransaction(
            tx_ref=tx_ref,
            case_id=case_id,
            user_id=user_id,
            amount_cents=amount_cents,
            currency=currency,
        )
        self.db.add(pending)
        await self.db.flush()
        return pending

    async def mark_pending_transaction(
        self, tx_ref: str, status: str, at: Optional[datetime] = None
    ) -> int:
        """Record the last reconciled status on a checkout record."""
        stmt = (
            update(PendingTransaction)
            .where(PendingTransaction.tx_ref == tx_ref, PendingTransaction.status != status)
            .values(status=status, updated_at=at or utcnow())
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount
