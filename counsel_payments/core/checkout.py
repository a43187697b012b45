"""
Checkout initiation.

Records the checkout attempt server-side before the browser opens the
provider popup, so reconciliation can read the agreed amount back instead of
trusting whatever the browser returns.
"""
from dataclasses import dataclass
from typing import Any, Dict, Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from counsel_payments.config import get_settings
from counsel_payments.core.access import ensure_can_pay
from counsel_payments.core.errors import (
    InternalError,
    NotFoundError,
    PaymentError,
    PaymentValidationError,
    UpstreamFormatError,
)
from counsel_payments.core.money import from_cents, parse_amount, to_cents
from counsel_payments.core.transaction_ref import build_reference
from counsel_payments.database.models import CaseStatus, PaymentStatus, PendingTransaction
from counsel_payments.database.repository import PaymentRepository
from counsel_payments.integrations.paychangu import build_checkout_config
from counsel_payments.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


@dataclass
class CheckoutSession:
    pending: PendingTransaction
    config: Dict[str, Any]


class CheckoutService:
    """Starts provider checkouts for cases."""

    def __init__(self) -> None:
        self.settings = get_settings()

    async def start_checkout(
        self,
        db: AsyncSession,
        case_id: Optional[str],
        user_id: str,
        role: str,
        raw_amount: Any = None,
    ) -> CheckoutSession:
        """
        Create a pending transaction and the provider popup configuration.

        Args:
            db: Database session (committed on success)
            case_id: Case to pay for
            user_id: Authenticated caller
            role: Caller's role
            raw_amount: Optional amount; defaults to the lawyer's hourly rate

        Returns:
            CheckoutSession: Stored pending transaction and popup config

        Raises:
            PaymentValidationError: Closed case, already paid, bad amount
            NotFoundError: Case or caller does not exist
            AuthorizationError: Caller is not the case's client or an admin
            InternalError: Data-access failure
        """
        try:
            session = await self._start_checkout(db, case_id, user_id, role, raw_amount)
            await db.commit()
        except PaymentError:
            await db.rollback()
            raise
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error("checkout_database_error", case_id=case_id, error=str(e), exc_info=True)
            raise InternalError() from e

        metrics.record_checkout()
        logger.info(
            "checkout_started",
            case_id=session.pending.case_id,
            tx_ref=session.pending.tx_ref,
            amount_cents=session.pending.amount_cents,
        )
        return session

    async def _start_checkout(
        self,
        db: AsyncSession,
        case_id: Optional[str],
        user_id: str,
        role: str,
        raw_amount: Any,
    ) -> CheckoutSession:
        case_id = (case_id or "").strip()
        if not case_id:
            raise PaymentValidationError("Missing required fields")

        repo = PaymentRepository(db)
        case = await repo.find_case_by_id(case_id)
        if case is None:
            raise NotFoundError()
        ensure_can_pay(case, user_id, role)

        if case.status == CaseStatus.CLOSED.value:
            raise PaymentValidationError("Case is closed")

        payment = await repo.find_payment_by_case_id(case_id)
        if payment is not None and payment.status == PaymentStatus.COMPLETED.value:
            raise PaymentValidationError("Case is already paid")

        try:
            amount = parse_amount(raw_amount)
        except UpstreamFormatError as e:
            raise PaymentValidationError("Invalid amount") from e

        if amount is not None:
            amount_cents = to_cents(amount)
        else:
            amount_cents = await repo.find_lawyer_hourly_rate(case.lawyer_id) or 0
        if amount_cents <= 0:
            raise PaymentValidationError("Amount must be positive")

        customer = await repo.find_user_by_id(user_id)
        if customer is None:
            raise NotFoundError("User not found")

        tx_ref = build_reference(case.id)
        pending = await repo.create_pending_transaction(
            tx_ref=tx_ref,
            case_id=case.id,
            user_id=user_id,
            amount_cents=amount_cents,
            currency=self.settings.payment_currency,
        )
        config = build_checkout_config(
            tx_ref=tx_ref,
            amount=from_cents(amount_cents),
            case_id=case.id,
            case_title=case.title,
            user_id=user_id,
            email=customer.email,
            name=customer.name,
            settings=self.settings,
        )
        return CheckoutSession(pending=pending, config=config)
