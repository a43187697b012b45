"""
Payment reconciliation.

Both inbound channels (the provider's server callback and the browser
landing flow) feed the same operation:

1. Validate the case id and transaction reference
2. Load the case
3. Normalize the provider status
4. Resolve the settlement amount
5. Upsert the payment (insert or compare-and-set, retried on conflict)
6. Notify client and lawyer on entering COMPLETED
7. Record the audit event (not for exact repeats) and commit

Re-running the operation with the same assertion is a no-op after the first
success, so every failure is safe to retry.
"""
import enum
import time
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Dict, Optional, Tuple

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from counsel_payments.config import get_settings
from counsel_payments.core.errors import (
    InternalError,
    NotFoundError,
    PaymentError,
    PaymentValidationError,
    UpstreamFormatError,
)
from counsel_payments.core.money import format_amount, parse_amount, to_cents
from counsel_payments.core.policy import WRITING_OUTCOMES, Outcome, decide, notifies
from counsel_payments.core.status import IMPLICIT_LANDING_STATUS, normalize_status
from counsel_payments.core.transaction_ref import build_reference, parse_reference
from counsel_payments.database.models import (
    Case,
    Payment,
    PaymentStatus,
    PendingTransaction,
    utcnow,
)
from counsel_payments.database.repository import PaymentRepository
from counsel_payments.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


class Channel(str, enum.Enum):
    """Where a payment assertion came from."""

    CALLBACK = "callback"  # provider server-to-server
    LANDING = "landing"  # browser redirect, then authenticated process call


@dataclass
class ReconciliationResult:
    payment: Payment
    outcome: Outcome
    previous_status: Optional[str]
    notified: bool = False

    @property
    def status(self) -> str:
        return self.payment.status


class ReconciliationService:
    """
    Applies provider payment assertions to the per-case payment record.

    Lock-free: the unique case_id key settles create races and
    compare-and-set updates settle update races. The service owns the
    transaction and commits once at the end.
    """

    def __init__(self, max_attempts: Optional[int] = None):
        settings = get_settings()
        self.settings = settings
        self.max_attempts = max_attempts or settings.reconciliation_max_attempts

    async def reconcile(
        self,
        db: AsyncSession,
        case_id: Optional[str],
        transaction_ref: Optional[str],
        raw_status: Any,
        raw_amount: Any,
        channel: Channel,
        authorize: Optional[Callable[[Case], None]] = None,
    ) -> ReconciliationResult:
        """
        Reconcile one payment assertion.

        Args:
            db: Database session (committed on success, rolled back on error)
            case_id: Case the payment settles
            transaction_ref: Provider transaction reference
            raw_status: Status token as received, may be None
            raw_amount: Amount as received, may be None or malformed
            channel: Inbound channel
            authorize: Optional check run against the loaded case; raises
                AuthorizationError to reject the caller

        Returns:
            ReconciliationResult: Resulting payment and what happened to it

        Raises:
            PaymentValidationError: Missing case id or reference, or a
                reference that belongs to another case
            NotFoundError: Case does not exist
            InternalError: Data-access failure or too many lost races
        """
        started = time.perf_counter()
        log = logger.bind(case_id=case_id, channel=channel.value, tx_ref=transaction_ref)
        log.info("reconciliation_started", raw_status=raw_status)

        try:
            result = await self._reconcile(
                db, case_id, transaction_ref, raw_status, raw_amount, channel, authorize, log
            )
            await db.commit()
        except PaymentError as e:
            await db.rollback()
            metrics.record_reconciliation_error(channel.value, e.error_code)
            log.warning("reconciliation_rejected", error_code=e.error_code, error=e.message)
            raise
        except SQLAlchemyError as e:
            await db.rollback()
            metrics.record_reconciliation_error(channel.value, InternalError.error_code)
            log.error("reconciliation_database_error", error=str(e), exc_info=True)
            raise InternalError() from e
        except Exception:
            await db.rollback()
            metrics.record_reconciliation_error(channel.value, InternalError.error_code)
            log.error("reconciliation_failed", exc_info=True)
            raise

        metrics.record_reconciliation(
            channel.value,
            result.outcome.value,
            result.status,
            time.perf_counter() - started,
        )
        log.info(
            "reconciliation_completed",
            payment_id=result.payment.id,
            outcome=result.outcome.value,
            status=result.status,
            previous_status=result.previous_status,
            notified=result.notified,
        )
        return result

    async def get_case_payment(
        self,
        db: AsyncSession,
        case_id: str,
        authorize: Optional[Callable[[Case], None]] = None,
    ) -> Tuple[Case, Optional[Payment]]:
        """
        Load a case and its payment (if any) for status polling.

        Raises:
            NotFoundError: Case does not exist
            InternalError: Data-access failure
        """
        repo = PaymentRepository(db)
        try:
            case = await repo.find_case_by_id(case_id)
            if case is None:
                raise NotFoundError()
            if authorize is not None:
                authorize(case)
            return case, await repo.find_payment_by_case_id(case_id)
        except SQLAlchemyError as e:
            logger.error("payment_status_database_error", case_id=case_id, error=str(e))
            raise InternalError() from e

    async def _reconcile(
        self,
        db: AsyncSession,
        case_id: Optional[str],
        transaction_ref: Optional[str],
        raw_status: Any,
        raw_amount: Any,
        channel: Channel,
        authorize: Optional[Callable[[Case], None]],
        log: Any,
    ) -> ReconciliationResult:
        case_id = (case_id or "").strip()
        if not case_id:
            raise PaymentValidationError("Missing required fields")

        transaction_ref = (transaction_ref or "").strip()
        generated = not transaction_ref
        if generated:
            if channel == Channel.CALLBACK:
                raise PaymentValidationError("Missing required fields")
            transaction_ref = build_reference(case_id)
            log = log.bind(tx_ref=transaction_ref)
            log.info("transaction_reference_generated")

        parsed = parse_reference(transaction_ref)
        if parsed is not None and parsed.case_id != case_id:
            raise PaymentValidationError("Transaction reference does not match case")

        repo = PaymentRepository(db)
        case = await repo.find_case_by_id(case_id)
        if case is None:
            raise NotFoundError()
        if authorize is not None:
            authorize(case)

        if raw_status is None and channel == Channel.LANDING:
            raw_status = IMPLICIT_LANDING_STATUS
        status = normalize_status(raw_status)

        pending = await repo.find_pending_transaction(transaction_ref)
        if pending is not None and pending.case_id != case_id:
            raise PaymentValidationError("Transaction reference does not match case")

        supplied_cents = self._parse_supplied_amount(raw_amount, log)
        hourly_rate: Dict[str, Optional[int]] = {}

        for attempt in range(1, self.max_attempts + 1):
            existing = await repo.find_payment_by_case_id(case_id)
            amount_cents = await self._resolve_amount(
                repo, case, channel, supplied_cents, pending, existing, hourly_rate
            )
            # A made-up reference never replaces one the provider reported
            reference = (
                existing.transaction_id
                if generated and existing is not None and existing.transaction_id
                else transaction_ref
            )
            outcome = decide(
                existing, status, reference, amount_cents, reference_generated=generated
            )
            previous_status = existing.status if existing is not None else None

            if outcome in WRITING_OUTCOMES:
                payment = await repo.upsert_payment(
                    case_id,
                    self._payment_values(case, status, reference, amount_cents),
                    expected=existing,
                )
                if payment is None:
                    metrics.record_upsert_conflict(
                        "insert" if existing is None else "compare_and_set"
                    )
                    log.info("payment_upsert_retry", attempt=attempt)
                    continue
            else:
                payment = existing
                if outcome == Outcome.IGNORED:
                    log.info(
                        "payment_assertion_ignored",
                        current_status=existing.status,
                        current_tx_ref=existing.transaction_id,
                        asserted_status=status.value,
                    )

            notified = False
            if notifies(outcome, status):
                await self._notify_settlement(repo, case, payment)
                metrics.record_settlement(payment.amount_cents)
                notified = True

            if await self._records_event(repo, payment, outcome, status, reference):
                await repo.record_payment_event(
                    payment.id,
                    f"payment.{outcome.value}",
                    {
                        "channel": channel.value,
                        "raw_status": raw_status if isinstance(raw_status, str) else None,
                        "status": status.value,
                        "previous_status": previous_status,
                        "amount_cents": amount_cents,
                        "tx_ref": reference,
                    },
                    correlation_id=str(uuid.uuid4()),
                )
            if pending is not None and outcome != Outcome.IGNORED:
                await repo.mark_pending_transaction(transaction_ref, status.value)

            log.info(
                f"payment_{outcome.value}",
                payment_id=payment.id,
                status=payment.status,
                amount_cents=payment.amount_cents,
            )
            return ReconciliationResult(
                payment=payment,
                outcome=outcome,
                previous_status=previous_status,
                notified=notified,
            )

        log.error("payment_upsert_exhausted", attempts=self.max_attempts)
        raise InternalError("Payment update conflicted too many times, please retry")

    @staticmethod
    async def _records_event(
        repo: PaymentRepository,
        payment: Payment,
        outcome: Outcome,
        status: PaymentStatus,
        reference: str,
    ) -> bool:
        """
        Redelivery must not grow the audit trail: exact repeats leave no
        event, and a rejected assertion is recorded once per reference and
        status.
        """
        if outcome == Outcome.UNCHANGED:
            return False
        if outcome == Outcome.IGNORED:
            return not await repo.has_payment_event(
                payment.id,
                f"payment.{outcome.value}",
                {"tx_ref": reference, "status": status.value},
            )
        return True

    @staticmethod
    def _parse_supplied_amount(raw_amount: Any, log: Any) -> Optional[int]:
        try:
            amount: Optional[Decimal] = parse_amount(raw_amount)
        except UpstreamFormatError as e:
            metrics.record_upstream_format_error("amount")
            log.warning("unparseable_amount", raw_amount=repr(raw_amount), error=e.message)
            return None
        return to_cents(amount) if amount is not None else None

    @staticmethod
    async def _resolve_amount(
        repo: PaymentRepository,
        case: Case,
        channel: Channel,
        supplied_cents: Optional[int],
        pending: Optional[PendingTransaction],
        existing: Optional[Payment],
        hourly_rate: Dict[str, Optional[int]],
    ) -> int:
        """
        Pick the settlement amount, first match wins.

        Callback: supplied, checkout record, existing (if positive), lawyer
        hourly rate, zero. Landing trusts the checkout record over the
        browser-supplied amount.
        """
        pending_cents = pending.amount_cents if pending is not None else None
        existing_cents = (
            existing.amount_cents if existing is not None and existing.amount_cents > 0 else None
        )

        if channel == Channel.LANDING:
            candidates = (pending_cents, supplied_cents, existing_cents)
        else:
            candidates = (supplied_cents, pending_cents, existing_cents)

        amount = next((c for c in candidates if c is not None), None)
        if amount is None:
            if "rate" not in hourly_rate:
                hourly_rate["rate"] = await repo.find_lawyer_hourly_rate(case.lawyer_id)
            amount = hourly_rate["rate"] or 0

        # A settled amount is never wiped by a zero
        if (
            amount == 0
            and existing is not None
            and existing.status == PaymentStatus.COMPLETED.value
            and existing.amount_cents > 0
        ):
            amount = existing.amount_cents
        return amount

    def _payment_values(
        self, case: Case, status: PaymentStatus, transaction_ref: str, amount_cents: int
    ) -> Dict[str, Any]:
        return {
            "user_id": case.client_id,
            "amount_cents": amount_cents,
            "currency": self.settings.payment_currency,
            "status": status.value,
            "transaction_id": transaction_ref,
            "payment_method": self.settings.payment_method_label,
            "updated_at": utcnow(),
        }

    async def _notify_settlement(
        self, repo: PaymentRepository, case: Case, payment: Payment
    ) -> None:
        amount = format_amount(payment.amount_cents, payment.currency)
        await repo.create_notification(
            case.client_id,
            "Payment Completed",
            f'Your payment of {amount} for case "{case.title}" has been completed successfully.',
        )
        metrics.record_notification("client")
        await repo.create_notification(
            case.lawyer_id,
            "Payment Received",
            f'Payment of {amount} received for case "{case.title}".',
        )
        metrics.record_notification("lawyer")
