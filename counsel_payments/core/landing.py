"""
Browser landing flow.

After checkout the provider redirects the browser to the callback URL with
`status`, `tx_ref` and `amount` query parameters. The landing planner decides
where the browser goes next. It never shows an error page: anything it
cannot handle becomes a redirect the user can act on.
"""
import enum
from dataclasses import dataclass, field
from typing import Dict, Optional
from urllib.parse import urlencode

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from counsel_payments.config import get_settings
from counsel_payments.core.status import is_cancelled
from counsel_payments.core.transaction_ref import parse_reference
from counsel_payments.database.models import PaymentStatus
from counsel_payments.database.repository import PaymentRepository
from counsel_payments.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

PROCESSING_PATH = "/payments/processing"


class LandingTarget(str, enum.Enum):
    CASES = "cases"
    CANCELLED = "cancelled"
    SUCCESS = "success"
    PROCESSING = "processing"


def _frontend(path: str) -> str:
    return f"{get_settings().frontend_base_url}{path}"


def cases_url() -> str:
    """Client's case list."""
    return _frontend("/dashboard/client/cases")


def login_url() -> str:
    """Sign-in page, for a browser whose session expired mid-payment."""
    return _frontend("/login")


def success_url(case_id: str) -> str:
    """Case list with the payment success banner."""
    return f"{cases_url()}?{urlencode({'payment': 'success', 'caseId': case_id})}"


def retry_url(case_id: str, reason: str) -> str:
    """Case payment page, flagged `cancelled` or `failed`."""
    return _frontend(f"/dashboard/client/cases/{case_id}/payment?{urlencode({'payment': reason})}")


def processing_url(params: Dict[str, str]) -> str:
    """Processing page carrying the provider's query parameters."""
    return f"{PROCESSING_PATH}?{urlencode(params)}"


@dataclass
class LandingPlan:
    target: LandingTarget
    redirect_url: str
    case_id: Optional[str] = None
    params: Dict[str, str] = field(default_factory=dict)


class LandingPlanner:
    """Maps a provider redirect onto the next browser destination."""

    async def plan(
        self,
        db: AsyncSession,
        status: Optional[str],
        tx_ref: Optional[str],
        amount: Optional[str] = None,
    ) -> LandingPlan:
        """
        Plan the redirect for a provider landing.

        Args:
            db: Database session (read-only use)
            status: Provider status query parameter
            tx_ref: Transaction reference query parameter
            amount: Amount query parameter

        Returns:
            LandingPlan: Where to send the browser
        """
        parsed = parse_reference(tx_ref)
        if parsed is None:
            logger.info("landing_unrecognized_reference", tx_ref=tx_ref)
            return self._planned(LandingPlan(LandingTarget.CASES, cases_url()))

        case_id = parsed.case_id
        if is_cancelled(status):
            logger.info("landing_cancelled", case_id=case_id, tx_ref=tx_ref)
            return self._planned(
                LandingPlan(LandingTarget.CANCELLED, retry_url(case_id, "cancelled"), case_id)
            )

        payment = await PaymentRepository(db).find_payment_by_case_id(case_id)
        if (
            payment is not None
            and payment.status == PaymentStatus.COMPLETED.value
            and payment.transaction_id == tx_ref
        ):
            logger.info("landing_already_settled", case_id=case_id, tx_ref=tx_ref)
            return self._planned(
                LandingPlan(LandingTarget.SUCCESS, success_url(case_id), case_id)
            )

        params = {"tx_ref": tx_ref, "caseId": case_id}
        if status:
            params["status"] = status
        if amount:
            params["amount"] = amount
        return self._planned(
            LandingPlan(LandingTarget.PROCESSING, processing_url(params), case_id, params)
        )

    @staticmethod
    def _planned(plan: LandingPlan) -> LandingPlan:
        metrics.record_landing_redirect(plan.target.value)
        return plan
