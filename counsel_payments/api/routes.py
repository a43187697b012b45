"""
API routes for payment reconciliation.
"""
import time
from pathlib import Path
from typing import Any, Dict, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from fastapi.templating import Jinja2Templates
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from counsel_payments.config import get_settings
from counsel_payments.core.access import ensure_can_pay, ensure_can_view
from counsel_payments.core.checkout import CheckoutService
from counsel_payments.core.errors import PaymentError, PaymentValidationError
from counsel_payments.core.landing import (
    LandingPlanner,
    LandingTarget,
    cases_url,
    login_url,
    retry_url,
    success_url,
)
from counsel_payments.core.money import from_cents
from counsel_payments.core.reconciliation import Channel, ReconciliationService
from counsel_payments.database.connection import get_db
from counsel_payments.database.models import Payment
from counsel_payments.integrations.paychangu import SIGNATURE_HEADER, verify_signature
from counsel_payments.monitoring.health import HealthCheck
from counsel_payments.monitoring.metrics import metrics

from .auth import CurrentUser, get_current_user
from .schemas import (
    CallbackPayload,
    CallbackResponse,
    CasePaymentStatusResponse,
    CheckoutRequest,
    CheckoutResponse,
    ErrorResponse,
    HealthCheckResponse,
    ProcessPaymentRequest,
    ProcessPaymentResponse,
)

logger = structlog.get_logger(__name__)

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))

# Create routers
payment_router = APIRouter(prefix="/payments", tags=["payments"])
monitoring_router = APIRouter(tags=["monitoring"])

# Initialize services
reconciliation_service = ReconciliationService()
checkout_service = CheckoutService()
landing_planner = LandingPlanner()
health_check = HealthCheck()

ERROR_RESPONSES: Dict[int | str, Dict[str, Any]] = {
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}


def error_response(e: PaymentError) -> JSONResponse:
    """Render a payment error as its JSON body and status."""
    return JSONResponse(status_code=e.http_status, content=e.to_dict())


def _payment_summary(payment: Payment) -> Dict[str, Any]:
    return {
        "id": payment.id,
        "status": payment.status,
        "amount": float(from_cents(payment.amount_cents)),
    }


def _redirect(url: str) -> RedirectResponse:
    return RedirectResponse(url, status_code=status.HTTP_303_SEE_OTHER)


@payment_router.post(
    "/callback",
    response_model=CallbackResponse,
    responses=ERROR_RESPONSES,
    summary="Provider callback",
    description="Asynchronous server-to-server payment notification from PayChangu",
)
async def payment_callback(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> Any:
    """
    Reconcile a provider callback.

    Safe to deliver more than once: repeats leave the payment unchanged and
    send no further notifications.
    """
    settings = get_settings()

    try:
        body = await request.body()

        if settings.verifies_callback_signatures and not verify_signature(
            body, request.headers.get(SIGNATURE_HEADER), settings.paychangu_webhook_secret
        ):
            metrics.record_signature_failure()
            raise PaymentValidationError("Invalid signature")

        try:
            payload = CallbackPayload.model_validate_json(body)
        except ValidationError as e:
            raise PaymentValidationError("Invalid callback payload") from e

        case_id = payload.meta.case_id if payload.meta else None
        logger.info(
            "api_callback_received",
            case_id=case_id,
            tx_ref=payload.tx_ref,
            status=payload.status,
        )

        await reconciliation_service.reconcile(
            db,
            case_id=case_id,
            transaction_ref=payload.tx_ref,
            raw_status=payload.status,
            raw_amount=payload.amount,
            channel=Channel.CALLBACK,
        )
        return {"success": True}

    except PaymentError as e:
        logger.warning("api_callback_error", error_code=e.error_code, error=e.message)
        return error_response(e)


@payment_router.get(
    "/callback",
    response_class=RedirectResponse,
    summary="Provider browser redirect",
    description="Where PayChangu sends the browser after checkout",
)
async def payment_callback_redirect(
    status_token: Optional[str] = Query(default=None, alias="status"),
    tx_ref: Optional[str] = Query(default=None),
    amount: Optional[str] = Query(default=None),
    db: AsyncSession = Depends(get_db),
) -> RedirectResponse:
    """Send the browser on to the processing page, or straight to a result."""
    logger.info("api_landing_received", tx_ref=tx_ref, status=status_token)
    try:
        plan = await landing_planner.plan(db, status_token, tx_ref, amount)
    except SQLAlchemyError as e:
        logger.error("api_landing_error", tx_ref=tx_ref, error=str(e))
        return _redirect(cases_url())
    return _redirect(plan.redirect_url)


@payment_router.get(
    "/processing",
    response_class=HTMLResponse,
    summary="Payment processing page",
    description="Confirms the payment from the browser and polls until it settles",
)
async def payment_processing_page(
    request: Request,
    status_token: Optional[str] = Query(default=None, alias="status"),
    tx_ref: Optional[str] = Query(default=None),
    amount: Optional[str] = Query(default=None),
    db: AsyncSession = Depends(get_db),
) -> Response:
    """Render the processing page, or redirect if there is nothing to process."""
    try:
        plan = await landing_planner.plan(db, status_token, tx_ref, amount)
    except SQLAlchemyError as e:
        logger.error("api_processing_page_error", tx_ref=tx_ref, error=str(e))
        return _redirect(cases_url())

    if plan.target != LandingTarget.PROCESSING:
        return _redirect(plan.redirect_url)

    settings = get_settings()
    case_id = plan.case_id
    return templates.TemplateResponse(
        request,
        "payment_processing.html",
        {
            "process_request": {
                "caseId": case_id,
                "tx_ref": plan.params.get("tx_ref"),
                "status": plan.params.get("status"),
                "amount": plan.params.get("amount"),
            },
            "process_url": "/payments/process",
            "status_url": f"/payments/cases/{case_id}",
            "success_url": success_url(case_id),
            "failed_url": retry_url(case_id, "failed"),
            "cases_url": cases_url(),
            "login_url": login_url(),
            "poll_interval_ms": int(settings.landing_poll_interval_seconds * 1000),
            "poll_max_attempts": settings.landing_poll_max_attempts,
        },
    )


@payment_router.post(
    "/process",
    response_model=ProcessPaymentResponse,
    responses=ERROR_RESPONSES,
    summary="Confirm a payment from the landing page",
    description="Synchronous reconciliation for the case's client (or an admin)",
)
async def process_payment(
    request: ProcessPaymentRequest,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> Any:
    """
    Reconcile the provider result the browser landed with.

    A missing status means the provider redirected on success; a missing
    reference is generated.
    """
    start_time = time.time()

    try:
        logger.info(
            "api_process_payment_request",
            case_id=request.case_id,
            tx_ref=request.tx_ref,
            status=request.status,
        )

        result = await reconciliation_service.reconcile(
            db,
            case_id=request.case_id,
            transaction_ref=request.tx_ref,
            raw_status=request.status,
            raw_amount=request.amount,
            channel=Channel.LANDING,
            authorize=lambda case: ensure_can_pay(case, user.id, user.role),
        )

        logger.info(
            "api_process_payment_success",
            payment_id=result.payment.id,
            status=result.status,
            outcome=result.outcome.value,
            duration_seconds=time.time() - start_time,
        )
        return {"success": True, "payment": _payment_summary(result.payment)}

    except PaymentError as e:
        logger.warning("api_process_payment_error", error_code=e.error_code, error=e.message)
        return error_response(e)


@payment_router.post(
    "/checkout",
    response_model=CheckoutResponse,
    status_code=status.HTTP_201_CREATED,
    responses=ERROR_RESPONSES,
    summary="Start a checkout",
    description="Record a checkout attempt and return the PayChangu popup configuration",
)
async def start_checkout(
    request: CheckoutRequest,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> Any:
    """Start a provider checkout for a case."""
    try:
        session = await checkout_service.start_checkout(
            db,
            case_id=request.case_id,
            user_id=user.id,
            role=user.role,
            raw_amount=request.amount,
        )
        return {"success": True, "tx_ref": session.pending.tx_ref, "checkout": session.config}

    except PaymentError as e:
        logger.warning("api_checkout_error", error_code=e.error_code, error=e.message)
        return error_response(e)


@payment_router.get(
    "/cases/{case_id}",
    response_model=CasePaymentStatusResponse,
    responses=ERROR_RESPONSES,
    summary="Payment status of a case",
    description="Polled by the processing page while a payment is pending",
)
async def get_case_payment_status(
    case_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> Any:
    """Current payment state for a case."""
    try:
        case, payment = await reconciliation_service.get_case_payment(
            db,
            case_id,
            authorize=lambda c: ensure_can_view(c, user.id, user.role),
        )
    except PaymentError as e:
        logger.warning("api_payment_status_error", case_id=case_id, error_code=e.error_code)
        return error_response(e)

    detail = None
    if payment is not None:
        detail = {
            **_payment_summary(payment),
            "currency": payment.currency,
            "transactionId": payment.transaction_id,
            "updatedAt": payment.updated_at.isoformat(),
        }
    return {"caseId": case.id, "caseStatus": case.status, "payment": detail}


@monitoring_router.get(
    "/health",
    response_model=HealthCheckResponse,
    summary="Health check",
    description="Check overall system health",
)
async def health() -> Dict[str, Any]:
    """Health check endpoint for monitoring."""
    return await health_check.check_all()


@monitoring_router.get(
    "/health/live",
    response_model=HealthCheckResponse,
    summary="Liveness probe",
    description="Kubernetes liveness probe endpoint",
)
async def liveness() -> Dict[str, Any]:
    """Liveness probe endpoint."""
    return await health_check.liveness()


@monitoring_router.get(
    "/health/ready",
    response_model=HealthCheckResponse,
    summary="Readiness probe",
    description="Kubernetes readiness probe endpoint",
)
async def readiness() -> Dict[str, Any]:
    """Readiness probe endpoint."""
    result = await health_check.readiness()
    if result["status"] != "healthy":
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=result)
    return result


@monitoring_router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Expose Prometheus metrics",
    include_in_schema=False,
)
async def prometheus_metrics() -> Response:
    """Expose Prometheus metrics."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
