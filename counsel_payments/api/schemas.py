"""
Pydantic schemas for API request/response models.

Field names on the wire follow the marketplace frontend (camelCase case ids,
provider snake_case for `tx_ref`).
"""
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class CallbackMeta(BaseModel):
    """Metadata echoed back by the provider from the checkout config."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    case_id: Optional[str] = Field(default=None, alias="caseId")
    user_id: Optional[str] = Field(default=None, alias="userId")


class CallbackPayload(BaseModel):
    """Provider server-to-server callback body."""

    model_config = ConfigDict(extra="allow")

    tx_ref: Optional[str] = Field(default=None, description="Transaction reference")
    status: Optional[str] = Field(default=None, description="Provider status token")
    amount: Any = Field(default=None, description="Amount as sent by the provider")
    meta: Optional[CallbackMeta] = None


class CallbackResponse(BaseModel):
    success: bool = True


class ProcessPaymentRequest(BaseModel):
    """Landing page reconciliation request."""

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "examples": [
                {
                    "caseId": "c1",
                    "tx_ref": "CASE-c1-1700000000000",
                    "status": "successful",
                    "amount": "150.00",
                }
            ]
        },
    )

    case_id: Optional[str] = Field(default=None, alias="caseId")
    tx_ref: Optional[str] = None
    status: Optional[str] = None
    amount: Any = None


class PaymentSummary(BaseModel):
    id: str
    status: str
    amount: float


class ProcessPaymentResponse(BaseModel):
    success: bool = True
    payment: PaymentSummary


class CheckoutRequest(BaseModel):
    """Start a provider checkout for a case."""

    model_config = ConfigDict(populate_by_name=True)

    case_id: Optional[str] = Field(default=None, alias="caseId")
    amount: Any = Field(default=None, description="Defaults to the lawyer's hourly rate")


class CheckoutResponse(BaseModel):
    """Stored checkout attempt plus the provider popup configuration."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    tx_ref: str
    checkout: Dict[str, Any] = Field(..., description="PayChangu popup configuration")


class PaymentDetail(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    status: str
    amount: float
    currency: str
    transaction_id: str = Field(..., alias="transactionId")
    updated_at: str = Field(..., alias="updatedAt")


class CasePaymentStatusResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    case_id: str = Field(..., alias="caseId")
    case_status: str = Field(..., alias="caseStatus")
    payment: Optional[PaymentDetail] = None


class ErrorResponse(BaseModel):
    error: str
    code: str


class HealthCheckResponse(BaseModel):
    """Response schema for health check."""

    status: str = Field(..., description="Overall health status")
    checks: Optional[Dict[str, Any]] = Field(default=None, description="Individual checks")
    message: Optional[str] = Field(default=None, description="Status message")
