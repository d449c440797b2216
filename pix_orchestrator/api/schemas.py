"""
Pydantic schemas for API request/response models.
"""
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from pix_orchestrator.integrations.acquirers import PayerInfo


class PayerSchema(BaseModel):
    """Optional payer details."""

    name: Optional[str] = Field(default=None, max_length=255, description="Payer name")
    email: Optional[str] = Field(default=None, max_length=255, description="Payer e-mail")
    document: Optional[str] = Field(default=None, max_length=32, description="CPF or CNPJ")
    phone: Optional[str] = Field(default=None, max_length=32, description="Phone number")

    def to_payer(self) -> PayerInfo:
        return PayerInfo(name=self.name, email=self.email, document=self.document, phone=self.phone)


class CreateChargeRequest(BaseModel):
    """Charge request from the checkout."""

    account_id: str = Field(..., min_length=1, max_length=64, description="Owning account")
    amount: Decimal = Field(..., description="Amount in BRL")
    payer: Optional[PayerSchema] = Field(default=None, description="Payer details")
    attribution: Optional[Dict[str, Any]] = Field(
        default=None, description="Tracking metadata stored verbatim"
    )
    description: Optional[str] = Field(default=None, max_length=140, description="Charge description")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "account_id": "acct_123",
                    "amount": "10.00",
                    "payer": {"name": "Maria Silva"},
                    "attribution": {"utm_source": "instagram", "utm_campaign": "launch"},
                }
            ]
        }
    }


class ChargeResponse(BaseModel):
    """Created charge."""

    txid: str = Field(..., description="Correlation id")
    payment_code: str = Field(..., description="PIX copy-and-paste code")
    provider_ref: Optional[str] = Field(default=None, description="Acquirer reference")
    acquirer: str = Field(..., description="Acquirer that issued the charge")


class ChargeStatusResponse(BaseModel):
    """Checkout status check result."""

    txid: str
    status: str = Field(..., description="pending, paid or expired")
    paid_at: Optional[str] = Field(default=None, description="Settlement time (ISO 8601)")
    checked_remote: bool = Field(..., description="Whether the acquirer was queried")


class PublicCreatePixRequest(BaseModel):
    """Public API charge request."""

    amount: Decimal = Field(..., description="Amount in BRL (minimum 0.50)")
    external_reference: Optional[str] = Field(
        default=None, max_length=255, description="Integrator's own order id"
    )
    description: Optional[str] = Field(default=None, max_length=140, description="Charge description")
    customer: Optional[PayerSchema] = Field(default=None, description="Customer details")
    metadata: Optional[Dict[str, Any]] = Field(
        default=None, description="Returned untouched in status queries and webhooks"
    )

    @field_validator("external_reference")
    @classmethod
    def strip_reference(cls, v: Optional[str]) -> Optional[str]:
        """Treat blank references as absent."""
        if v is None:
            return None
        return v.strip() or None


class PublicPixResponse(BaseModel):
    """Public API created charge."""

    txid: str
    pix_code: str
    amount: float
    status: str
    external_reference: Optional[str] = None
    created_at: str
    expires_at: str


class PublicStatusResponse(BaseModel):
    """Public API status query result."""

    txid: str
    external_reference: Optional[str] = None
    amount: float
    status: str = Field(..., description="pending, paid or expired")
    paid_at: Optional[str] = None
    expired_at: Optional[str] = None
    created_at: str
    metadata: Optional[Dict[str, Any]] = None


class WebhookAckResponse(BaseModel):
    """Acknowledgement returned to acquirers."""

    received: bool = Field(..., description="Always true once the body was read")
    results: List[Dict[str, Any]] = Field(default_factory=list)


class ReconciliationRunResponse(BaseModel):
    """Summary of one batch reconciliation."""

    checked: int
    paid: int
    errors: int
    expired: int


class HealthCheckResponse(BaseModel):
    """Health check response."""

    status: str = Field(..., description="Overall health status")
    checks: Dict[str, Any] = Field(..., description="Individual service health checks")
