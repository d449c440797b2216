"""SpedPay integration (``api-secret`` header, amounts in reais)."""
from typing import Any, Dict

from pix_orchestrator.integrations.acquirers.auth import ApiKeyHeaderAuth
from pix_orchestrator.integrations.acquirers.base import (
    AcquirerAdapter,
    AcquirerError,
    AcquirerErrorType,
    ChargeRequest,
    ChargeResult,
    ResolvedAcquirer,
    StatusResult,
    first_value,
    parse_timestamp,
)
from pix_orchestrator.integrations.acquirers.status_tables import NormalizedStatus

PAYMENT_CODE_FIELDS = (
    "pix_copia_e_cola",
    "pixCopiaECola",
    "qrcode",
    "qr_code",
    "brcode",
    "emv",
    "code",
    "pix.brcode",
    "pix.qrcode",
    "pix.copia_e_cola",
    "pix.copiaECola",
    "pix.copy_paste",
    "pix.emv",
    "pix.code",
    "pix.qr_code",
    "pix.pix_code",
    "pix.pixCode",
    "paymentCode",
    "transaction.pix_copia_e_cola",
    "transaction.brcode",
)
PROVIDER_REF_FIELDS = ("id", "transaction_id", "id_transaction", "idTransaction")
STATUS_FIELDS = ("status", "payment_status", "data.status")
PAID_AT_FIELDS = ("paid_at", "paidAt", "approved_at")


class SpedPayAdapter(AcquirerAdapter):
    """SpedPay transactions API."""

    name = "spedpay"
    default_base_url = "https://api.spedpay.space/v1/transactions"
    required_credentials = ("api_key",)

    def _payload(self, request: ChargeRequest) -> Dict[str, Any]:
        payer = request.payer
        customer: Dict[str, Any] = {"name": payer.name if payer and payer.name else "Cliente"}
        if payer:
            if payer.email:
                customer["email"] = payer.email
            if payer.document:
                customer["document_type"] = "CPF"
                customer["document"] = payer.document
            if payer.phone:
                customer["phone"] = "".join(c for c in payer.phone if c.isdigit())

        amount = float(request.amount)
        payload: Dict[str, Any] = {
            "external_id": request.callback_id,
            "total_amount": amount,
            "payment_method": "PIX",
            "customer": customer,
            "items": [
                {
                    "id": f"item_{request.callback_id}",
                    "title": request.description,
                    "description": request.description,
                    "price": amount,
                    "quantity": 1,
                    "is_physical": False,
                }
            ],
        }
        if request.postback_url:
            payload["webhook_url"] = request.postback_url
        return payload

    def _auth(self, config: ResolvedAcquirer) -> ApiKeyHeaderAuth:
        return ApiKeyHeaderAuth(config.credentials.api_key.strip(), header="api-secret")

    async def create_charge(
        self, config: ResolvedAcquirer, request: ChargeRequest
    ) -> ChargeResult:
        self.validate_credentials(config)
        async with self.http_client() as client:
            data = await self._request_json(
                client,
                "POST",
                self.base_url(config),
                "create_charge",
                json=self._payload(request),
                auth=self._auth(config),
            )

        payment_code = first_value(data, PAYMENT_CODE_FIELDS)
        if not payment_code:
            raise AcquirerError(
                f"spedpay response has no payment code (fields: {', '.join(sorted(data))})",
                self.name,
                AcquirerErrorType.PERMANENT,
            )
        provider_ref = first_value(data, PROVIDER_REF_FIELDS) or request.callback_id
        return ChargeResult(payment_code=payment_code, provider_ref=provider_ref)

    async def check_status(self, config: ResolvedAcquirer, provider_ref: str) -> StatusResult:
        self.validate_credentials(config)
        async with self.http_client() as client:
            data = await self._request_json(
                client,
                "GET",
                f"{self.status_url(config).rstrip('/')}/{provider_ref}",
                "check_status",
                tolerate_status=(404,),
                auth=self._auth(config),
            )

        if data is None:
            return StatusResult(status=NormalizedStatus.PENDING)

        raw_status = first_value(data, STATUS_FIELDS)
        status = self.normalize(raw_status)
        paid_at = (
            parse_timestamp(first_value(data, PAID_AT_FIELDS))
            if status == NormalizedStatus.PAID
            else None
        )
        return StatusResult(status=status, raw_status=raw_status, paid_at=paid_at)
