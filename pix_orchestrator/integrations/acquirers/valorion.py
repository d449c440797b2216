"""Valorion integration (x-api-key for charges, HTTP Basic for status, amounts in cents)."""
from typing import Any, Dict

from pix_orchestrator.integrations.acquirers.auth import ApiKeyHeaderAuth, BasicSecretAuth
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
    "paymentCode",
    "qrcode",
    "qr_code",
    "brcode",
    "pix.brcode",
    "pix.qrcode",
    "transaction.pix_copia_e_cola",
)
PROVIDER_REF_FIELDS = ("id_transaction", "idTransaction", "id", "transaction_id")
STATUS_FIELDS = ("situacao", "status", "data.situacao", "data.status")
PAID_AT_FIELDS = ("data_transacao", "paid_at", "paidAt")


class ValorionAdapter(AcquirerAdapter):
    """Valorion cash-in API."""

    name = "valorion"
    default_base_url = "https://api-fila-cash-in-out.onrender.com/v2/pix/charge"
    default_status_url = "https://app.valorion.com.br/api/s1/getTransactionStatus.php"
    required_credentials = ("api_key",)

    def _payload(self, request: ChargeRequest) -> Dict[str, Any]:
        amount_cents = request.amount_cents
        payer = request.payer
        customer: Dict[str, Any] = {"name": payer.name if payer and payer.name else "Cliente"}
        if payer:
            if payer.email:
                customer["email"] = payer.email
            if payer.document:
                customer["cpf"] = payer.document
            if payer.phone:
                customer["phone"] = payer.phone

        payload: Dict[str, Any] = {
            "amount": amount_cents,
            "customer": customer,
            "items": [
                {
                    "title": request.description,
                    "quantity": 1,
                    "unitPrice": amount_cents,
                    "tangible": False,
                }
            ],
            # Valorion echoes this back in webhooks; it is our txid
            "metadata": request.callback_id,
            "traceable": True,
        }
        if request.postback_url:
            payload["postbackUrl"] = request.postback_url
        return payload

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
                auth=ApiKeyHeaderAuth(config.credentials.api_key),
            )

        payment_code = first_value(data, PAYMENT_CODE_FIELDS)
        if not payment_code:
            raise AcquirerError(
                f"valorion response has no payment code (fields: {', '.join(sorted(data))})",
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
                self.status_url(config),
                "check_status",
                # Valorion answers 404 until the charge shows up in its ledger
                tolerate_status=(404,),
                params={"id_transaction": provider_ref},
                auth=BasicSecretAuth(config.credentials.api_key),
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
