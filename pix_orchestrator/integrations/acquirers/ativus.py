"""Ativus Hub integration (HTTP Basic, amounts in reais)."""
from typing import Any, Dict

from pix_orchestrator.integrations.acquirers.auth import BasicSecretAuth
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
    "paymentCode",
    "pix_copia_e_cola",
    "pixCopiaECola",
    "qrcode",
    "qr_code",
    "brcode",
    "pix.qrcode",
    "pix.brcode",
)
PROVIDER_REF_FIELDS = ("idTransaction", "id_transaction", "transactionId", "id")
STATUS_FIELDS = ("situacao", "status", "data.situacao", "data.status")
PAID_AT_FIELDS = ("data_transacao", "paidAt", "paid_at", "data.paidAt")


class AtivusAdapter(AcquirerAdapter):
    """Ativus Hub gateway."""

    name = "ativus"
    default_base_url = "https://api.ativushub.com.br/v1/gateway/api/"
    default_status_url = (
        "https://api.ativushub.com.br/s1/getTransaction/api/getTransactionStatus.php"
    )
    required_credentials = ("api_key",)

    def _payload(self, request: ChargeRequest) -> Dict[str, Any]:
        payer = request.payer
        customer: Dict[str, Any] = {
            "name": (payer.name if payer and payer.name else "Cliente"),
            "externaRef": request.callback_id,
        }
        if payer:
            if payer.email:
                customer["email"] = payer.email
            if payer.document:
                customer["cpf"] = payer.document
            if payer.phone:
                customer["phone"] = payer.phone

        amount = float(request.amount)
        payload: Dict[str, Any] = {
            "amount": amount,
            "customer": customer,
            "pix": {"expiresInDays": 1},
            "items": [
                {
                    "title": request.description,
                    "quantity": 1,
                    "unitPrice": amount,
                    "tangible": False,
                }
            ],
            "traceable": True,
        }
        if request.postback_url:
            payload["postbackUrl"] = request.postback_url
        return payload

    async def create_charge(
        self, config: ResolvedAcquirer, request: ChargeRequest
    ) -> ChargeResult:
        self.validate_credentials(config)
        auth = BasicSecretAuth(config.credentials.api_key)
        async with self.http_client() as client:
            data = await self._request_json(
                client,
                "POST",
                self.base_url(config) + "/",
                "create_charge",
                json=self._payload(request),
                auth=auth,
            )

        payment_code = first_value(data, PAYMENT_CODE_FIELDS)
        if not payment_code:
            raise AcquirerError(
                f"ativus response has no payment code (fields: {', '.join(sorted(data))})",
                self.name,
                AcquirerErrorType.PERMANENT,
            )
        provider_ref = first_value(data, PROVIDER_REF_FIELDS) or request.callback_id
        return ChargeResult(payment_code=payment_code, provider_ref=provider_ref)

    async def check_status(self, config: ResolvedAcquirer, provider_ref: str) -> StatusResult:
        self.validate_credentials(config)
        auth = BasicSecretAuth(config.credentials.api_key)
        async with self.http_client() as client:
            data = await self._request_json(
                client,
                "GET",
                self.status_url(config),
                "check_status",
                params={"id_transaction": provider_ref},
                auth=auth,
            )

        raw_status = first_value(data, STATUS_FIELDS)
        status = self.normalize(raw_status)
        paid_at = (
            parse_timestamp(first_value(data, PAID_AT_FIELDS))
            if status == NormalizedStatus.PAID
            else None
        )
        return StatusResult(status=status, raw_status=raw_status, paid_at=paid_at)
