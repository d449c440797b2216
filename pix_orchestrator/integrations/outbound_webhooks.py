"""
Signed outbound webhooks to API clients.

Each notification is attempted once and its outcome recorded in a
WebhookDelivery row; retries are an operator action.
"""
import hashlib
import hmac
import json
import uuid
from typing import Any, Dict, Optional

import httpx
import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pix_orchestrator.config import Settings, get_settings
from pix_orchestrator.database.models import (
    ApiClient,
    DeliveryStatus,
    Transaction,
    WebhookDelivery,
    utcnow,
)
from pix_orchestrator.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

PUBLIC_STATUS = {"generated": "pending", "paid": "paid", "expired": "expired"}


def public_status(status: str) -> str:
    """Map a stored status to the vocabulary exposed to API clients."""
    return PUBLIC_STATUS.get(status, "pending")


def sign_payload(secret: str, body: bytes) -> str:
    """HMAC-SHA256 of the exact body bytes, formatted as ``sha256=<hex>``."""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


def verify_signature(secret: str, body: bytes, signature: Optional[str]) -> bool:
    """
    Check a signature header against the raw body.

    Integrators use the same computation on their side.
    """
    if not signature:
        return False
    return hmac.compare_digest(sign_payload(secret, body), signature)


def serialize_payload(payload: Dict[str, Any]) -> bytes:
    """Compact JSON; these exact bytes are both signed and sent."""
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def build_payload(transaction: Transaction, event: str) -> Dict[str, Any]:
    """Webhook body for a transaction event."""
    attribution = transaction.attribution or {}
    return {
        "event": event,
        "created_at": utcnow().isoformat(),
        "data": {
            "txid": transaction.txid,
            "external_reference": attribution.get("external_reference"),
            "amount": float(transaction.amount),
            "status": public_status(transaction.status),
            "paid_at": transaction.paid_at.isoformat() if transaction.paid_at else None,
            "created_at": transaction.created_at.isoformat() if transaction.created_at else None,
            "metadata": attribution.get("metadata"),
        },
    }


class OutboundWebhookDispatcher:
    """Delivers transaction events to the originating API client."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Initialize dispatcher.

        Args:
            settings: Application settings
            transport: Optional httpx transport (tests inject httpx.MockTransport)
        """
        self.settings = settings or get_settings()
        self._transport = transport

    async def _client_for(self, db: AsyncSession, transaction: Transaction) -> Optional[ApiClient]:
        raw_id = transaction.api_client_id
        if not raw_id:
            return None
        try:
            client_id = uuid.UUID(str(raw_id))
        except ValueError:
            logger.warning("webhook_invalid_api_client_id", txid=transaction.txid)
            return None

        result = await db.execute(select(ApiClient).where(ApiClient.id == client_id))
        client = result.scalar_one_or_none()
        if client is None or not client.is_active:
            logger.info("webhook_skipped_client_inactive", txid=transaction.txid)
            return None
        if not client.webhook_url or not client.webhook_secret:
            logger.info("webhook_skipped_not_configured", txid=transaction.txid)
            return None
        return client

    async def dispatch(
        self, db: AsyncSession, transaction: Transaction, event: str = "payment.paid"
    ) -> Optional[WebhookDelivery]:
        """
        Send one signed notification and record the outcome.

        Args:
            db: Database session
            transaction: Transaction the event is about
            event: Event name, e.g. ``payment.paid``

        Returns:
            WebhookDelivery, or None when the transaction has no deliverable client
        """
        client = await self._client_for(db, transaction)
        if client is None:
            return None

        payload = build_payload(transaction, event)
        body = serialize_payload(payload)

        delivery = WebhookDelivery(
            api_client_id=client.id,
            transaction_id=transaction.id,
            webhook_url=client.webhook_url,
            event_type=event,
            payload=payload,
            status=DeliveryStatus.PENDING.value,
            attempts=1,
            last_attempt_at=utcnow(),
        )
        db.add(delivery)
        await db.commit()

        headers = {
            "Content-Type": "application/json",
            self.settings.webhook_signature_header: sign_payload(client.webhook_secret, body),
            self.settings.webhook_event_header: event,
            "User-Agent": self.settings.webhook_user_agent,
        }
        limit = self.settings.webhook_response_body_limit

        try:
            async with httpx.AsyncClient(
                timeout=self.settings.webhook_timeout_seconds, transport=self._transport
            ) as http:
                response = await http.post(client.webhook_url, content=body, headers=headers)
        except httpx.HTTPError as e:
            delivery.status = DeliveryStatus.FAILED.value
            delivery.response_body = f"{type(e).__name__}: {e}"[:limit]
            logger.warning(
                "webhook_delivery_error",
                delivery_id=str(delivery.id),
                txid=transaction.txid,
                error=type(e).__name__,
            )
        else:
            delivery.response_status = response.status_code
            delivery.response_body = response.text[:limit]
            delivery.status = (
                DeliveryStatus.SUCCESS.value if response.is_success else DeliveryStatus.FAILED.value
            )
            logger.info(
                "webhook_delivery_completed",
                delivery_id=str(delivery.id),
                txid=transaction.txid,
                status_code=response.status_code,
                status=delivery.status,
            )

        await db.commit()
        metrics.record_outbound_delivery(delivery.status)
        return delivery
