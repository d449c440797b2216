"""Forwarding of settled transactions to the analytics/attribution service."""
from typing import Any, Dict, Optional

import httpx
import structlog

from pix_orchestrator.config import Settings, get_settings
from pix_orchestrator.database.models import Transaction

logger = structlog.get_logger(__name__)

# Keys owned by the public API, not tracking data
_RESERVED_KEYS = {"api_client_id", "external_reference", "metadata", "customer"}


class AttributionForwarder:
    """Posts settled transactions to a configured endpoint; disabled when unset."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self.settings.attribution_forward_url)

    @staticmethod
    def build_order(transaction: Transaction) -> Dict[str, Any]:
        attribution = transaction.attribution or {}
        return {
            "order_id": transaction.txid,
            "status": "paid",
            "amount": float(transaction.amount),
            "acquirer": transaction.acquirer,
            "created_at": transaction.created_at.isoformat() if transaction.created_at else None,
            "paid_at": transaction.paid_at.isoformat() if transaction.paid_at else None,
            "tracking": {k: v for k, v in attribution.items() if k not in _RESERVED_KEYS},
        }

    async def forward(self, transaction: Transaction) -> bool:
        """
        Send one settled transaction.

        Returns:
            bool: True if the endpoint accepted it; failures are logged, not raised
        """
        if not self.enabled:
            return False

        headers = {}
        if self.settings.attribution_forward_token:
            headers["x-api-token"] = self.settings.attribution_forward_token

        try:
            async with httpx.AsyncClient(
                timeout=self.settings.webhook_timeout_seconds, transport=self._transport
            ) as client:
                response = await client.post(
                    self.settings.attribution_forward_url,
                    json=self.build_order(transaction),
                    headers=headers,
                )
                response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(
                "attribution_forward_failed",
                txid=transaction.txid,
                error=type(e).__name__,
            )
            return False

        logger.info("attribution_forwarded", txid=transaction.txid)
        return True
