"""
Inbound acquirer webhook handling.

Webhooks are acknowledged whenever the body could be read: unmatched ids,
non-paid statuses and unusable payloads become monitoring events instead of
errors, so acquirers do not keep retrying. Replays are harmless because
settlement goes through the idempotent mark-paid update.
"""
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from pix_orchestrator.core.settlement import SettlementNotifier
from pix_orchestrator.core.transaction_store import TransactionStore
from pix_orchestrator.integrations.acquirers.status_tables import NormalizedStatus
from pix_orchestrator.integrations.webhook_normalizer import (
    WEBHOOK_SHAPES,
    InboundSignal,
    extract_signals,
    parse_body,
)
from pix_orchestrator.monitoring.events import MonitoringEventType, MonitoringRecorder
from pix_orchestrator.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


class WebhookError(Exception):
    """Raised for a webhook posted to an acquirer we do not know."""

    pass


class WebhookHandler:
    """Turns acquirer callbacks into idempotent settlements."""

    def __init__(
        self,
        notifier: Optional[SettlementNotifier] = None,
        store: Optional[TransactionStore] = None,
        recorder: Optional[MonitoringRecorder] = None,
    ) -> None:
        self.notifier = notifier or SettlementNotifier()
        self.store = store or TransactionStore()
        self.recorder = recorder or MonitoringRecorder()

    @staticmethod
    def supports(acquirer: str) -> bool:
        return acquirer in WEBHOOK_SHAPES

    async def process(
        self,
        db: AsyncSession,
        acquirer: str,
        body: bytes,
        content_type: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Handle one webhook delivery.

        Args:
            db: Database session
            acquirer: Acquirer from the endpoint path
            body: Raw request body
            content_type: Request Content-Type header

        Returns:
            Dict[str, Any]: Acknowledgement with one outcome per signal

        Raises:
            WebhookError: If the acquirer has no webhook shape
        """
        if not self.supports(acquirer):
            raise WebhookError(f"Unsupported acquirer: {acquirer}")

        metrics.record_webhook_received(acquirer)
        payload = parse_body(body, content_type)
        signals = extract_signals(acquirer, payload)

        if not signals:
            await self._reject(db, acquirer, "payload carries no payment items")
            return {"received": True, "results": []}

        outcomes: List[Dict[str, Any]] = []
        for signal in signals:
            outcome = await self._handle_signal(db, acquirer, signal)
            metrics.record_webhook_processed(acquirer, outcome["outcome"])
            outcomes.append(outcome)
        return {"received": True, "results": outcomes}

    async def _reject(self, db: AsyncSession, acquirer: str, reason: str) -> None:
        await self.recorder.record(
            db, acquirer, MonitoringEventType.WEBHOOK_REJECTED, error_message=reason
        )
        metrics.record_webhook_processed(acquirer, "rejected")

    async def _handle_signal(
        self, db: AsyncSession, acquirer: str, signal: InboundSignal
    ) -> Dict[str, Any]:
        log = logger.bind(acquirer=acquirer, raw_status=signal.raw_status)

        if not signal.correlation_ids:
            await self.recorder.record(
                db,
                acquirer,
                MonitoringEventType.WEBHOOK_REJECTED,
                error_message="no transaction id in webhook",
            )
            log.warning("webhook_missing_transaction_id")
            return {"outcome": "rejected", "txid": None}

        if signal.status != NormalizedStatus.PAID:
            await self.recorder.record(
                db,
                acquirer,
                MonitoringEventType.WEBHOOK_IGNORED,
                error_message=(
                    f"status {signal.raw_status!r} -> {signal.status.value} "
                    f"for {signal.correlation_ids[0]}"
                ),
            )
            log.info("webhook_status_not_paid", status=signal.status.value)
            return {"outcome": "not_paid", "txid": None, "status": signal.status.value}

        transaction = await self.store.find_by_correlation(db, acquirer, signal.correlation_ids)
        if transaction is None:
            await self.recorder.record(
                db,
                acquirer,
                MonitoringEventType.WEBHOOK_UNMATCHED,
                error_message=f"no transaction for ids {', '.join(signal.correlation_ids)}",
            )
            log.warning("webhook_transaction_not_found", ids=list(signal.correlation_ids))
            return {"outcome": "unmatched", "txid": None}

        transition = await self.store.mark_paid(db, transaction.txid)
        if transition.applied:
            metrics.record_settlement(acquirer, "webhook")
            self.notifier.notify_paid(transaction.id)
            log.info(
                "webhook_settled",
                txid=transaction.txid,
                paid_at_hint=signal.paid_at_hint.isoformat() if signal.paid_at_hint else None,
            )
            return {"outcome": "settled", "txid": transaction.txid}

        log.info("webhook_duplicate_settlement", txid=transaction.txid)
        return {"outcome": "already_paid", "txid": transaction.txid}
