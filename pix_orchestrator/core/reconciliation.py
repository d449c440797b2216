"""
Reconciliation poller.

Fallback path for charges whose webhook never arrives: asks the acquirer for
the current status and applies the same idempotent transitions as webhook
ingestion. Safe to call at any time, from any number of callers.
"""
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from pix_orchestrator.config import Settings, get_settings
from pix_orchestrator.core.acquirer_config import AcquirerConfigResolver
from pix_orchestrator.core.settlement import SettlementNotifier
from pix_orchestrator.core.transaction_store import TransactionStore
from pix_orchestrator.database.models import Transaction, utcnow
from pix_orchestrator.integrations.acquirers import (
    AcquirerError,
    AcquirerGateway,
    NormalizedStatus,
)
from pix_orchestrator.monitoring.events import MonitoringEventType, MonitoringRecorder
from pix_orchestrator.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


@dataclass
class ReconciliationResult:
    """What a single poll observed and the resulting stored state."""

    txid: str
    status: str
    paid_at: Optional[datetime] = None
    checked_remote: bool = False
    remote_status: Optional[str] = None
    newly_paid: bool = False
    error: Optional[str] = None

    @classmethod
    def from_transaction(cls, transaction: Transaction, **kwargs: Any) -> "ReconciliationResult":
        return cls(
            txid=transaction.txid,
            status=transaction.status,
            paid_at=transaction.paid_at,
            **kwargs,
        )


class ReconciliationPoller:
    """Pull-based status reconciliation."""

    def __init__(
        self,
        gateway: AcquirerGateway,
        notifier: Optional[SettlementNotifier] = None,
        config_resolver: Optional[AcquirerConfigResolver] = None,
        store: Optional[TransactionStore] = None,
        recorder: Optional[MonitoringRecorder] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.gateway = gateway
        self.notifier = notifier or SettlementNotifier()
        self.config_resolver = config_resolver or AcquirerConfigResolver(self.settings)
        self.store = store or TransactionStore()
        self.recorder = recorder or MonitoringRecorder()

    async def reconcile(self, db: AsyncSession, txid: str) -> Optional[ReconciliationResult]:
        """
        Poll the originating acquirer for one transaction.

        Terminal transactions return immediately without a network call.
        Acquirer failures are recorded and reported in the result, never raised.

        Args:
            db: Database session
            txid: Transaction correlation id

        Returns:
            ReconciliationResult, or None if the txid is unknown
        """
        transaction = await self.store.get_by_txid(db, txid)
        if transaction is None:
            return None
        if transaction.is_terminal:
            return ReconciliationResult.from_transaction(transaction)

        acquirer = transaction.acquirer
        log = logger.bind(txid=txid, acquirer=acquirer)
        start = time.monotonic()
        try:
            config = await self.config_resolver.resolve(db, transaction.account_id, acquirer)
            status = await self.gateway.check_status(
                config, transaction.provider_ref or transaction.txid
            )
        except AcquirerError as e:
            await self.recorder.record(
                db,
                acquirer,
                MonitoringEventType.FAILURE,
                error_message=f"status check: {e}",
                response_time_ms=int((time.monotonic() - start) * 1000),
            )
            log.warning("reconciliation_check_failed", error=str(e))
            return ReconciliationResult.from_transaction(transaction, error=str(e))

        log.info(
            "reconciliation_checked",
            remote_status=status.status.value,
            raw_status=status.raw_status,
        )

        if status.status == NormalizedStatus.PAID:
            transition = await self.store.mark_paid(db, txid)
            if transition.applied:
                metrics.record_settlement(acquirer, "poller")
                self.notifier.notify_paid(transition.transaction.id)
            return ReconciliationResult.from_transaction(
                transition.transaction,
                checked_remote=True,
                remote_status=status.status.value,
                newly_paid=transition.applied,
            )

        if status.status == NormalizedStatus.EXPIRED:
            transition = await self.store.mark_expired(db, txid)
            transaction = transition.transaction or transaction

        return ReconciliationResult.from_transaction(
            transaction, checked_remote=True, remote_status=status.status.value
        )

    async def reconcile_pending(self, db: AsyncSession) -> Dict[str, int]:
        """
        Poll recent generated transactions, oldest first.

        Returns:
            Dict[str, int]: Counts of checked, newly paid and failed polls
        """
        since = utcnow() - timedelta(hours=self.settings.reconciliation_lookback_hours)
        pending = await self.store.list_generated(
            db, created_after=since, limit=self.settings.reconciliation_batch_size
        )
        summary = {"checked": 0, "paid": 0, "errors": 0}
        for transaction in pending:
            result = await self.reconcile(db, transaction.txid)
            if result is None:
                continue
            summary["checked"] += 1
            if result.newly_paid:
                summary["paid"] += 1
            if result.error:
                summary["errors"] += 1
        return summary

    async def expire_stale(self, db: AsyncSession) -> int:
        """
        Mark generated transactions older than the TTL as expired.

        Returns:
            int: Number of transactions expired
        """
        cutoff = utcnow() - timedelta(hours=self.settings.transaction_ttl_hours)
        stale = await self.store.list_generated(
            db, created_before=cutoff, limit=self.settings.reconciliation_batch_size
        )
        expired = 0
        for transaction in stale:
            transition = await self.store.mark_expired(db, transaction.txid)
            if transition.applied:
                expired += 1
        if expired:
            logger.info("stale_transactions_expired", count=expired)
        return expired

    async def run_batch(self, db: AsyncSession) -> Dict[str, int]:
        """One reconciliation pass: poll recent charges, then expire stale ones."""
        start = time.time()
        summary = await self.reconcile_pending(db)
        summary["expired"] = await self.expire_stale(db)
        metrics.record_reconciliation_run(time.time() - start, time.time())
        logger.info("reconciliation_batch_completed", **summary)
        return summary
