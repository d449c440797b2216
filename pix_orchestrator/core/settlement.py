"""
Post-settlement side effects.

Runs after the mark-paid update has committed, as background tasks with
their own database sessions. Nothing here can undo or delay settlement.
"""
import asyncio
import uuid
from typing import Optional, Set

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pix_orchestrator.database.connection import get_session_factory
from pix_orchestrator.database.models import Transaction
from pix_orchestrator.integrations.attribution import AttributionForwarder
from pix_orchestrator.integrations.outbound_webhooks import OutboundWebhookDispatcher

logger = structlog.get_logger(__name__)


class SettlementNotifier:
    """Fires attribution forwarding and the outbound webhook for a newly paid transaction."""

    def __init__(
        self,
        dispatcher: Optional[OutboundWebhookDispatcher] = None,
        forwarder: Optional[AttributionForwarder] = None,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    ) -> None:
        self.dispatcher = dispatcher or OutboundWebhookDispatcher()
        self.forwarder = forwarder or AttributionForwarder()
        self._session_factory = session_factory
        # Strong references so running tasks are not garbage collected
        self._tasks: Set[asyncio.Task] = set()

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory or get_session_factory()

    def notify_paid(self, transaction_id: uuid.UUID, event: str = "payment.paid") -> asyncio.Task:
        """
        Schedule side effects without waiting for them.

        Args:
            transaction_id: Internal id of the settled transaction
            event: Outbound webhook event name

        Returns:
            asyncio.Task: The scheduled task
        """
        task = asyncio.create_task(self._run(transaction_id, event))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, transaction_id: uuid.UUID, event: str) -> None:
        async with self.session_factory() as db:
            transaction = await db.get(Transaction, transaction_id)
            if transaction is None:
                logger.error("settlement_notify_missing_transaction", id=str(transaction_id))
                return

            try:
                await self.forwarder.forward(transaction)
            except Exception as e:
                logger.error(
                    "attribution_forward_crashed", txid=transaction.txid, error=str(e)
                )

            if not transaction.api_client_id:
                return
            try:
                await self.dispatcher.dispatch(db, transaction, event)
            except Exception as e:
                logger.error("webhook_dispatch_crashed", txid=transaction.txid, error=str(e))

    async def drain(self) -> None:
        """Wait for every scheduled task (shutdown and tests)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
