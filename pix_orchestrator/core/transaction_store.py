"""
Transaction persistence and the idempotent status transitions.

Settlement is guarded by a conditional UPDATE (compare-and-set on status),
so concurrent webhooks and polls for the same txid cannot both win and no
application-level lock is needed.
"""
import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, List, Optional

import structlog
from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from pix_orchestrator.database.models import Transaction, TransactionStatus, utcnow

logger = structlog.get_logger(__name__)


class TransitionOutcome(str, Enum):
    """Result of a mark paid / mark expired call."""

    APPLIED = "applied"
    ALREADY_PAID = "already_paid"
    ALREADY_EXPIRED = "already_expired"
    NOT_FOUND = "not_found"


@dataclass
class TransitionResult:
    """Outcome plus the transaction as stored after the call."""

    outcome: TransitionOutcome
    transaction: Optional[Transaction] = None

    @property
    def applied(self) -> bool:
        return self.outcome == TransitionOutcome.APPLIED


class TransactionStore:
    """Read/write access to Transaction rows."""

    async def create(self, db: AsyncSession, **fields: Any) -> Transaction:
        """
        Persist a new transaction in ``generated`` status.

        Args:
            db: Database session
            **fields: Transaction column values

        Returns:
            Transaction: The committed row
        """
        transaction = Transaction(status=TransactionStatus.GENERATED.value, **fields)
        db.add(transaction)
        await db.commit()
        logger.info(
            "transaction_created",
            txid=transaction.txid,
            acquirer=transaction.acquirer,
            account_id=transaction.account_id,
            amount=str(transaction.amount),
        )
        return transaction

    async def get_by_txid(self, db: AsyncSession, txid: str) -> Optional[Transaction]:
        result = await db.execute(
            select(Transaction)
            .where(Transaction.txid == txid)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_for_account(
        self, db: AsyncSession, account_id: str, txid: str
    ) -> Optional[Transaction]:
        """Transaction by txid, only if owned by the account."""
        result = await db.execute(
            select(Transaction).where(
                Transaction.txid == txid, Transaction.account_id == account_id
            )
        )
        return result.scalar_one_or_none()

    async def find_by_correlation(
        self, db: AsyncSession, acquirer: str, correlation_ids: Iterable[str]
    ) -> Optional[Transaction]:
        """
        Match an acquirer-reported id against our txid or the provider reference.

        Ids are tried in order; the first match wins.
        """
        for correlation_id in correlation_ids:
            result = await db.execute(
                select(Transaction)
                .where(
                    Transaction.acquirer == acquirer,
                    or_(
                        Transaction.txid == correlation_id,
                        Transaction.provider_ref == correlation_id,
                    ),
                )
                .limit(1)
            )
            transaction = result.scalar_one_or_none()
            if transaction is not None:
                return transaction
        return None

    async def mark_paid(self, db: AsyncSession, txid: str) -> TransitionResult:
        """
        Settle a transaction exactly once.

        Sets status=paid and paid_at=now unless the row is already paid.
        A second call is a no-op reported as ALREADY_PAID, never an error.

        Args:
            db: Database session
            txid: Transaction correlation id

        Returns:
            TransitionResult: APPLIED for the single winning call
        """
        now = utcnow()
        result = await db.execute(
            update(Transaction)
            .where(
                Transaction.txid == txid,
                Transaction.status != TransactionStatus.PAID.value,
            )
            .values(status=TransactionStatus.PAID.value, paid_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        await db.commit()

        transaction = await self.get_by_txid(db, txid)
        if result.rowcount == 1:
            logger.info("transaction_marked_paid", txid=txid, paid_at=now.isoformat())
            return TransitionResult(TransitionOutcome.APPLIED, transaction)
        if transaction is None:
            logger.warning("mark_paid_transaction_not_found", txid=txid)
            return TransitionResult(TransitionOutcome.NOT_FOUND)

        logger.info("transaction_already_paid", txid=txid)
        return TransitionResult(TransitionOutcome.ALREADY_PAID, transaction)

    async def mark_expired(self, db: AsyncSession, txid: str) -> TransitionResult:
        """
        Expire a generated transaction.

        Never overrides a paid transaction; expiring twice is a no-op.
        """
        now = utcnow()
        result = await db.execute(
            update(Transaction)
            .where(
                Transaction.txid == txid,
                Transaction.status == TransactionStatus.GENERATED.value,
            )
            .values(status=TransactionStatus.EXPIRED.value, expired_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        await db.commit()

        transaction = await self.get_by_txid(db, txid)
        if result.rowcount == 1:
            logger.info("transaction_marked_expired", txid=txid)
            return TransitionResult(TransitionOutcome.APPLIED, transaction)
        if transaction is None:
            return TransitionResult(TransitionOutcome.NOT_FOUND)
        if transaction.status == TransactionStatus.PAID.value:
            return TransitionResult(TransitionOutcome.ALREADY_PAID, transaction)
        return TransitionResult(TransitionOutcome.ALREADY_EXPIRED, transaction)

    async def list_generated(
        self,
        db: AsyncSession,
        created_after: Optional[datetime] = None,
        created_before: Optional[datetime] = None,
        limit: int = 50,
    ) -> List[Transaction]:
        """Oldest-first generated transactions within a creation window."""
        stmt = select(Transaction).where(Transaction.status == TransactionStatus.GENERATED.value)
        if created_after is not None:
            stmt = stmt.where(Transaction.created_at >= created_after)
        if created_before is not None:
            stmt = stmt.where(Transaction.created_at < created_before)
        result = await db.execute(stmt.order_by(Transaction.created_at).limit(limit))
        return list(result.scalars())

    async def get(self, db: AsyncSession, transaction_id: uuid.UUID) -> Optional[Transaction]:
        return await db.get(Transaction, transaction_id)
