"""SQLAlchemy database models for PIX orchestration."""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JsonType = JSON().with_variant(JSONB(), "postgresql")
# SQLite only autoincrements INTEGER primary keys
BigIntPk = BigInteger().with_variant(Integer(), "sqlite")


def utcnow() -> datetime:
    """Timezone-aware current time."""
    return datetime.now(timezone.utc)


class TransactionStatus(str, Enum):
    """Persisted transaction lifecycle states."""

    GENERATED = "generated"
    PAID = "paid"
    EXPIRED = "expired"


class DeliveryStatus(str, Enum):
    """Outbound webhook delivery states."""

    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class Transaction(Base):
    """
    PIX charge records.

    A row is written once a charge has been issued by an acquirer. Status is
    only ever changed through the conditional updates in TransactionStore;
    rows are never deleted.
    """

    __tablename__ = "transactions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    txid: Mapped[str] = mapped_column(String(35), unique=True, nullable=False, index=True)
    provider_ref: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    acquirer: Mapped[str] = mapped_column(String(32), nullable=False)
    account_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TransactionStatus.GENERATED.value, index=True
    )
    payment_code: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(String(255), nullable=True)
    payer_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    payer_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    payer_document: Mapped[str | None] = mapped_column(String(32), nullable=True)
    payer_phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    attribution: Mapped[Dict[str, Any] | None] = mapped_column(JsonType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, index=True
    )
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    expired_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        CheckConstraint("amount > 0", name="positive_amount"),
        CheckConstraint(
            "status IN ('generated', 'paid', 'expired')",
            name="valid_transaction_status",
        ),
        CheckConstraint(
            "(status = 'paid' AND paid_at IS NOT NULL) OR (status != 'paid' AND paid_at IS NULL)",
            name="paid_at_iff_paid",
        ),
        Index("idx_transactions_status_created", "status", "created_at"),
        Index("idx_transactions_account_txid", "account_id", "txid"),
    )

    @property
    def api_client_id(self) -> str | None:
        """Originating API client, for transactions created via the public API."""
        return (self.attribution or {}).get("api_client_id")

    @property
    def is_terminal(self) -> bool:
        """Whether the transaction can no longer change status."""
        return self.status in (TransactionStatus.PAID.value, TransactionStatus.EXPIRED.value)

    def __repr__(self) -> str:
        """String representation of Transaction."""
        return (
            f"<Transaction(txid={self.txid}, acquirer={self.acquirer}, "
            f"amount={self.amount}, status={self.status})>"
        )


class AcquirerConfig(Base):
    """
    Acquirer routing configuration.

    Rows with a NULL account_id are global; an account-scoped row for the
    same acquirer name replaces the global one for that account.
    """

    __tablename__ = "acquirer_configs"

    id: Mapped[int] = mapped_column(BigIntPk, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(32), nullable=False)
    account_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=100)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    force_failure: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    base_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    status_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (UniqueConstraint("name", "account_id", name="uq_acquirer_account"),)

    def __repr__(self) -> str:
        """String representation of AcquirerConfig."""
        return (
            f"<AcquirerConfig(name={self.name}, account_id={self.account_id}, "
            f"priority={self.priority}, enabled={self.enabled})>"
        )


class AccountSetting(Base):
    """
    Key/value overrides for acquirer credentials and endpoints.

    account_id NULL holds the global override layer.
    """

    __tablename__ = "account_settings"

    id: Mapped[int] = mapped_column(BigIntPk, primary_key=True, autoincrement=True)
    account_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    key: Mapped[str] = mapped_column(String(100), nullable=False)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (UniqueConstraint("account_id", "key", name="uq_account_setting"),)

    def __repr__(self) -> str:
        """String representation of AccountSetting (value omitted)."""
        return f"<AccountSetting(account_id={self.account_id}, key={self.key})>"


class ApiClient(Base):
    """
    Integrator credentials for the public API.

    The API key itself is never stored, only its SHA-256 digest and a short
    display prefix.
    """

    __tablename__ = "api_clients"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    account_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    api_key_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    api_key_prefix: Mapped[str] = mapped_column(String(16), nullable=False)
    webhook_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    webhook_secret: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    total_requests: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    last_request_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    def __repr__(self) -> str:
        """String representation of ApiClient."""
        return f"<ApiClient(id={self.id}, prefix={self.api_key_prefix}, active={self.is_active})>"


class WebhookDelivery(Base):
    """
    Outbound webhook delivery log.

    Created as pending before the POST and updated once with the outcome.
    """

    __tablename__ = "webhook_deliveries"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    api_client_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    transaction_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    webhook_url: Mapped[str] = mapped_column(String(500), nullable=False)
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    payload: Mapped[Dict[str, Any]] = mapped_column(JsonType, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=DeliveryStatus.PENDING.value
    )
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    last_attempt_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    response_status: Mapped[int | None] = mapped_column(Integer, nullable=True)
    response_body: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'success', 'failed')",
            name="valid_delivery_status",
        ),
        CheckConstraint("attempts >= 1", name="positive_attempts"),
    )

    def __repr__(self) -> str:
        """String representation of WebhookDelivery."""
        return (
            f"<WebhookDelivery(id={self.id}, event={self.event_type}, "
            f"status={self.status}, attempts={self.attempts})>"
        )


class MonitoringEvent(Base):
    """
    Acquirer health and webhook anomaly events.

    Append-only; consumed by dashboards and alerting.
    """

    __tablename__ = "monitoring_events"

    id: Mapped[int] = mapped_column(BigIntPk, primary_key=True, autoincrement=True)
    acquirer: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    event_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    response_time_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    retry_attempt: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, index=True
    )

    __table_args__ = (Index("idx_monitoring_acquirer_type", "acquirer", "event_type"),)

    def __repr__(self) -> str:
        """String representation of MonitoringEvent."""
        return f"<MonitoringEvent(acquirer={self.acquirer}, type={self.event_type})>"
