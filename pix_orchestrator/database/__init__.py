"""Database package."""
from .connection import close_db, get_db, get_engine, get_session_factory, init_db
from .models import (
    AccountSetting,
    AcquirerConfig,
    ApiClient,
    Base,
    DeliveryStatus,
    MonitoringEvent,
    Transaction,
    TransactionStatus,
    WebhookDelivery,
)

__all__ = [
    "AccountSetting",
    "AcquirerConfig",
    "ApiClient",
    "Base",
    "DeliveryStatus",
    "MonitoringEvent",
    "Transaction",
    "TransactionStatus",
    "WebhookDelivery",
    "close_db",
    "get_db",
    "get_engine",
    "get_session_factory",
    "init_db",
]
