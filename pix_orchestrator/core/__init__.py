"""Core orchestration logic."""
from .acquirer_config import AcquirerConfigResolver
from .api_keys import ApiKeyError, ApiKeyService
from .orchestrator import (
    ChargeConfigurationError,
    ChargeError,
    ChargeOrchestrator,
    ChargeOutcome,
    ChargeValidationError,
    NoAcquirerConfiguredError,
)
from .reconciliation import ReconciliationPoller, ReconciliationResult
from .settlement import SettlementNotifier
from .transaction_store import TransactionStore, TransitionOutcome, TransitionResult

__all__ = [
    "AcquirerConfigResolver",
    "ApiKeyError",
    "ApiKeyService",
    "ChargeConfigurationError",
    "ChargeError",
    "ChargeOrchestrator",
    "ChargeOutcome",
    "ChargeValidationError",
    "NoAcquirerConfiguredError",
    "ReconciliationPoller",
    "ReconciliationResult",
    "SettlementNotifier",
    "TransactionStore",
    "TransitionOutcome",
    "TransitionResult",
]
