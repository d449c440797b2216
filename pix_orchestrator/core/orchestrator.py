"""
Charge orchestration with acquirer failover.

Implements:
- Amount validation before any network call
- Ordered failover across the account's enabled acquirers
- Test-mode fault injection (configured acquirers forced to fail)
- Exactly one Transaction row per successful charge, none on failure
"""
import time
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from pix_orchestrator.config import Settings, get_settings
from pix_orchestrator.core.acquirer_config import AcquirerConfigResolver
from pix_orchestrator.core.transaction_store import TransactionStore
from pix_orchestrator.core.txid import generate_txid
from pix_orchestrator.database.models import Transaction
from pix_orchestrator.integrations.acquirers import (
    AcquirerConfigurationError,
    AcquirerError,
    AcquirerGateway,
    ChargeRequest,
    PayerInfo,
)
from pix_orchestrator.monitoring.events import MonitoringEventType, MonitoringRecorder
from pix_orchestrator.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

CENT = Decimal("0.01")


class ChargeError(Exception):
    """Charge could not be created."""

    def __init__(
        self,
        message: str,
        error_code: str = "PIX_GENERATION_FAILED",
        failures: Optional[List[Dict[str, str]]] = None,
    ):
        """
        Initialize charge error.

        Args:
            message: Safe, user-facing message
            error_code: Stable machine-readable code
            failures: Per-acquirer failure reasons, for logs only
        """
        super().__init__(message)
        self.error_code = error_code
        self.failures = failures or []


class ChargeValidationError(ChargeError):
    """Invalid charge request; raised before any acquirer is contacted."""


class NoAcquirerConfiguredError(ChargeError):
    """The account has no enabled acquirer."""

    def __init__(self, account_id: str):
        super().__init__(
            f"No payment acquirer is enabled for account {account_id}",
            error_code="NO_ACQUIRER_CONFIGURED",
        )


class ChargeConfigurationError(ChargeError):
    """An enabled acquirer lacks the configuration needed to call it."""

    def __init__(self, message: str):
        super().__init__(message, error_code="ACQUIRER_MISCONFIGURED")


@dataclass
class ChargeOutcome:
    """Successful charge creation."""

    transaction: Transaction
    attempts: List[str] = field(default_factory=list)

    @property
    def txid(self) -> str:
        return self.transaction.txid

    @property
    def payment_code(self) -> str:
        return self.transaction.payment_code

    @property
    def provider_ref(self) -> Optional[str]:
        return self.transaction.provider_ref

    @property
    def acquirer(self) -> str:
        return self.transaction.acquirer


class ChargeOrchestrator:
    """
    Creates PIX charges through the first acquirer that succeeds.

    Acquirers are tried strictly one after another; each call is bounded by
    the adapter's per-call timeout.
    """

    def __init__(
        self,
        gateway: AcquirerGateway,
        config_resolver: Optional[AcquirerConfigResolver] = None,
        store: Optional[TransactionStore] = None,
        recorder: Optional[MonitoringRecorder] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        """
        Initialize orchestrator.

        Args:
            gateway: Acquirer gateway
            config_resolver: Routing and credential resolution
            store: Transaction store
            recorder: Monitoring event recorder
            settings: Application settings
        """
        self.settings = settings or get_settings()
        self.gateway = gateway
        self.config_resolver = config_resolver or AcquirerConfigResolver(self.settings)
        self.store = store or TransactionStore()
        self.recorder = recorder or MonitoringRecorder()

    @staticmethod
    def validate_amount(amount: Any, settings: Settings) -> Decimal:
        """
        Validate and quantize a charge amount.

        Args:
            amount: Amount in BRL (Decimal, str, int or float)
            settings: Settings carrying the allowed range

        Returns:
            Decimal: Amount rounded to cents

        Raises:
            ChargeValidationError: With code INVALID_AMOUNT, AMOUNT_TOO_LOW or AMOUNT_TOO_HIGH
        """
        try:
            value = Decimal(str(amount)).quantize(CENT, rounding=ROUND_HALF_UP)
        except (InvalidOperation, ValueError, TypeError):
            raise ChargeValidationError("Amount must be a number", "INVALID_AMOUNT") from None

        if not value.is_finite() or value <= 0:
            raise ChargeValidationError("Amount must be greater than zero", "INVALID_AMOUNT")
        if value < settings.min_charge_amount:
            raise ChargeValidationError(
                f"Amount must be at least {settings.min_charge_amount}", "AMOUNT_TOO_LOW"
            )
        if value > settings.max_charge_amount:
            raise ChargeValidationError(
                f"Amount must not exceed {settings.max_charge_amount}", "AMOUNT_TOO_HIGH"
            )
        return value

    async def create_charge(
        self,
        db: AsyncSession,
        account_id: str,
        amount: Any,
        payer: Optional[PayerInfo] = None,
        attribution: Optional[Dict[str, Any]] = None,
        description: Optional[str] = None,
    ) -> ChargeOutcome:
        """
        Create a charge, failing over across the account's acquirers.

        Args:
            db: Database session
            account_id: Owning account
            amount: Charge amount in BRL
            payer: Optional payer details
            attribution: Opaque metadata stored verbatim with the transaction
            description: Charge description shown to the payer

        Returns:
            ChargeOutcome: The persisted transaction

        Raises:
            ChargeValidationError: Invalid amount or description
            NoAcquirerConfiguredError: Account has no enabled acquirer
            ChargeConfigurationError: A candidate is missing credentials
            ChargeError: Every candidate failed
        """
        value = self.validate_amount(amount, self.settings)
        description = (description or self.settings.charge_description).strip()
        if not description:
            raise ChargeValidationError("Description must not be empty", "INVALID_DESCRIPTION")

        candidates = await self.config_resolver.candidates(db, account_id)
        if not candidates:
            metrics.record_charge("rejected", "none")
            logger.error("no_acquirer_configured", account_id=account_id)
            raise NoAcquirerConfiguredError(account_id)

        txid = generate_txid(
            self.settings.txid_length, self.settings.get_reserved_txid_prefixes()
        )
        log = logger.bind(txid=txid, account_id=account_id)
        log.info(
            "charge_creation_started",
            amount=str(value),
            candidates=[c.name for c in candidates],
        )

        failures: List[Dict[str, str]] = []
        attempts: List[str] = []
        for config in candidates:
            attempts.append(config.name)

            if config.force_failure:
                reason = "forced failure (test mode)"
                await self.recorder.record(
                    db, config.name, MonitoringEventType.FORCED_FAILURE, error_message=reason
                )
                metrics.record_failover(config.name)
                failures.append({"acquirer": config.name, "reason": reason})
                log.warning("acquirer_forced_failure", acquirer=config.name)
                continue

            request = ChargeRequest(
                amount=value,
                description=description,
                callback_id=txid,
                payer=payer,
                postback_url=self.settings.webhook_callback_url(config.name),
            )
            start = time.monotonic()
            try:
                result = await self.gateway.create_charge(config, request)
            except AcquirerConfigurationError as e:
                log.error("acquirer_misconfigured", acquirer=config.name, error=str(e))
                metrics.record_charge("rejected", config.name)
                raise ChargeConfigurationError(str(e)) from e
            except AcquirerError as e:
                elapsed_ms = int((time.monotonic() - start) * 1000)
                await self.recorder.record(
                    db,
                    config.name,
                    MonitoringEventType.FAILURE,
                    error_message=str(e),
                    response_time_ms=elapsed_ms,
                )
                metrics.record_failover(config.name)
                failures.append({"acquirer": config.name, "reason": str(e)})
                log.warning(
                    "acquirer_charge_failed",
                    acquirer=config.name,
                    error=str(e),
                    error_type=e.error_type.value,
                )
                continue

            elapsed_ms = int((time.monotonic() - start) * 1000)
            transaction = await self.store.create(
                db,
                txid=txid,
                provider_ref=result.provider_ref,
                acquirer=config.name,
                account_id=account_id,
                amount=value,
                payment_code=result.payment_code,
                description=description,
                payer_name=payer.name if payer else None,
                payer_email=payer.email if payer else None,
                payer_document=payer.document if payer else None,
                payer_phone=payer.phone if payer else None,
                attribution=attribution,
            )
            await self.recorder.record(
                db, config.name, MonitoringEventType.SUCCESS, response_time_ms=elapsed_ms
            )
            metrics.record_charge("created", config.name, value)
            log.info(
                "charge_created",
                acquirer=config.name,
                provider_ref=result.provider_ref,
                attempts=len(attempts),
            )
            return ChargeOutcome(transaction=transaction, attempts=attempts)

        metrics.record_charge("failed", "all")
        log.error("charge_creation_exhausted", failures=failures)
        raise ChargeError(
            "Unable to generate PIX charge. Please try again later.",
            failures=failures,
        )
