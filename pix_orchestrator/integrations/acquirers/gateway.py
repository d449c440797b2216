"""
Single entry point for calling acquirers by name.

Wraps each adapter call with the acquirer's circuit breaker, latency metrics
and, for status checks only, tenacity retries on transient failures. Charge
creation is never retried here; the orchestrator fails over instead.
"""
import hashlib
import time
from typing import Awaitable, Callable, Dict, Iterable, Optional, Tuple, TypeVar

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from pix_orchestrator.config import Settings, get_settings
from pix_orchestrator.integrations.acquirers.base import (
    AcquirerAdapter,
    AcquirerError,
    ChargeRequest,
    ChargeResult,
    ResolvedAcquirer,
    StatusResult,
)
from pix_orchestrator.integrations.acquirers.circuit_breaker import (
    CircuitBreaker,
    CircuitOpenError,
)
from pix_orchestrator.monitoring.events import MonitoringEventType, MonitoringRecorder
from pix_orchestrator.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

T = TypeVar("T")


def _is_retryable(error: BaseException) -> bool:
    return (
        isinstance(error, AcquirerError)
        and error.is_transient
        and not isinstance(error, CircuitOpenError)
    )


def _log_retry(retry_state: RetryCallState) -> None:
    error = retry_state.outcome.exception() if retry_state.outcome else None
    logger.info(
        "acquirer_status_retry",
        acquirer=getattr(error, "acquirer", None),
        attempt=retry_state.attempt_number,
        error=str(error),
    )


def breaker_key(config: ResolvedAcquirer) -> Tuple[str, str]:
    """
    Circuit scope for one call: the acquirer plus a digest of the account's
    credentials and endpoint, so one account's failures never trip another's.
    """
    creds = config.credentials
    material = "|".join(
        value or ""
        for value in (creds.api_key, creds.client_id, config.base_url, config.status_url)
    )
    return config.name, hashlib.sha256(material.encode("utf-8")).hexdigest()[:16]


class UnknownAcquirerError(AcquirerError):
    """Raised for an acquirer name with no registered adapter."""

    def __init__(self, acquirer: str):
        super().__init__(f"no adapter registered for '{acquirer}'", acquirer)


class AcquirerGateway:
    """Registry of adapters plus per-acquirer resilience."""

    def __init__(
        self,
        adapters: Iterable[AcquirerAdapter],
        settings: Optional[Settings] = None,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        recorder: Optional[MonitoringRecorder] = None,
    ) -> None:
        """
        Initialize gateway.

        Args:
            adapters: Adapter instances, keyed by their ``name``
            settings: Application settings
            session_factory: Used to persist circuit open/close events
            recorder: Monitoring event recorder
        """
        self.settings = settings or get_settings()
        self.adapters: Dict[str, AcquirerAdapter] = {a.name: a for a in adapters}
        self.session_factory = session_factory
        self.recorder = recorder or MonitoringRecorder()
        self.breakers: Dict[Tuple[str, str], CircuitBreaker] = {}

    def adapter(self, acquirer: str) -> AcquirerAdapter:
        try:
            return self.adapters[acquirer]
        except KeyError:
            raise UnknownAcquirerError(acquirer) from None

    def breaker(self, config: ResolvedAcquirer) -> CircuitBreaker:
        key = breaker_key(config)
        if key not in self.breakers:
            self.breakers[key] = CircuitBreaker(
                config.name,
                failure_threshold=self.settings.circuit_failure_threshold,
                timeout=self.settings.circuit_reset_seconds,
                on_state_change=self._on_circuit_change,
            )
        return self.breakers[key]

    def circuit_states(self) -> Dict[str, str]:
        """
        Report one state per registered acquirer.

        An acquirer counts as open only when every credential scope seen for
        it is open; one closed scope keeps it available.
        """
        states: Dict[str, str] = {}
        for name in self.adapters:
            seen = [b.state for (acquirer, _), b in self.breakers.items() if acquirer == name]
            if not seen or "closed" in seen:
                states[name] = "closed"
            elif "half_open" in seen:
                states[name] = "half_open"
            else:
                states[name] = "open"
        return states

    async def _on_circuit_change(self, acquirer: str, state: str) -> None:
        if self.session_factory is None:
            return
        event_type = (
            MonitoringEventType.CIRCUIT_OPEN if state == "open" else MonitoringEventType.CIRCUIT_CLOSE
        )
        try:
            async with self.session_factory() as db:
                await self.recorder.record(db, acquirer, event_type)
        except SQLAlchemyError as e:
            logger.error(
                "circuit_event_record_failed", acquirer=acquirer, state=state, error=str(e)
            )

    async def _timed(
        self, config: ResolvedAcquirer, operation: str, call: Callable[[], Awaitable[T]]
    ) -> T:
        acquirer = config.name
        start = time.monotonic()
        try:
            result = await self.breaker(config).call(call)
        except AcquirerError as e:
            metrics.record_acquirer_call(
                acquirer, operation, e.error_type.value, time.monotonic() - start
            )
            raise
        metrics.record_acquirer_call(acquirer, operation, "success", time.monotonic() - start)
        return result

    async def create_charge(
        self, config: ResolvedAcquirer, request: ChargeRequest
    ) -> ChargeResult:
        """
        Issue a charge through the named acquirer.

        Args:
            config: Resolved acquirer configuration
            request: Provider-agnostic charge request

        Returns:
            ChargeResult: Payment code and provider reference

        Raises:
            AcquirerError: On any failure (including an open circuit)
        """
        adapter = self.adapter(config.name)
        return await self._timed(
            config, "create_charge", lambda: adapter.create_charge(config, request)
        )

    async def check_status(self, config: ResolvedAcquirer, provider_ref: str) -> StatusResult:
        """
        Query charge status, retrying transient failures with backoff.

        Raises:
            AcquirerError: Once retries are exhausted or on a permanent failure
        """
        adapter = self.adapter(config.name)
        retrying = AsyncRetrying(
            retry=retry_if_exception(_is_retryable),
            stop=stop_after_attempt(max(self.settings.acquirer_status_retry_attempts, 1)),
            wait=wait_exponential(
                multiplier=1, min=1, max=self.settings.acquirer_status_retry_max_wait
            ),
            before_sleep=_log_retry,
            reraise=True,
        )
        return await retrying(
            self._timed,
            config,
            "check_status",
            lambda: adapter.check_status(config, provider_ref),
        )
