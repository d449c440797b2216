"""
Circuit breaker for acquirer calls.

Stops calling an acquirer that keeps failing so failover moves on at once
instead of waiting out its timeout on every charge.
"""
import time
from typing import Any, Awaitable, Callable, Optional, TypeVar

import structlog

from pix_orchestrator.integrations.acquirers.base import AcquirerError, AcquirerErrorType
from pix_orchestrator.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class CircuitOpenError(AcquirerError):
    """Raised instead of calling an acquirer whose circuit is open."""

    def __init__(self, acquirer: str):
        super().__init__(
            f"circuit open for {acquirer}", acquirer, AcquirerErrorType.TRANSIENT
        )


class CircuitBreaker:
    """
    Circuit breaker for one acquirer and credential scope.

    closed: calls pass through; consecutive failures are counted.
    open: calls fail fast until `timeout` seconds have passed.
    half_open: calls pass; `success_threshold` successes close the circuit,
    any failure reopens it.
    """

    def __init__(
        self,
        acquirer: str,
        failure_threshold: int = 5,
        timeout: int = 60,
        success_threshold: int = 1,
        on_state_change: Optional[Callable[[str, str], Awaitable[None]]] = None,
    ):
        """
        Initialize circuit breaker.

        Args:
            acquirer: Acquirer name
            failure_threshold: Number of failures before opening circuit
            timeout: Seconds before attempting to close circuit
            success_threshold: Successful calls needed to close circuit
            on_state_change: Awaited with (acquirer, new_state) on open/close
        """
        self.acquirer = acquirer
        self.failure_threshold = failure_threshold
        self.timeout = timeout
        self.success_threshold = success_threshold
        self.on_state_change = on_state_change
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time: Optional[float] = None
        self.state = "closed"  # closed, open, half_open

    async def call(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """
        Execute coroutine function with circuit breaker protection.

        Only transient errors count as failures; permanent and configuration
        errors say nothing about the acquirer's availability.

        Raises:
            CircuitOpenError: If circuit is open
        """
        if self.state == "open":
            if (
                self.last_failure_time is not None
                and time.monotonic() - self.last_failure_time >= self.timeout
            ):
                self._set_state("half_open")
                self.success_count = 0
                logger.info("circuit_breaker_half_open", acquirer=self.acquirer)
            else:
                raise CircuitOpenError(self.acquirer)

        try:
            result = await func(*args, **kwargs)
        except AcquirerError as e:
            if e.is_transient:
                await self.on_failure()
            raise
        await self.on_success()
        return result

    async def on_success(self) -> None:
        """Record successful call."""
        self.failure_count = 0
        if self.state == "half_open":
            self.success_count += 1
            if self.success_count >= self.success_threshold:
                self._set_state("closed")
                logger.info("circuit_breaker_closed", acquirer=self.acquirer)
                await self._notify("closed")

    async def on_failure(self) -> None:
        """Record failed call."""
        self.failure_count += 1
        self.last_failure_time = time.monotonic()
        if self.state == "half_open" or (
            self.state == "closed" and self.failure_count >= self.failure_threshold
        ):
            self._set_state("open")
            logger.warning(
                "circuit_breaker_opened",
                acquirer=self.acquirer,
                failure_count=self.failure_count,
            )
            await self._notify("open")

    def _set_state(self, state: str) -> None:
        self.state = state
        metrics.record_circuit_state(self.acquirer, state)

    async def _notify(self, state: str) -> None:
        if self.on_state_change is not None:
            await self.on_state_change(self.acquirer, state)
