"""
Provider-agnostic acquirer adapter contract.

Every acquirer integration turns a ChargeRequest into its own wire call and
its own status vocabulary into a StatusResult. Failures of any kind (network,
timeout, non-2xx, unparsable body) surface as AcquirerError; adapters hold no
state and never touch the database.
"""
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterable, Optional

import httpx
import structlog

from pix_orchestrator.config import Settings, get_settings
from pix_orchestrator.integrations.acquirers.status_tables import (
    NormalizedStatus,
    normalize_status,
)

logger = structlog.get_logger(__name__)

RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


class AcquirerErrorType(Enum):
    """Classification of acquirer errors for retry and failover."""

    TRANSIENT = "transient"  # Retry / fail over
    PERMANENT = "permanent"  # Fail over, don't retry
    CONFIGURATION = "configuration"  # Surface immediately


class AcquirerError(Exception):
    """Base exception for acquirer call failures."""

    def __init__(
        self,
        message: str,
        acquirer: str,
        error_type: AcquirerErrorType = AcquirerErrorType.PERMANENT,
        status_code: Optional[int] = None,
    ):
        """
        Initialize acquirer error.

        Args:
            message: Error message (never contains credential material)
            acquirer: Acquirer name
            error_type: Classification of error
            status_code: HTTP status returned by the acquirer, if any
        """
        super().__init__(message)
        self.acquirer = acquirer
        self.error_type = error_type
        self.status_code = status_code

    @property
    def is_transient(self) -> bool:
        return self.error_type == AcquirerErrorType.TRANSIENT


class AcquirerConfigurationError(AcquirerError):
    """Raised when an acquirer is selected but its configuration is incomplete."""

    def __init__(self, message: str, acquirer: str):
        super().__init__(message, acquirer, AcquirerErrorType.CONFIGURATION)


@dataclass(frozen=True)
class AcquirerCredentials:
    """Credential bundle; which fields are needed depends on the acquirer."""

    api_key: Optional[str] = field(default=None, repr=False)
    client_id: Optional[str] = field(default=None, repr=False)
    client_secret: Optional[str] = field(default=None, repr=False)
    certificate: Optional[str] = field(default=None, repr=False)
    private_key: Optional[str] = field(default=None, repr=False)
    pix_key: Optional[str] = field(default=None, repr=False)


@dataclass(frozen=True)
class ResolvedAcquirer:
    """Fully resolved configuration handed to an adapter for one call."""

    name: str
    credentials: AcquirerCredentials
    base_url: Optional[str] = None
    status_url: Optional[str] = None
    priority: int = 100
    force_failure: bool = False


@dataclass(frozen=True)
class PayerInfo:
    """Optional payer details forwarded to acquirers that accept them."""

    name: Optional[str] = None
    email: Optional[str] = None
    document: Optional[str] = None
    phone: Optional[str] = None


@dataclass(frozen=True)
class ChargeRequest:
    """Provider-agnostic charge request."""

    amount: Decimal
    description: str
    callback_id: str
    payer: Optional[PayerInfo] = None
    postback_url: Optional[str] = None

    def __post_init__(self) -> None:
        if self.amount <= 0:
            raise ValueError("amount must be positive")
        if not self.description or not self.description.strip():
            raise ValueError("description must not be empty")

    @property
    def amount_cents(self) -> int:
        return int((self.amount * 100).to_integral_value())


@dataclass(frozen=True)
class ChargeResult:
    """Successful charge creation."""

    payment_code: str
    provider_ref: str


@dataclass(frozen=True)
class StatusResult:
    """Normalized status reported by an acquirer."""

    status: NormalizedStatus
    raw_status: Optional[str] = None
    paid_at: Optional[datetime] = None

    @property
    def is_paid(self) -> bool:
        return self.status == NormalizedStatus.PAID


def lookup_path(payload: Any, path: str) -> Any:
    """Resolve a dotted path ("data.id", "pix.0.horario") in nested JSON."""
    current = payload
    for part in path.split("."):
        if isinstance(current, dict):
            current = current.get(part)
        elif isinstance(current, list) and part.isdigit():
            index = int(part)
            current = current[index] if index < len(current) else None
        else:
            return None
        if current is None:
            return None
    return current


def first_value(payload: Any, paths: Iterable[str]) -> Optional[str]:
    """Return the first non-empty value found under any of the given paths."""
    for path in paths:
        value = lookup_path(payload, path)
        if value not in (None, ""):
            return str(value)
    return None


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse acquirer timestamps (ISO 8601 or 'YYYY-MM-DD HH:MM:SS'); None if unparsable."""
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.debug("acquirer_timestamp_unparsable", value=value)
        return None


class AcquirerAdapter(ABC):
    """
    Base class for acquirer integrations.

    Subclasses declare their name, default endpoints and required credential
    fields, and implement create_charge/check_status on top of _request_json.
    """

    name: str
    default_base_url: str
    default_status_url: Optional[str] = None
    required_credentials: tuple[str, ...] = ()

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Initialize adapter.

        Args:
            settings: Application settings
            transport: Optional httpx transport (tests inject httpx.MockTransport)
        """
        self.settings = settings or get_settings()
        self._transport = transport

    @abstractmethod
    async def create_charge(
        self, config: ResolvedAcquirer, request: ChargeRequest
    ) -> ChargeResult:
        """Issue a charge and return its payment code and provider reference."""

    @abstractmethod
    async def check_status(self, config: ResolvedAcquirer, provider_ref: str) -> StatusResult:
        """Query the acquirer for the current status of a charge."""

    def normalize(self, raw_status: Optional[str]) -> NormalizedStatus:
        return normalize_status(self.name, raw_status)

    def base_url(self, config: ResolvedAcquirer) -> str:
        return (config.base_url or self.default_base_url).rstrip("/")

    def status_url(self, config: ResolvedAcquirer) -> str:
        return config.status_url or self.default_status_url or self.base_url(config)

    def validate_credentials(self, config: ResolvedAcquirer) -> None:
        """
        Ensure every credential field this acquirer needs is present.

        Raises:
            AcquirerConfigurationError: Listing missing field names (never values)
        """
        missing = [f for f in self.required_credentials if not getattr(config.credentials, f)]
        if missing:
            raise AcquirerConfigurationError(
                f"{self.name} is missing credentials: {', '.join(missing)}",
                self.name,
            )

    def http_client(self, **kwargs: Any) -> httpx.AsyncClient:
        """Build a client carrying the per-call timeout."""
        kwargs.setdefault("timeout", self.settings.acquirer_timeout_seconds)
        if self._transport is not None:
            kwargs["transport"] = self._transport
        return httpx.AsyncClient(**kwargs)

    async def _request_json(
        self,
        client: httpx.AsyncClient,
        method: str,
        url: str,
        operation: str,
        tolerate_status: tuple[int, ...] = (),
        **kwargs: Any,
    ) -> Optional[Dict[str, Any]]:
        """
        Perform an HTTP call and decode the JSON body.

        Args:
            client: HTTP client
            method: HTTP method
            url: Target URL
            operation: Operation name for logs and errors
            tolerate_status: Non-2xx codes that return None instead of raising
            **kwargs: Passed to httpx (json, data, headers, auth, params)

        Returns:
            Decoded JSON object, or None for a tolerated status

        Raises:
            AcquirerError: On transport failure, non-2xx or unparsable body
        """
        start = time.monotonic()
        try:
            response = await client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise AcquirerError(
                f"{self.name} {operation} timed out", self.name, AcquirerErrorType.TRANSIENT
            ) from e
        except httpx.HTTPError as e:
            raise AcquirerError(
                f"{self.name} {operation} transport error: {type(e).__name__}",
                self.name,
                AcquirerErrorType.TRANSIENT,
            ) from e

        elapsed_ms = int((time.monotonic() - start) * 1000)
        logger.debug(
            "acquirer_response",
            acquirer=self.name,
            operation=operation,
            status_code=response.status_code,
            elapsed_ms=elapsed_ms,
        )

        if response.status_code in tolerate_status:
            return None

        if not response.is_success:
            error_type = (
                AcquirerErrorType.TRANSIENT
                if response.status_code in RETRYABLE_STATUS_CODES
                else AcquirerErrorType.PERMANENT
            )
            raise AcquirerError(
                f"{self.name} {operation} returned HTTP {response.status_code}: "
                f"{response.text[:200]}",
                self.name,
                error_type,
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise AcquirerError(
                f"{self.name} {operation} returned an unparsable body",
                self.name,
                AcquirerErrorType.PERMANENT,
                status_code=response.status_code,
            ) from e

        if not isinstance(data, dict):
            raise AcquirerError(
                f"{self.name} {operation} returned unexpected JSON ({type(data).__name__})",
                self.name,
                AcquirerErrorType.PERMANENT,
                status_code=response.status_code,
            )
        return data
