"""
Pytest configuration and fixtures.
"""
import os

# Settings are read at import time by the API module
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("APP_ENV", "test")

from decimal import Decimal
from typing import Any, AsyncGenerator, Callable, List, Optional

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from pix_orchestrator.config import Settings
from pix_orchestrator.database.models import (
    AccountSetting,
    AcquirerConfig,
    Base,
    Transaction,
    TransactionStatus,
)
from pix_orchestrator.integrations.acquirers import (
    AcquirerAdapter,
    AcquirerError,
    AcquirerErrorType,
    ChargeRequest,
    ChargeResult,
    NormalizedStatus,
    ResolvedAcquirer,
    StatusResult,
)


class FakeAdapter(AcquirerAdapter):
    """In-memory acquirer used by orchestration tests."""

    default_base_url = "https://fake.acquirer.test"

    def __init__(
        self,
        name: str,
        settings: Settings,
        fail: bool = False,
        status: NormalizedStatus = NormalizedStatus.AWAITING_PAYMENT,
        required_credentials: tuple[str, ...] = (),
    ) -> None:
        super().__init__(settings=settings)
        self.name = name
        self.fail = fail
        self.status = status
        self.required_credentials = required_credentials
        self.create_calls: List[ChargeRequest] = []
        self.status_calls: List[str] = []

    async def create_charge(
        self, config: ResolvedAcquirer, request: ChargeRequest
    ) -> ChargeResult:
        self.validate_credentials(config)
        self.create_calls.append(request)
        if self.fail:
            raise AcquirerError(
                f"{self.name} returned HTTP 503", self.name, AcquirerErrorType.TRANSIENT, 503
            )
        return ChargeResult(
            payment_code=f"00020126580014br.gov.bcb.pix-{request.callback_id}",
            provider_ref=f"{self.name}-{request.callback_id}",
        )

    async def check_status(self, config: ResolvedAcquirer, provider_ref: str) -> StatusResult:
        self.status_calls.append(provider_ref)
        if self.fail:
            raise AcquirerError(f"{self.name} timed out", self.name, AcquirerErrorType.TRANSIENT)
        return StatusResult(status=self.status, raw_status=self.status.value.upper())


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings."""
    return Settings(
        database_url="sqlite+aiosqlite://",
        app_name="pix-orchestrator-test",
        app_env="test",
        log_level="DEBUG",
        public_base_url="https://pix.example.test",
        acquirer_status_retry_attempts=1,
        acquirer_timeout_seconds=2.0,
        webhook_timeout_seconds=2.0,
    )


@pytest_asyncio.fixture
async def engine(tmp_path: Any) -> AsyncGenerator[Any, Any]:
    """File-backed SQLite engine so separate sessions see each other's commits."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'pix_test.db'}",
        poolclass=NullPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: Any) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def test_db(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, Any]:
    """Create test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_adapter(test_settings: Settings) -> Callable[..., FakeAdapter]:
    def factory(name: str, **kwargs: Any) -> FakeAdapter:
        return FakeAdapter(name, test_settings, **kwargs)

    return factory


async def seed_acquirer(
    db: AsyncSession,
    name: str,
    priority: int = 100,
    enabled: bool = True,
    force_failure: bool = False,
    account_id: Optional[str] = None,
) -> AcquirerConfig:
    row = AcquirerConfig(
        name=name,
        priority=priority,
        enabled=enabled,
        force_failure=force_failure,
        account_id=account_id,
    )
    db.add(row)
    await db.commit()
    return row


async def seed_setting(
    db: AsyncSession, key: str, value: str, account_id: Optional[str] = None
) -> AccountSetting:
    row = AccountSetting(key=key, value=value, account_id=account_id)
    db.add(row)
    await db.commit()
    return row


async def seed_transaction(
    db: AsyncSession,
    txid: str = "A" * 26,
    acquirer: str = "ativus",
    account_id: str = "acct_1",
    status: str = TransactionStatus.GENERATED.value,
    provider_ref: Optional[str] = None,
    attribution: Optional[dict] = None,
    **kwargs: Any,
) -> Transaction:
    transaction = Transaction(
        txid=txid,
        acquirer=acquirer,
        account_id=account_id,
        amount=Decimal("10.00"),
        status=status,
        payment_code="00020126pix",
        provider_ref=provider_ref,
        attribution=attribution,
        **kwargs,
    )
    db.add(transaction)
    await db.commit()
    return transaction


class RecordingTransport(httpx.MockTransport):
    """MockTransport that keeps every request it served."""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]) -> None:
        self.requests: List[httpx.Request] = []

        def recording_handler(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return handler(request)

        super().__init__(recording_handler)
