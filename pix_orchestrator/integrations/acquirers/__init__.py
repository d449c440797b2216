"""Acquirer integrations."""
from typing import Any, Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pix_orchestrator.config import Settings, get_settings

from .ativus import AtivusAdapter
from .auth import OAuthTokenCache
from .bacen import EfiAdapter, InterAdapter
from .base import (
    AcquirerAdapter,
    AcquirerConfigurationError,
    AcquirerCredentials,
    AcquirerError,
    AcquirerErrorType,
    ChargeRequest,
    ChargeResult,
    PayerInfo,
    ResolvedAcquirer,
    StatusResult,
)
from .gateway import AcquirerGateway, UnknownAcquirerError
from .spedpay import SpedPayAdapter
from .status_tables import NormalizedStatus, normalize_status
from .valorion import ValorionAdapter


def build_gateway(
    settings: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    redis_client: Optional[Any] = None,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> AcquirerGateway:
    """Create a gateway with every supported acquirer registered."""
    settings = settings or get_settings()
    token_cache = OAuthTokenCache(redis_client)
    adapters = [
        AtivusAdapter(settings, transport),
        ValorionAdapter(settings, transport),
        SpedPayAdapter(settings, transport),
        InterAdapter(settings, transport, token_cache),
        EfiAdapter(settings, transport, token_cache),
    ]
    return AcquirerGateway(adapters, settings=settings, session_factory=session_factory)


__all__ = [
    "AcquirerAdapter",
    "AcquirerConfigurationError",
    "AcquirerCredentials",
    "AcquirerError",
    "AcquirerErrorType",
    "AcquirerGateway",
    "AtivusAdapter",
    "ChargeRequest",
    "ChargeResult",
    "EfiAdapter",
    "InterAdapter",
    "NormalizedStatus",
    "PayerInfo",
    "ResolvedAcquirer",
    "SpedPayAdapter",
    "StatusResult",
    "UnknownAcquirerError",
    "ValorionAdapter",
    "build_gateway",
    "normalize_status",
]
