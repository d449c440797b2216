"""
Process-wide service graph.

Built once per process and shared by the API and the reconciliation worker;
API tests replace ``get_services`` through ``app.dependency_overrides``.
"""
from dataclasses import dataclass
from functools import lru_cache

import redis.asyncio as aioredis

from pix_orchestrator.config import get_settings
from pix_orchestrator.core.api_keys import ApiKeyService
from pix_orchestrator.core.orchestrator import ChargeOrchestrator
from pix_orchestrator.core.reconciliation import ReconciliationPoller
from pix_orchestrator.core.settlement import SettlementNotifier
from pix_orchestrator.database.connection import get_session_factory
from pix_orchestrator.integrations.acquirers import AcquirerGateway, build_gateway
from pix_orchestrator.integrations.webhook_handler import WebhookHandler
from pix_orchestrator.monitoring.health import HealthCheck


@dataclass
class Services:
    """Long-lived service objects shared by all requests."""

    gateway: AcquirerGateway
    orchestrator: ChargeOrchestrator
    notifier: SettlementNotifier
    poller: ReconciliationPoller
    webhook_handler: WebhookHandler
    api_keys: ApiKeyService
    health: HealthCheck


@lru_cache()
def get_services() -> Services:
    """Build the service graph from settings."""
    settings = get_settings()
    redis_client = aioredis.from_url(settings.redis_url) if settings.redis_url else None
    session_factory = get_session_factory()

    gateway = build_gateway(settings, redis_client=redis_client, session_factory=session_factory)
    notifier = SettlementNotifier(session_factory=session_factory)
    return Services(
        gateway=gateway,
        orchestrator=ChargeOrchestrator(gateway, settings=settings),
        notifier=notifier,
        poller=ReconciliationPoller(gateway, notifier=notifier, settings=settings),
        webhook_handler=WebhookHandler(notifier=notifier),
        api_keys=ApiKeyService(),
        health=HealthCheck(gateway, session_factory=session_factory),
    )
