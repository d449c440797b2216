"""FastAPI dependency accessors over the shared service graph."""
import hmac
from typing import Optional

from fastapi import Depends, Header, HTTPException, status

from pix_orchestrator.config import Settings, get_settings
from pix_orchestrator.core import (
    ApiKeyService,
    ChargeOrchestrator,
    ReconciliationPoller,
)
from pix_orchestrator.core.services import Services, get_services
from pix_orchestrator.integrations.webhook_handler import WebhookHandler
from pix_orchestrator.monitoring.health import HealthCheck


def get_orchestrator(services: Services = Depends(get_services)) -> ChargeOrchestrator:
    return services.orchestrator


def get_poller(services: Services = Depends(get_services)) -> ReconciliationPoller:
    return services.poller


def get_webhook_handler(services: Services = Depends(get_services)) -> WebhookHandler:
    return services.webhook_handler


def get_api_keys(services: Services = Depends(get_services)) -> ApiKeyService:
    return services.api_keys


def get_health(services: Services = Depends(get_services)) -> HealthCheck:
    return services.health


async def require_admin_key(
    x_admin_key: Optional[str] = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> None:
    """
    Guard for operator endpoints.

    Admin routes are closed when no ``admin_api_key`` is configured.
    """
    expected = settings.admin_api_key
    if not expected or not x_admin_key or not hmac.compare_digest(
        x_admin_key.encode("utf-8"), expected.encode("utf-8")
    ):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error_code": "INVALID_ADMIN_KEY", "message": "Invalid or missing admin key"},
        )
