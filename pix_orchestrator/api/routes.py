"""
API routes for PIX charges, acquirer webhooks, the public API and operations.
"""
from datetime import timedelta
from typing import Any, Dict, Optional

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, Response, status
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy.ext.asyncio import AsyncSession

from pix_orchestrator.config import get_settings
from pix_orchestrator.core import (
    ApiKeyError,
    ApiKeyService,
    ChargeConfigurationError,
    ChargeError,
    ChargeOrchestrator,
    ChargeValidationError,
    NoAcquirerConfiguredError,
    ReconciliationPoller,
    TransactionStore,
)
from pix_orchestrator.database.connection import get_db
from pix_orchestrator.database.models import ApiClient
from pix_orchestrator.integrations.outbound_webhooks import public_status
from pix_orchestrator.integrations.webhook_handler import WebhookHandler
from pix_orchestrator.monitoring.health import HealthCheck
from pix_orchestrator.monitoring.metrics import metrics

from pix_orchestrator.core.services import Services, get_services

from .dependencies import (
    get_api_keys,
    get_health,
    get_orchestrator,
    get_poller,
    get_webhook_handler,
    require_admin_key,
)
from .schemas import (
    ChargeResponse,
    ChargeStatusResponse,
    CreateChargeRequest,
    HealthCheckResponse,
    PublicCreatePixRequest,
    PublicPixResponse,
    PublicStatusResponse,
    ReconciliationRunResponse,
    WebhookAckResponse,
)

logger = structlog.get_logger(__name__)

# Create routers
charge_router = APIRouter(prefix="/charges", tags=["charges"])
public_router = APIRouter(prefix="/api/v1/pix", tags=["public-api"])
webhook_router = APIRouter(prefix="/webhooks", tags=["webhooks"])
admin_router = APIRouter(
    prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin_key)]
)
monitoring_router = APIRouter(tags=["monitoring"])

store = TransactionStore()


def _error(status_code: int, error_code: str, message: str) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"error_code": error_code, "message": message})


def _charge_http_error(e: ChargeError) -> HTTPException:
    """Map orchestration errors to responses that never expose acquirer details."""
    if isinstance(e, ChargeValidationError):
        return _error(status.HTTP_400_BAD_REQUEST, e.error_code, str(e))
    if isinstance(e, (NoAcquirerConfiguredError, ChargeConfigurationError)):
        return _error(
            status.HTTP_503_SERVICE_UNAVAILABLE,
            e.error_code,
            "Payment generation is not configured for this account",
        )
    return _error(status.HTTP_502_BAD_GATEWAY, e.error_code, str(e))


def _iso(value: Any) -> Optional[str]:
    return value.isoformat() if value is not None else None


@charge_router.post(
    "",
    response_model=ChargeResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a PIX charge",
    description="Create a charge through the first available acquirer",
)
async def create_charge(
    request: CreateChargeRequest,
    db: AsyncSession = Depends(get_db),
    orchestrator: ChargeOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    """Create a charge for the checkout."""
    try:
        outcome = await orchestrator.create_charge(
            db,
            account_id=request.account_id,
            amount=request.amount,
            payer=request.payer.to_payer() if request.payer else None,
            attribution=request.attribution,
            description=request.description,
        )
    except ChargeError as e:
        logger.warning("api_create_charge_failed", error_code=e.error_code, error=str(e))
        raise _charge_http_error(e)

    return {
        "txid": outcome.txid,
        "payment_code": outcome.payment_code,
        "provider_ref": outcome.provider_ref,
        "acquirer": outcome.acquirer,
    }


@charge_router.get(
    "/{txid}/status",
    response_model=ChargeStatusResponse,
    summary="Check charge status",
    description="Return the stored status, polling the acquirer if the charge is still open",
)
async def charge_status(
    txid: str,
    db: AsyncSession = Depends(get_db),
    poller: ReconciliationPoller = Depends(get_poller),
) -> Dict[str, Any]:
    """On-demand reconciliation for the checkout's polling loop."""
    result = await poller.reconcile(db, txid)
    if result is None:
        raise _error(status.HTTP_404_NOT_FOUND, "TRANSACTION_NOT_FOUND", "Transaction not found")
    return {
        "txid": result.txid,
        "status": public_status(result.status),
        "paid_at": _iso(result.paid_at),
        "checked_remote": result.checked_remote,
    }


async def authenticated_client(
    authorization: Optional[str] = Header(default=None),
    db: AsyncSession = Depends(get_db),
    api_keys: ApiKeyService = Depends(get_api_keys),
) -> ApiClient:
    """Resolve the API client from the bearer API key."""
    try:
        return await api_keys.authenticate(db, authorization)
    except ApiKeyError as e:
        raise _error(status.HTTP_401_UNAUTHORIZED, e.error_code, str(e))


@public_router.post(
    "/create",
    response_model=PublicPixResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a PIX charge (public API)",
)
async def public_create_pix(
    request: PublicCreatePixRequest,
    client: ApiClient = Depends(authenticated_client),
    db: AsyncSession = Depends(get_db),
    orchestrator: ChargeOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    """Create a charge on behalf of an API client; its webhook is notified on payment."""
    customer = request.customer.model_dump(exclude_none=True) if request.customer else None
    attribution = {
        "api_client_id": str(client.id),
        "external_reference": request.external_reference,
        "metadata": request.metadata,
        "customer": customer,
    }
    try:
        outcome = await orchestrator.create_charge(
            db,
            account_id=client.account_id,
            amount=request.amount,
            payer=request.customer.to_payer() if request.customer else None,
            attribution=attribution,
            description=request.description,
        )
    except ChargeError as e:
        logger.warning(
            "api_public_create_failed",
            client_id=str(client.id),
            error_code=e.error_code,
        )
        raise _charge_http_error(e)

    transaction = outcome.transaction
    expires_at = transaction.created_at + timedelta(minutes=get_settings().charge_expiry_minutes)
    return {
        "txid": transaction.txid,
        "pix_code": transaction.payment_code,
        "amount": float(transaction.amount),
        "status": public_status(transaction.status),
        "external_reference": request.external_reference,
        "created_at": transaction.created_at.isoformat(),
        "expires_at": expires_at.isoformat(),
    }


@public_router.get(
    "/status",
    response_model=PublicStatusResponse,
    summary="Query a PIX charge (public API)",
)
async def public_pix_status(
    txid: Optional[str] = Query(default=None, description="Transaction id"),
    client: ApiClient = Depends(authenticated_client),
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    """Status of one of the client's charges; other accounts' txids look nonexistent."""
    if not txid:
        raise _error(status.HTTP_400_BAD_REQUEST, "MISSING_TXID", "txid is required")

    transaction = await store.get_for_account(db, client.account_id, txid)
    if transaction is None:
        raise _error(status.HTTP_404_NOT_FOUND, "TRANSACTION_NOT_FOUND", "Transaction not found")

    attribution = transaction.attribution or {}
    return {
        "txid": transaction.txid,
        "external_reference": attribution.get("external_reference"),
        "amount": float(transaction.amount),
        "status": public_status(transaction.status),
        "paid_at": _iso(transaction.paid_at),
        "expired_at": _iso(transaction.expired_at),
        "created_at": transaction.created_at.isoformat(),
        "metadata": attribution.get("metadata"),
    }


@webhook_router.post(
    "/{acquirer}",
    response_model=WebhookAckResponse,
    summary="Acquirer webhook",
    description="Receive payment notifications; acknowledged whenever the body is readable",
)
async def acquirer_webhook(
    acquirer: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    handler: WebhookHandler = Depends(get_webhook_handler),
) -> Dict[str, Any]:
    """Acquirer callback endpoint, one path per acquirer."""
    if not handler.supports(acquirer):
        raise _error(status.HTTP_404_NOT_FOUND, "UNKNOWN_ACQUIRER", "Unknown webhook endpoint")

    body = await request.body()
    result = await handler.process(db, acquirer, body, request.headers.get("content-type"))
    logger.info(
        "api_webhook_processed",
        acquirer=acquirer,
        outcomes=[r["outcome"] for r in result["results"]],
    )
    return result


@admin_router.post(
    "/reconcile",
    response_model=ReconciliationRunResponse,
    summary="Run batch reconciliation",
)
async def run_reconciliation(
    db: AsyncSession = Depends(get_db),
    poller: ReconciliationPoller = Depends(get_poller),
) -> Dict[str, Any]:
    """Poll open charges and expire stale ones now."""
    return await poller.run_batch(db)


@admin_router.post(
    "/transactions/{txid}/mark-paid",
    summary="Manually settle a transaction",
    description="Recovery tool for payments confirmed out of band; idempotent",
)
async def manual_mark_paid(
    txid: str,
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    """Apply the idempotent mark-paid transition by hand."""
    transition = await store.mark_paid(db, txid)
    if transition.transaction is None:
        raise _error(status.HTTP_404_NOT_FOUND, "TRANSACTION_NOT_FOUND", "Transaction not found")
    if transition.applied:
        metrics.record_settlement(transition.transaction.acquirer, "manual")
        services.notifier.notify_paid(transition.transaction.id)
    logger.warning("manual_mark_paid", txid=txid, outcome=transition.outcome.value)
    return {
        "txid": txid,
        "outcome": transition.outcome.value,
        "paid_at": _iso(transition.transaction.paid_at),
    }


@monitoring_router.get(
    "/health",
    response_model=HealthCheckResponse,
    summary="Health check",
    description="Check overall system health",
)
async def health(health_check: HealthCheck = Depends(get_health)) -> Dict[str, Any]:
    """Overall health status."""
    return await health_check.check_all()


@monitoring_router.get("/health/live", summary="Liveness probe")
async def liveness(health_check: HealthCheck = Depends(get_health)) -> Dict[str, Any]:
    """Kubernetes liveness probe."""
    return await health_check.liveness()


@monitoring_router.get("/health/ready", summary="Readiness probe")
async def readiness(health_check: HealthCheck = Depends(get_health)) -> Dict[str, Any]:
    """Kubernetes readiness probe."""
    result = await health_check.readiness()
    if result["status"] != "healthy":
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=result)
    return result


@monitoring_router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Expose Prometheus metrics",
    response_class=Response,
)
async def prometheus_metrics() -> Response:
    """Expose Prometheus metrics."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
