"""
Tests for log redaction, monitoring events, health checks and the worker.
"""
import os
import subprocess
import sys
from typing import Any, Callable
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import select

from pix_orchestrator.config import Settings
from pix_orchestrator.database.models import MonitoringEvent
from pix_orchestrator.integrations.acquirers import (
    AcquirerCredentials,
    AcquirerGateway,
    ResolvedAcquirer,
)
from pix_orchestrator.monitoring.events import MonitoringEventType, MonitoringRecorder
from pix_orchestrator.monitoring.health import HealthCheck
from pix_orchestrator.monitoring.logging import REDACTED, redact_secrets
from pix_orchestrator.workers import reconciliation_worker
from tests.conftest import FakeAdapter


class TestRedaction:
    """Test suite for the redact_secrets processor."""

    @pytest.mark.unit
    def test_top_level_and_nested_keys(self) -> None:
        event = {
            "event": "acquirer_request",
            "api_key": "k-123",
            "headers": {"Authorization": "Basic abc", "Content-Type": "application/json"},
            "items": [{"client_secret": "s"}],
            "txid": "T" * 26,
        }

        scrubbed = redact_secrets(None, "info", event)

        assert scrubbed["api_key"] == REDACTED
        assert scrubbed["headers"]["Authorization"] == REDACTED
        assert scrubbed["headers"]["Content-Type"] == "application/json"
        assert scrubbed["items"][0]["client_secret"] == REDACTED
        assert scrubbed["txid"] == "T" * 26


class TestMonitoringRecorder:
    """Test suite for MonitoringRecorder."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_record_persists_event(self, test_db: Any) -> None:
        await MonitoringRecorder().record(
            test_db,
            "valorion",
            MonitoringEventType.FAILURE,
            error_message="x" * 3000,
            response_time_ms=1500,
        )

        [event] = (await test_db.execute(select(MonitoringEvent))).scalars().all()
        assert event.acquirer == "valorion"
        assert event.event_type == "failure"
        assert event.response_time_ms == 1500
        assert len(event.error_message) == 2000


class TestHealthCheck:
    """Test suite for HealthCheck."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_all_healthy(
        self,
        test_settings: Settings,
        session_factory: Any,
        make_adapter: Callable[..., FakeAdapter],
    ) -> None:
        gateway = AcquirerGateway([make_adapter("ativus")], settings=test_settings)

        result = await HealthCheck(gateway, session_factory).check_all()

        assert result["status"] == "healthy"
        assert result["checks"]["database"]["status"] == "healthy"

    @pytest.mark.unit
    def test_acquirer_states(
        self, test_settings: Settings, make_adapter: Callable[..., FakeAdapter]
    ) -> None:
        gateway = AcquirerGateway(
            [make_adapter("ativus"), make_adapter("valorion")], settings=test_settings
        )
        health = HealthCheck(gateway)

        credentials = AcquirerCredentials(api_key="k")
        gateway.breaker(ResolvedAcquirer("ativus", credentials)).state = "open"
        assert health.check_acquirers()["status"] == "degraded"

        gateway.breaker(ResolvedAcquirer("valorion", credentials)).state = "open"
        assert health.check_acquirers()["status"] == "unhealthy"


class TestReconciliationWorker:
    """Test suite for the worker's batch runner."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_batch_uses_shared_services(self, session_factory: Any, mocker: Any) -> None:
        services = MagicMock()
        services.poller.run_batch = AsyncMock(
            return_value={"checked": 2, "paid": 1, "errors": 1, "expired": 0}
        )
        services.notifier.drain = AsyncMock()
        mocker.patch.object(reconciliation_worker, "get_services", return_value=services)
        mocker.patch.object(
            reconciliation_worker, "get_session_factory", return_value=session_factory
        )

        summary = await reconciliation_worker.run_reconciliation_batch()

        assert summary["paid"] == 1
        services.poller.run_batch.assert_awaited_once()
        services.notifier.drain.assert_awaited_once()

    @pytest.mark.unit
    def test_worker_does_not_load_web_layer(self) -> None:
        """Test the worker process can start without importing FastAPI or the routes."""
        script = (
            "import sys\n"
            "import pix_orchestrator.workers.reconciliation_worker\n"
            "loaded = [m for m in sys.modules\n"
            "          if m == 'fastapi' or m.startswith('pix_orchestrator.api')]\n"
            "print(','.join(loaded))\n"
        )
        result = subprocess.run(
            [sys.executable, "-c", script],
            capture_output=True,
            text=True,
            env={**os.environ, "DATABASE_URL": "sqlite+aiosqlite://"},
            check=True,
        )

        assert result.stdout.strip() == ""
