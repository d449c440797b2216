"""
Health check endpoints for Kubernetes readiness/liveness probes.

Checks:
- Database connectivity
- Acquirer circuit breaker states
"""
from typing import Any, Dict, Optional

import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pix_orchestrator.database.connection import get_session_factory
from pix_orchestrator.integrations.acquirers import AcquirerGateway

logger = structlog.get_logger(__name__)


class HealthCheckError(Exception):
    """Raised when health check fails."""

    pass


class HealthCheck:
    """
    Health check service for monitoring system dependencies.

    Provides:
    - Database connectivity check
    - Acquirer availability (circuit state) check
    - Overall system health status
    """

    def __init__(
        self,
        gateway: AcquirerGateway,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    ) -> None:
        """Initialize health check service."""
        self.gateway = gateway
        self._session_factory = session_factory

    async def check_database(self) -> Dict[str, Any]:
        """
        Check database connectivity.

        Returns:
            Dict[str, Any]: Database health status

        Raises:
            HealthCheckError: If database check fails
        """
        try:
            session_factory = self._session_factory or get_session_factory()
            async with session_factory() as db:
                result = await db.execute(text("SELECT 1"))
                result.scalar()

                return {
                    "status": "healthy",
                    "service": "database",
                    "message": "Database connection successful",
                }

        except Exception as e:
            logger.error("database_health_check_failed", error=str(e))
            raise HealthCheckError(f"Database health check failed: {str(e)}")

    def check_acquirers(self) -> Dict[str, Any]:
        """
        Report acquirer circuit states.

        An open circuit degrades the service but does not make it unhealthy
        while at least one acquirer is still available.

        Returns:
            Dict[str, Any]: Acquirer health status
        """
        states = self.gateway.circuit_states()
        available = [name for name, state in states.items() if state != "open"]
        if len(available) == len(states):
            status = "healthy"
        elif available:
            status = "degraded"
        else:
            status = "unhealthy"
        return {"status": status, "service": "acquirers", "circuits": states}

    async def check_all(self) -> Dict[str, Any]:
        """
        Run all health checks.

        Returns:
            Dict[str, Any]: Overall health status
        """
        checks: Dict[str, Any] = {}
        all_healthy = True

        try:
            checks["database"] = await self.check_database()
        except HealthCheckError as e:
            checks["database"] = {
                "status": "unhealthy",
                "service": "database",
                "error": str(e),
            }
            all_healthy = False

        checks["acquirers"] = self.check_acquirers()
        if checks["acquirers"]["status"] == "unhealthy":
            all_healthy = False

        return {
            "status": "healthy" if all_healthy else "unhealthy",
            "checks": checks,
        }

    async def liveness(self) -> Dict[str, Any]:
        """
        Liveness probe endpoint.

        Does not check external dependencies.
        """
        return {
            "status": "alive",
            "message": "Application is running",
        }

    async def readiness(self) -> Dict[str, Any]:
        """Readiness probe endpoint; verifies all dependencies."""
        return await self.check_all()
