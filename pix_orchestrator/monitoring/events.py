"""
Persisted monitoring events for acquirer health and webhook anomalies.

Every event is both written to the monitoring_events table and logged, so
dashboards and log search see the same stream.
"""
from enum import Enum
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from pix_orchestrator.database.models import MonitoringEvent

logger = structlog.get_logger(__name__)


class MonitoringEventType(str, Enum):
    """Kinds of monitoring events."""

    SUCCESS = "success"
    FAILURE = "failure"
    FORCED_FAILURE = "forced_failure"
    CIRCUIT_OPEN = "circuit_open"
    CIRCUIT_CLOSE = "circuit_close"
    WEBHOOK_REJECTED = "webhook_rejected"
    WEBHOOK_UNMATCHED = "webhook_unmatched"
    WEBHOOK_IGNORED = "webhook_ignored"


class MonitoringRecorder:
    """Writes monitoring events; commits immediately so they survive a later rollback."""

    async def record(
        self,
        db: AsyncSession,
        acquirer: str,
        event_type: MonitoringEventType,
        error_message: Optional[str] = None,
        response_time_ms: Optional[int] = None,
        retry_attempt: Optional[int] = None,
    ) -> MonitoringEvent:
        """
        Persist and log a monitoring event.

        Args:
            db: Database session
            acquirer: Acquirer the event refers to
            event_type: Event classification
            error_message: Failure reason, if any
            response_time_ms: Observed latency, if measured
            retry_attempt: Attempt number for retried calls

        Returns:
            MonitoringEvent: The stored event
        """
        event = MonitoringEvent(
            acquirer=acquirer,
            event_type=event_type.value,
            error_message=error_message[:2000] if error_message else None,
            response_time_ms=response_time_ms,
            retry_attempt=retry_attempt,
        )
        db.add(event)
        await db.commit()

        log = logger.warning if event_type != MonitoringEventType.SUCCESS else logger.info
        log(
            "monitoring_event",
            acquirer=acquirer,
            event_type=event_type.value,
            error=error_message,
            response_time_ms=response_time_ms,
        )
        return event
