"""Monitoring: logging, metrics, monitoring events and health checks."""
from .events import MonitoringEventType, MonitoringRecorder
from .logging import get_logger, setup_logging
from .metrics import metrics

__all__ = [
    "MonitoringEventType",
    "MonitoringRecorder",
    "get_logger",
    "metrics",
    "setup_logging",
]
