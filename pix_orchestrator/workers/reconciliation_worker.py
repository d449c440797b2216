"""
Reconciliation background worker.

Periodically polls acquirers for open charges whose webhook never arrived
and expires charges past their TTL.
"""
import argparse
import asyncio
import signal
from typing import Any, Dict, Optional

import structlog

from pix_orchestrator.config import get_settings
from pix_orchestrator.core.services import get_services
from pix_orchestrator.database.connection import close_db, get_session_factory
from pix_orchestrator.monitoring.logging import setup_logging

logger = structlog.get_logger(__name__)


async def run_reconciliation_batch() -> Dict[str, int]:
    """Run one reconciliation pass in a fresh session."""
    services = get_services()
    async with get_session_factory()() as db:
        summary = await services.poller.run_batch(db)
    # Settlement side effects triggered by this batch
    await services.notifier.drain()

    if summary["errors"]:
        logger.warning("reconciliation_batch_had_errors", errors=summary["errors"])
    return summary


async def start_reconciliation_worker(interval_seconds: Optional[int] = None) -> None:
    """
    Start the reconciliation worker.

    Args:
        interval_seconds: Seconds between runs (default from settings)
    """
    setup_logging()
    interval = interval_seconds or get_settings().reconciliation_interval_seconds

    logger.info("reconciliation_worker_starting", interval_seconds=interval)

    running = True

    def signal_handler(sig: int, frame: Any) -> None:
        nonlocal running
        logger.info("reconciliation_worker_shutdown_signal_received", signal=sig)
        running = False

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        while running:
            try:
                await run_reconciliation_batch()
            except Exception as e:
                logger.error("reconciliation_execution_error", error=str(e))
                # Continue running even if one batch fails

            # Sleep in short steps so shutdown signals are honoured quickly
            remaining = float(interval)
            while remaining > 0 and running:
                step = min(remaining, 1.0)
                await asyncio.sleep(step)
                remaining -= step
    finally:
        await close_db()
        logger.info("reconciliation_worker_stopped")


def run() -> None:
    """Console entry point."""
    parser = argparse.ArgumentParser(description="PIX reconciliation worker")
    parser.add_argument(
        "--interval", type=int, default=None, help="Seconds between reconciliation runs"
    )
    args = parser.parse_args()
    asyncio.run(start_reconciliation_worker(interval_seconds=args.interval))


if __name__ == "__main__":
    run()
