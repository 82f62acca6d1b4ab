"""
Scheduler Entry Point — runs the compliance loop without a web server.

Usage:
    python -m trustwatch.scheduler_main
"""

import asyncio
import signal
import sys

import structlog

from trustwatch.config import settings
from trustwatch.observability import configure_logging
from trustwatch.service import TrustService

logger = structlog.get_logger(__name__)


async def main():
    configure_logging(settings.log_level, settings.log_format)
    logger.info("scheduler_starting", version=settings.app_version)

    service = TrustService(settings)
    await service.start(schedule=True)

    stop_event = asyncio.Event()

    def _handle_signal(signum, frame):
        logger.info("shutdown_signal_received", signal=signum)
        stop_event.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    logger.info("scheduler_running", interval=settings.compliance_interval_seconds)
    await stop_event.wait()

    await service.shutdown()
    logger.info("scheduler_shutdown_complete")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        sys.exit(0)
