"""Retention worker: runs the retention purge once a day.

Sleeps until the next RETENTION_HOUR_UTC:00 UTC, purges, and repeats.
"""

import asyncio
from datetime import datetime, timedelta

import structlog

from composit.core.timezone import utcnow
from composit.services.container import Services
from composit.services.retention import run_retention_purge

logger = structlog.get_logger(__name__)


def seconds_until_next_run(now: datetime, hour_utc: int) -> float:
    """Seconds from now until the next hour_utc:00 (today if still ahead, else tomorrow)."""
    next_run = now.replace(hour=hour_utc, minute=0, second=0, microsecond=0)
    if next_run <= now:
        next_run += timedelta(days=1)
    return (next_run - now).total_seconds()


async def run_retention_worker(services: Services) -> None:
    """Main loop for the daily retention purge."""
    hour_utc = services.settings.retention_hour_utc
    logger.info("retention_worker.started", hour_utc=hour_utc)

    try:
        while True:
            delay = seconds_until_next_run(utcnow(), hour_utc)
            logger.debug("retention_worker.sleeping", seconds=delay)
            await asyncio.sleep(delay)

            try:
                await run_retention_purge(services)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(
                    "retention_worker.error",
                    error_type=type(e).__name__,
                    error_message=str(e),
                    exc_info=True,
                )

    except asyncio.CancelledError:
        logger.info("retention_worker.stopped")
        raise
