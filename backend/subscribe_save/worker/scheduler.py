"""
Daily rollover scheduler

Runs auto-resume and rollover for every shop once a day at the configured
business-local time.
"""

import asyncio
import logging

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger

from subscribe_save.config.settings import settings
from subscribe_save.infrastructure.db.database import close_db
from subscribe_save.infrastructure.services.rollover_service import RolloverService

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


async def sweep_all_shops():
    """Run one sweep, then release the pool bound to this event loop."""
    try:
        return await RolloverService().run_all_shops()
    finally:
        await close_db()


def process_subscriptions() -> None:
    """One sweep over all shops; errors are logged, the scheduler keeps running."""
    try:
        results = asyncio.run(sweep_all_shops())
    except Exception as e:
        logger.error(f"Daily subscription sweep failed: {e}")
        return

    for result in results:
        logger.info(
            f"{result.shop}: resumed={result.resumed} processed={result.processed} "
            f"created={result.created} errors={len(result.errors)}"
        )


def main() -> None:
    scheduler = BlockingScheduler(timezone=settings.shop_timezone)
    scheduler.add_job(
        process_subscriptions,
        CronTrigger(hour=settings.rollover_hour, minute=settings.rollover_minute),
        id="daily_rollover",
        replace_existing=True,
    )
    logger.info(
        f"Scheduler started. Daily rollover runs at "
        f"{settings.rollover_hour:02d}:{settings.rollover_minute:02d} {settings.shop_timezone}."
    )
    scheduler.start()


if __name__ == "__main__":
    main()
