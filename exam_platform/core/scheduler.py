import asyncio
import logging
import os
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from exam_platform.services.sweeper import AutoSubmitSweeper

logger = logging.getLogger(__name__)


async def auto_submit_overdue_attempts(sweeper: AutoSubmitSweeper):
    try:
        await asyncio.to_thread(sweeper.sweep)
    except Exception as e:
        logger.error(f"Auto-submit sweep error: {e}", exc_info=True)


def start_scheduler(scheduler: AsyncIOScheduler, sweeper: AutoSubmitSweeper, interval_seconds: int) -> bool:
    if os.getenv("TESTING") == "true":
        logger.info("Scheduler disabled in test environment")
        return False

    if not scheduler.running:
        scheduler.add_job(
            auto_submit_overdue_attempts,
            'interval',
            seconds=interval_seconds,
            args=[sweeper],
            id='auto_submit_overdue_attempts',
            name='Auto-submit Overdue Exam Attempts',
            coalesce=True,
            replace_existing=True
        )
        scheduler.start()
        logger.info(f"Scheduler started with auto-submit sweep every {interval_seconds}s")
    return True


def stop_scheduler(scheduler: AsyncIOScheduler):
    if scheduler.running:
        scheduler.shutdown()
        logger.info("Scheduler stopped")
