"""
Periodic jobs
"""

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
import logging

from ticket_holds.config import settings

logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler(timezone="UTC")


async def _sweep_job():
    from ticket_holds.core import redis as redis_module
    from ticket_holds.services.expiry_sweeper import run_scheduled_sweep

    try:
        await run_scheduled_sweep(redis_client=redis_module.redis_client)
    except Exception as e:
        logger.error(f"Expiry sweep failed: {e}", exc_info=True)


def start_scheduler():
    """Start all scheduled jobs"""
    scheduler.add_job(
        _sweep_job,
        trigger=IntervalTrigger(seconds=settings.SWEEPER_INTERVAL_SECONDS),
        id="expiry_sweeper",
        name="Expire ticket holds and purchase links",
        replace_existing=True,
        max_instances=1,
        coalesce=True
    )
    scheduler.start()
    logger.info(f"Scheduler started with {len(scheduler.get_jobs())} job(s)")


def stop_scheduler():
    """Stop scheduler gracefully"""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
