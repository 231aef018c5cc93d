from apscheduler.schedulers.asyncio import AsyncIOScheduler

from price_tracker.config import Settings
from price_tracker.services.sync_manager import full_sync


def start_scheduler(settings: Settings) -> AsyncIOScheduler:
    scheduler = AsyncIOScheduler()
    scheduler.add_job(
        full_sync,
        "interval",
        minutes=settings.SYNC_INTERVAL_MINUTES,
        kwargs={"settings": settings},
        max_instances=1,
        coalesce=True,
    )
    scheduler.start()
    return scheduler
