# scheduler/scheduler.py
import asyncio
import os
import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from dotenv import load_dotenv
from catalog.media import MediaClient
from scheduler.sweeper import sweep_orphaned_assets

load_dotenv()
SWEEP_INTERVAL_MINUTES = int(os.getenv("SWEEP_INTERVAL_MINUTES", "30"))

logger = logging.getLogger("scheduler")
logger.setLevel(logging.INFO)
handler = logging.StreamHandler()
handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
logger.addHandler(handler)


async def scheduled_sweep():
    """
    Run one orphaned-asset sweep against Cloudinary.
    """
    logger.info("Starting orphaned asset sweep")
    outcome = await sweep_orphaned_assets(MediaClient())
    logger.info(
        f"Sweep done, {len(outcome['removed'])} removed, "
        f"{len(outcome['failed'])} left"
    )


async def async_main():
    """
    Start an AsyncIOScheduler that sweeps every SWEEP_INTERVAL_MINUTES.

    Runs until the process is terminated.
    """
    scheduler = AsyncIOScheduler()
    scheduler.add_job(
        scheduled_sweep,
        "interval",
        minutes=SWEEP_INTERVAL_MINUTES,
        id="orphan_sweep",
        max_instances=1,
    )

    scheduler.start()
    logger.info(f"Scheduler started (every {SWEEP_INTERVAL_MINUTES} min)")
    await asyncio.Event().wait()


if __name__ == "__main__":
    asyncio.run(async_main())
