# scheduler/sweeper.py
import os
from datetime import datetime, timezone
import logging
from pymongo import ASCENDING
from dotenv import load_dotenv
from catalog.db import get_db
from catalog.utils import network_retry

load_dotenv()
SWEEP_BATCH = int(os.getenv("SWEEP_BATCH", "100"))
SWEEP_ATTEMPTS = int(os.getenv("SWEEP_ATTEMPTS", "3"))

logger = logging.getLogger("sweeper")
logger.setLevel(logging.INFO)
handler = logging.StreamHandler()
handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
logger.addHandler(handler)

# Cloudinary answers "not found" for assets that are already gone
SETTLED_RESULTS = ("ok", "not found")


async def sweep_orphaned_assets(
    media, db=None, attempts=SWEEP_ATTEMPTS, max_wait=10, batch=SWEEP_BATCH
):
    """
    Retry media deletions that failed during a request.

    Reads up to `batch` records from orphaned_assets, least recently tried
    first, and retries media.destroy() for each under a tenacity policy.
    Settled assets are removed from the collection. Assets that still fail
    get their attempt counter, reason and lastAttemptAt updated, which moves
    them behind the records not yet tried, so later records are reached on
    the next sweep.

    Args:
        media (MediaClient): Client used to delete assets
        db: Database handle, defaults to get_db()
        attempts (int): Attempts per asset in this sweep
        max_wait (float): Upper bound of the backoff between attempts
        batch (int): Maximum number of records handled in one sweep

    Returns:
        dict: {"removed": [...publicIds], "failed": [...publicIds]}
    """
    db = db if db is not None else get_db()
    orphans = (
        await db.orphaned_assets.find({})
        .sort([("lastAttemptAt", ASCENDING)])
        .limit(batch)
        .to_list(length=batch)
    )
    if not orphans:
        logger.info("No orphaned assets to sweep")
        return {"removed": [], "failed": []}

    @network_retry(attempts=attempts, max_wait=max_wait)
    async def destroy(public_id):
        result = await media.destroy(public_id)
        status = (result or {}).get("result")
        if status not in SETTLED_RESULTS:
            raise RuntimeError(f"unexpected destroy result: {result}")
        return result

    removed, failed = [], []
    for orphan in orphans:
        public_id = orphan["publicId"]
        try:
            await destroy(public_id)
        except Exception as e:
            logger.warning(f"Orphan {public_id} still not deleted: {e}")
            await db.orphaned_assets.update_one(
                {"publicId": public_id},
                {
                    "$set": {
                        "reason": str(e),
                        "lastAttemptAt": datetime.now(timezone.utc),
                    },
                    "$inc": {"attempts": attempts},
                },
            )
            failed.append(public_id)
            continue
        await db.orphaned_assets.delete_one({"publicId": public_id})
        removed.append(public_id)

    logger.info(f"Sweep finished: {len(removed)} removed, {len(failed)} still orphaned")
    return {"removed": removed, "failed": failed}
