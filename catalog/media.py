# catalog/media.py
import asyncio
import os
from datetime import datetime, timezone
import logging
import cloudinary
import cloudinary.uploader
from dotenv import load_dotenv

load_dotenv()
CLOUDINARY_CLOUD_NAME = os.getenv("CLOUDINARY_CLOUD_NAME", "")
CLOUDINARY_API_KEY = os.getenv("CLOUDINARY_API_KEY", "")
CLOUDINARY_API_SECRET = os.getenv("CLOUDINARY_API_SECRET", "")
MEDIA_TIMEOUT = float(os.getenv("MEDIA_TIMEOUT", "15"))

logger = logging.getLogger("media")
logger.setLevel(logging.INFO)
handler = logging.StreamHandler()
handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))
logger.addHandler(handler)


class MediaClient:
    def __init__(
        self,
        cloud_name=CLOUDINARY_CLOUD_NAME,
        api_key=CLOUDINARY_API_KEY,
        api_secret=CLOUDINARY_API_SECRET,
        timeout=MEDIA_TIMEOUT,
    ):
        cloudinary.config(
            cloud_name=cloud_name,
            api_key=api_key,
            api_secret=api_secret,
            secure=True,
        )
        self.timeout = timeout

    async def destroy(self, public_id):
        """
        Delete an uploaded image from Cloudinary.

        The SDK call is blocking, so it runs in a worker thread.

        Args:
            public_id (str): Asset handle stored on the book as publicId

        Returns:
            dict: Cloudinary answer, e.g. {"result": "ok"} or
            {"result": "not found"}

        Raises:
            cloudinary.exceptions.Error: On API or transport failures
        """
        return await asyncio.to_thread(
            cloudinary.uploader.destroy, public_id, timeout=self.timeout
        )


class MediaCleanup:
    """
    Best-effort removal of a book's image after its record changed.

    Called once the store mutation has committed. Failures are logged and
    recorded in the orphaned_assets collection for the sweeper; they never
    reach the caller and are not retried here.
    """

    def __init__(self, media, db):
        self.media = media
        self.db = db

    async def discard(self, public_id):
        if not public_id:
            return None
        try:
            result = await self.media.destroy(public_id)
            logger.info(f"Media delete {public_id}: {result}")
            return result
        except Exception as e:
            logger.exception(f"Media delete failed for {public_id}: {e}")
            await self.record_orphan(public_id, str(e))
            return None

    async def record_orphan(self, public_id, reason):
        now = datetime.now(timezone.utc)
        try:
            await self.db.orphaned_assets.update_one(
                {"publicId": public_id},
                {
                    "$set": {"reason": reason, "lastAttemptAt": now},
                    "$setOnInsert": {"createdAt": now},
                    "$inc": {"attempts": 1},
                },
                upsert=True,
            )
        except Exception as e:
            logger.exception(f"Could not record orphaned asset {public_id}: {e}")
