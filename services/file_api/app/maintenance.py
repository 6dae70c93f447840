# services/file_api/app/maintenance.py
import asyncio
import datetime
from typing import Optional

from core import storage
from core.config import settings, logger as core_logger
from . import crud

logger = core_logger.getChild("FileAPI").getChild("Retention")


async def purge_expired_files(max_age_hours: int, now: Optional[datetime.datetime] = None) -> int:
    """Deletes objects and rows of files older than `max_age_hours`. Returns how many were purged."""
    now = now or datetime.datetime.now(datetime.timezone.utc)
    cutoff = now - datetime.timedelta(hours=max_age_hours)
    expired = await crud.list_files_created_before(cutoff)
    if not expired:
        logger.info(f"No files older than {cutoff.isoformat()}.")
        return 0

    # Rows without an owner have no object key to remove
    keys = [storage.object_key(r.user_id, r.name) for r in expired if r.user_id]
    await storage.remove_objects(keys)
    await crud.delete_file_records_by_id([r.id for r in expired if r.id is not None])
    logger.info(f"Purged {len(expired)} file(s) created before {cutoff.isoformat()}.")
    return len(expired)


async def retention_loop(max_age_hours: int, interval_seconds: int = settings.RETENTION_SWEEP_INTERVAL_SECONDS):
    """Runs purge_expired_files forever; a failed sweep is logged and retried on the next tick."""
    logger.info(f"Retention sweep started: max age {max_age_hours}h, every {interval_seconds}s.")
    while True:
        try:
            await purge_expired_files(max_age_hours)
        except Exception as e:
            logger.error(f"Retention sweep failed: {e}", exc_info=True)
        await asyncio.sleep(interval_seconds)
