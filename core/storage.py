# core/storage.py
"""
Core Storage Utilities.

Thin async wrappers around Supabase Storage for the files bucket. Every object
lives under a per-user prefix (`{user_id}/{filename}`), so two users can own
files with the same name. The storage client is synchronous; each call runs in
a worker thread.

Write helpers let storage errors propagate (callers decide the HTTP status);
nothing here retries. A write that hits an existing key raises
ObjectExistsError so callers can report a conflict.
"""
import asyncio
import mimetypes
from typing import List, Optional

from storage3.utils import StorageException

from core.config import settings, logger as core_logger
from core.supabase_client import get_data_client

logger = core_logger.getChild("Storage")


class ObjectExistsError(Exception):
    """The target key is already taken in the bucket."""


def _is_duplicate(error: StorageException) -> bool:
    # storage3 raises with the API's JSON error body as the only argument
    details = error.args[0] if error.args and isinstance(error.args[0], dict) else {}
    return (
        str(details.get("statusCode")) == "409"
        or details.get("error") == "Duplicate"
        or "already exists" in str(error).lower()
    )


def object_key(user_id: str, filename: str) -> str:
    """Path of a user's file inside the bucket."""
    return f"{user_id}/{filename}"


def guess_content_type(filename: str) -> str:
    content_type, _ = mimetypes.guess_type(filename)
    return content_type or "application/octet-stream"


async def _bucket(bucket: Optional[str] = None):
    supabase = await get_data_client()
    return supabase.storage.from_(bucket or settings.BUCKET_NAME)


async def upload_object(key: str, data: bytes, content_type: str, upsert: bool = False) -> None:
    """Writes `data` to `key`. Fails if the key exists unless `upsert` is set."""
    bucket = await _bucket()
    logger.debug(f"Uploading {len(data)} bytes to '{key}' ({content_type}).")

    def do_upload():
        return bucket.upload(
            path=key,
            file=data,
            file_options={"content-type": content_type, "upsert": "true" if upsert else "false"},
        )

    try:
        await asyncio.to_thread(do_upload)
    except StorageException as e:
        if _is_duplicate(e):
            raise ObjectExistsError(key) from e
        raise
    logger.info(f"Stored object '{key}' ({len(data)} bytes).")


async def download_object(key: str) -> bytes:
    bucket = await _bucket()
    content = await asyncio.to_thread(bucket.download, key)
    logger.info(f"Downloaded object '{key}' ({len(content)} bytes).")
    return content


async def remove_objects(keys: List[str]) -> None:
    if not keys:
        return
    bucket = await _bucket()
    await asyncio.to_thread(bucket.remove, keys)
    logger.info(f"Removed {len(keys)} object(s): {keys}")


async def copy_object(source_key: str, target_key: str) -> None:
    bucket = await _bucket()
    try:
        await asyncio.to_thread(bucket.copy, source_key, target_key)
    except StorageException as e:
        if _is_duplicate(e):
            raise ObjectExistsError(target_key) from e
        raise
    logger.info(f"Copied object '{source_key}' -> '{target_key}'.")


async def move_object(source_key: str, target_key: str) -> None:
    """Renames an object: server-side copy to the new key, then delete the old key."""
    await copy_object(source_key, target_key)
    await remove_objects([source_key])


async def get_public_url(key: str) -> str:
    bucket = await _bucket()
    # Builds the URL locally, no network call.
    return bucket.get_public_url(key)


async def create_signed_url(key: str, expires_in: int) -> str:
    """Returns a time-limited download URL for `key`."""
    bucket = await _bucket()
    response = await asyncio.to_thread(bucket.create_signed_url, key, expires_in)
    # Older storage clients use 'signedURL', newer ones add 'signedUrl'
    url = response.get("signedURL") or response.get("signedUrl")
    if not url:
        raise RuntimeError(f"Storage returned no signed URL for '{key}'.")
    return url
