# services/file_api/app/routers/files.py
import logging
import time
from typing import List, Optional
from urllib.parse import quote

from fastapi import APIRouter, Body, Depends, File, Form, HTTPException, Response, UploadFile

from core import storage
from core.config import settings
from core.models import (
    AuthenticatedUser, FileRecord, GatewayResponse, RenameRequest, ShareLink, ShareRequest, UploadResult
)
from core.utils import ensure_extension, parse_label_input, sanitize_filename, split_extension
from .. import analysis, crud
from ..dependencies import get_current_user, rate_limiter, read_validated_upload

logger = logging.getLogger("FileManager_Core").getChild("FileAPI").getChild("FilesRouter")

router = APIRouter(dependencies=[Depends(rate_limiter)])


async def _with_public_urls(user_id: str, records: List[FileRecord]) -> List[FileRecord]:
    for record in records:
        record.url = await storage.get_public_url(storage.object_key(user_id, record.name))
    return records


async def _find_existing(user: AuthenticatedUser, name: str) -> Optional[FileRecord]:
    try:
        return await crud.get_file(user.id, name)
    except Exception as e:
        logger.error(f"[{user.id}:{name}] Lookup failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))


async def _require_owned_file(user: AuthenticatedUser, filename: str) -> FileRecord:
    record = await _find_existing(user, filename)
    if not record:
        raise HTTPException(status_code=404, detail="File not found or access denied")
    return record


def _final_upload_name(descriptive_filename: Optional[str], original_filename: str) -> str:
    """User-confirmed name with the original extension, or a timestamped original name."""
    _, extension = split_extension(original_filename)
    if descriptive_filename and descriptive_filename.strip():
        return ensure_extension(sanitize_filename(descriptive_filename), extension)
    return sanitize_filename(f"{int(time.time() * 1000)}_{original_filename}")


@router.post("/analyze", response_model=GatewayResponse)
async def analyze_uploaded_file(
    file: Optional[UploadFile] = File(None),
    user: AuthenticatedUser = Depends(get_current_user),
):
    """Suggest a descriptive name, categories and tags for a file before it is stored."""
    content = await read_validated_upload(file)
    logger.info(f"[{user.id}] Analyze request for '{file.filename}' ({len(content)} bytes)")

    result = await analysis.analyze_file(content, file.content_type, file.filename)
    if result is None:
        raise HTTPException(status_code=500, detail="Failed to analyze the file.")
    return GatewayResponse(status="success", data=result)


@router.post("/upload", response_model=GatewayResponse)
async def upload_file(
    file: Optional[UploadFile] = File(None),
    descriptive_filename: Optional[str] = Form(None),
    tags: Optional[str] = Form(None),
    categories: Optional[str] = Form(None),
    user: AuthenticatedUser = Depends(get_current_user),
):
    """Store a file and its metadata row under the confirmed name."""
    content = await read_validated_upload(file)
    try:
        name = _final_upload_name(descriptive_filename, file.filename)
        tag_list = parse_label_input(tags)
        category_list = parse_label_input(categories)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    job_prefix = f"[{user.id}:{name}]"
    logger.info(f"{job_prefix} Upload request ({len(content)} bytes, {len(tag_list)} tags, {len(category_list)} categories)")

    if await _find_existing(user, name):
        raise HTTPException(status_code=409, detail=f"A file named '{name}' already exists.")

    key = storage.object_key(user.id, name)
    try:
        await storage.upload_object(key, content, file.content_type)
    except storage.ObjectExistsError:
        logger.warning(f"{job_prefix} Storage already holds '{key}' without a metadata row.")
        raise HTTPException(status_code=409, detail=f"A file named '{name}' already exists.")
    except Exception as e:
        logger.error(f"{job_prefix} Storage upload failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Upload failed: {e}")

    try:
        record = await crud.insert_file_record(user.id, name, len(content), tag_list, category_list)
    except Exception as e:
        logger.error(f"{job_prefix} Metadata insert failed, removing stored object: {e}", exc_info=True)
        try:
            await storage.remove_objects([key])
        except Exception as cleanup_err:
            logger.error(f"{job_prefix} Could not remove orphaned object '{key}': {cleanup_err}", exc_info=False)
        raise HTTPException(status_code=500, detail=f"Upload failed: {e}")

    record.url = await storage.get_public_url(key)
    return GatewayResponse(
        status="success",
        data=UploadResult(file_path=name, record=record),
        message="File uploaded successfully",
    )


@router.get("", response_model=GatewayResponse)
async def list_files(user: AuthenticatedUser = Depends(get_current_user)):
    """The user's files, newest first, each with its public URL."""
    try:
        records = await crud.list_files(user.id)
        records = await _with_public_urls(user.id, records)
    except Exception as e:
        logger.error(f"[{user.id}] Listing files failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))
    return GatewayResponse(status="success", data=records)


@router.get("/{filename}/download")
async def download_file(filename: str, user: AuthenticatedUser = Depends(get_current_user)):
    record = await _require_owned_file(user, filename)
    try:
        content = await storage.download_object(storage.object_key(user.id, record.name))
    except Exception as e:
        logger.error(f"[{user.id}:{filename}] Download failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Download failed: {e}")

    ascii_name = record.name.encode("ascii", "ignore").decode() or "download"
    disposition = f'attachment; filename="{ascii_name}"; filename*=UTF-8\'\'{quote(record.name)}'
    return Response(
        content=content,
        media_type=storage.guess_content_type(record.name),
        headers={"Content-Disposition": disposition},
    )


@router.post("/{filename}/share", response_model=GatewayResponse)
async def share_file(
    filename: str,
    payload: Optional[ShareRequest] = Body(None),
    user: AuthenticatedUser = Depends(get_current_user),
):
    """Create a time-limited link that anyone can use to download the file."""
    record = await _require_owned_file(user, filename)
    expires_in = payload.expires_in if payload else settings.SHARE_LINK_EXPIRY_SECONDS
    try:
        url = await storage.create_signed_url(storage.object_key(user.id, record.name), expires_in)
    except Exception as e:
        logger.error(f"[{user.id}:{filename}] Creating share link failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Could not create share link: {e}")
    logger.info(f"[{user.id}:{filename}] Share link created, expires in {expires_in}s")
    return GatewayResponse(
        status="success",
        data=ShareLink(filename=record.name, url=url, expires_in=expires_in),
    )


@router.put("/{filename}", response_model=GatewayResponse)
async def rename_file(
    filename: str,
    payload: RenameRequest = Body(...),
    user: AuthenticatedUser = Depends(get_current_user),
):
    """Rename a file: storage copy to the new key and delete the old one, then update the row."""
    if not payload.new_name.strip():
        raise HTTPException(status_code=400, detail="New name required")
    record = await _require_owned_file(user, filename)

    _, extension = split_extension(record.name)
    try:
        new_name = ensure_extension(sanitize_filename(payload.new_name), extension)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    job_prefix = f"[{user.id}:{filename}]"
    if new_name == record.name:
        return GatewayResponse(status="success", data={"name": new_name}, message="File renamed")
    if await _find_existing(user, new_name):
        raise HTTPException(status_code=409, detail=f"A file named '{new_name}' already exists.")

    old_key = storage.object_key(user.id, record.name)
    new_key = storage.object_key(user.id, new_name)
    try:
        await storage.move_object(old_key, new_key)
    except storage.ObjectExistsError:
        raise HTTPException(status_code=409, detail=f"A file named '{new_name}' already exists.")
    except Exception as e:
        logger.error(f"{job_prefix} Rename to '{new_name}' failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))

    try:
        await crud.rename_file_record(user.id, record.name, new_name)
    except Exception as e:
        logger.error(f"{job_prefix} Metadata rename failed, moving object back: {e}", exc_info=True)
        try:
            await storage.move_object(new_key, old_key)
        except Exception as cleanup_err:
            logger.error(f"{job_prefix} Could not move '{new_key}' back to '{old_key}': {cleanup_err}", exc_info=False)
        raise HTTPException(status_code=500, detail=str(e))

    logger.info(f"{job_prefix} Renamed to '{new_name}'")
    return GatewayResponse(status="success", data={"name": new_name}, message="File renamed")


@router.delete("/{filename}", response_model=GatewayResponse)
async def delete_file(filename: str, user: AuthenticatedUser = Depends(get_current_user)):
    record = await _require_owned_file(user, filename)
    try:
        await storage.remove_objects([storage.object_key(user.id, record.name)])
        await crud.delete_file_record(user.id, record.name)
    except Exception as e:
        logger.error(f"[{user.id}:{filename}] Delete failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))
    logger.info(f"[{user.id}:{filename}] Deleted")
    return GatewayResponse(status="success", message="File deleted")
