# services/file_api/app/crud.py
import asyncio
import datetime
from core.config import logger as core_logger
from core.supabase_client import get_data_client, FILES_TABLE
from core.models import FileRecord
from core.utils import escape_filter_term
from typing import List, Optional, Any
from supabase import PostgrestAPIError

logger = core_logger.getChild("FileAPI").getChild("CRUD")

NAME_COLUMN = "name"
USER_ID_COLUMN = "user_id"
CREATED_AT_COLUMN = "created_at"


def _to_records(rows: Optional[List[dict]], job_prefix: str = "") -> List[FileRecord]:
    records = []
    for row in rows or []:
        try:
            records.append(FileRecord(**row))
        except Exception as p_err:
            logger.warning(f"{job_prefix} Skipping unparsable file row {row.get('id', 'UNKNOWN')}: {p_err}", exc_info=False)
    return records


async def insert_file_record(user_id: str, name: str, size: int, tags: List[str], categories: List[str]) -> FileRecord:
    """Inserts the metadata row for a newly stored file."""
    job_prefix = f"[{user_id}:{name}]"
    supabase = await get_data_client()
    row = {
        NAME_COLUMN: name,
        "size": size,
        "tags": tags,
        "categories": categories,
        USER_ID_COLUMN: user_id,
    }

    def db_call():
        return supabase.table(FILES_TABLE).insert(row).execute()

    try:
        response = await asyncio.to_thread(db_call)
    except PostgrestAPIError as e:
        logger.error(f"{job_prefix} Supabase error inserting file row: {e.message} (Code: {e.code}, Details: {e.details})", exc_info=False)
        raise

    logger.info(f"{job_prefix} Inserted file metadata.")
    if response.data:
        return FileRecord(**response.data[0])
    # Insert succeeded but the API returned no representation
    return FileRecord(name=name, size=size, tags=tags, categories=categories, user_id=user_id)


async def list_files(user_id: str) -> List[FileRecord]:
    """All of a user's files, newest first."""
    job_prefix = f"[{user_id}]"
    supabase = await get_data_client()

    def db_call():
        return supabase.table(FILES_TABLE)\
               .select("*")\
               .eq(USER_ID_COLUMN, user_id)\
               .order(CREATED_AT_COLUMN, desc=True)\
               .execute()

    try:
        response = await asyncio.to_thread(db_call)
    except PostgrestAPIError as e:
        logger.error(f"{job_prefix} Supabase error listing files: {e.message} (Code: {e.code}, Details: {e.details})", exc_info=False)
        raise

    records = _to_records(response.data, job_prefix)
    logger.info(f"{job_prefix} Listed {len(records)} file(s).")
    return records


async def get_file(user_id: str, name: str) -> Optional[FileRecord]:
    """The user's file called `name`, or None when it does not exist or belongs to someone else."""
    job_prefix = f"[{user_id}:{name}]"
    supabase = await get_data_client()

    def db_call():
        return supabase.table(FILES_TABLE)\
               .select("*")\
               .eq(NAME_COLUMN, name)\
               .eq(USER_ID_COLUMN, user_id)\
               .limit(1)\
               .execute()

    try:
        response = await asyncio.to_thread(db_call)
    except PostgrestAPIError as e:
        logger.error(f"{job_prefix} Supabase error fetching file row: {e.message} (Code: {e.code}, Details: {e.details})", exc_info=False)
        raise

    records = _to_records(response.data, job_prefix)
    if not records:
        logger.info(f"{job_prefix} No file row found.")
        return None
    return records[0]


async def rename_file_record(user_id: str, old_name: str, new_name: str) -> None:
    job_prefix = f"[{user_id}:{old_name}]"
    supabase = await get_data_client()

    def db_call():
        return supabase.table(FILES_TABLE)\
               .update({NAME_COLUMN: new_name})\
               .eq(NAME_COLUMN, old_name)\
               .eq(USER_ID_COLUMN, user_id)\
               .execute()

    try:
        await asyncio.to_thread(db_call)
    except PostgrestAPIError as e:
        logger.error(f"{job_prefix} Supabase error renaming file row: {e.message} (Code: {e.code}, Details: {e.details})", exc_info=False)
        raise
    logger.info(f"{job_prefix} Renamed file row to '{new_name}'.")


async def delete_file_record(user_id: str, name: str) -> None:
    job_prefix = f"[{user_id}:{name}]"
    supabase = await get_data_client()

    def db_call():
        return supabase.table(FILES_TABLE)\
               .delete()\
               .eq(NAME_COLUMN, name)\
               .eq(USER_ID_COLUMN, user_id)\
               .execute()

    try:
        await asyncio.to_thread(db_call)
    except PostgrestAPIError as e:
        logger.error(f"{job_prefix} Supabase error deleting file row: {e.message} (Code: {e.code}, Details: {e.details})", exc_info=False)
        raise
    logger.info(f"{job_prefix} Deleted file row.")


def build_search_filter(keywords: List[str]) -> str:
    """PostgREST or-filter matching any keyword against name, tags or categories."""
    clauses = []
    for keyword in keywords:
        term = escape_filter_term(keyword)
        if not term:
            continue
        clauses.append(f"{NAME_COLUMN}.ilike.%{term}%,tags.cs.{{{term}}},categories.cs.{{{term}}}")
    return ",".join(clauses)


async def search_files(user_id: str, keywords: List[str]) -> List[FileRecord]:
    """The user's files whose name contains, or whose tags/categories include, any keyword."""
    job_prefix = f"[{user_id}]"
    filter_expr = build_search_filter(keywords)
    if not filter_expr:
        logger.info(f"{job_prefix} Search skipped: no usable keywords in {keywords}.")
        return []
    supabase = await get_data_client()

    def db_call():
        return supabase.table(FILES_TABLE)\
               .select("*")\
               .eq(USER_ID_COLUMN, user_id)\
               .or_(filter_expr)\
               .order(CREATED_AT_COLUMN, desc=True)\
               .execute()

    try:
        response = await asyncio.to_thread(db_call)
    except PostgrestAPIError as e:
        logger.error(f"{job_prefix} Supabase error searching files: {e.message} (Code: {e.code}, Details: {e.details})", exc_info=False)
        raise

    records = _to_records(response.data, job_prefix)
    logger.info(f"{job_prefix} Search for {keywords} matched {len(records)} file(s).")
    return records


async def list_files_created_before(cutoff: datetime.datetime) -> List[FileRecord]:
    """Files of every user created before `cutoff` (used by the retention sweep)."""
    supabase = await get_data_client()

    def db_call():
        return supabase.table(FILES_TABLE)\
               .select("*")\
               .lt(CREATED_AT_COLUMN, cutoff.isoformat())\
               .execute()

    try:
        response = await asyncio.to_thread(db_call)
    except PostgrestAPIError as e:
        logger.error(f"Supabase error listing expired files: {e.message} (Code: {e.code}, Details: {e.details})", exc_info=False)
        raise
    return _to_records(response.data)


async def delete_file_records_by_id(ids: List[Any]) -> None:
    if not ids:
        return
    supabase = await get_data_client()

    def db_call():
        return supabase.table(FILES_TABLE).delete().in_("id", ids).execute()

    try:
        await asyncio.to_thread(db_call)
    except PostgrestAPIError as e:
        logger.error(f"Supabase error deleting {len(ids)} file row(s): {e.message} (Code: {e.code}, Details: {e.details})", exc_info=False)
        raise
    logger.info(f"Deleted {len(ids)} file row(s) by id.")
