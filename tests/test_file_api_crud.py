import datetime
import pytest
from unittest.mock import patch, AsyncMock, MagicMock
from postgrest import APIError as PostgrestAPIError

from services.file_api.app import crud, maintenance
from core.models import FileRecord


def make_query(data=None):
    """Supabase query builder mock where every filter returns the builder itself."""
    query = MagicMock()
    for method in ("select", "insert", "update", "delete", "eq", "or_", "order", "limit", "lt", "in_"):
        getattr(query, method).return_value = query
    query.execute.return_value = MagicMock(data=data)
    return query


@pytest.fixture
def supabase_query():
    query = make_query()
    mock_client = MagicMock()
    mock_client.table.return_value = query
    with patch("services.file_api.app.crud.get_data_client", new_callable=AsyncMock) as mock_get_client:
        mock_get_client.return_value = mock_client
        yield query


def _row(name, **kwargs):
    row = {"id": 1, "name": name, "size": 10, "tags": ["a"], "categories": None, "user_id": "user-123", "created_at": "2024-05-01T12:00:00+00:00"}
    row.update(kwargs)
    return row


@pytest.mark.asyncio
async def test_insert_file_record(supabase_query):
    supabase_query.execute.return_value = MagicMock(data=[_row("report.pdf", tags=["finance"], categories=["reports"])])

    record = await crud.insert_file_record("user-123", "report.pdf", 10, ["finance"], ["reports"])

    assert isinstance(record, FileRecord)
    assert record.name == "report.pdf"
    assert record.categories == ["reports"]
    supabase_query.insert.assert_called_once_with({
        "name": "report.pdf", "size": 10, "tags": ["finance"], "categories": ["reports"], "user_id": "user-123",
    })

@pytest.mark.asyncio
async def test_insert_file_record_without_representation(supabase_query):
    supabase_query.execute.return_value = MagicMock(data=[])
    record = await crud.insert_file_record("user-123", "report.pdf", 10, [], [])
    assert record.name == "report.pdf"
    assert record.id is None

@pytest.mark.asyncio
async def test_insert_file_record_db_error(supabase_query):
    supabase_query.execute.side_effect = PostgrestAPIError({"message": "duplicate key", "code": "23505", "details": "", "hint": ""})
    with pytest.raises(PostgrestAPIError):
        await crud.insert_file_record("user-123", "report.pdf", 10, [], [])

@pytest.mark.asyncio
async def test_list_files_filters_by_owner(supabase_query):
    supabase_query.execute.return_value = MagicMock(data=[_row("b.pdf", id=2), _row("a.pdf", id=1)])

    records = await crud.list_files("user-123")

    assert [r.name for r in records] == ["b.pdf", "a.pdf"]
    assert records[0].categories == []  # NULL column becomes an empty list
    supabase_query.eq.assert_called_once_with("user_id", "user-123")
    supabase_query.order.assert_called_once_with("created_at", desc=True)

@pytest.mark.asyncio
async def test_list_files_skips_bad_rows(supabase_query):
    supabase_query.execute.return_value = MagicMock(data=[_row("ok.pdf"), {"id": 5, "size": "not-a-number"}])
    records = await crud.list_files("user-123")
    assert [r.name for r in records] == ["ok.pdf"]

@pytest.mark.asyncio
async def test_get_file_found(supabase_query):
    supabase_query.execute.return_value = MagicMock(data=[_row("report.pdf")])

    record = await crud.get_file("user-123", "report.pdf")

    assert record.name == "report.pdf"
    supabase_query.eq.assert_any_call("name", "report.pdf")
    supabase_query.eq.assert_any_call("user_id", "user-123")
    supabase_query.limit.assert_called_once_with(1)

@pytest.mark.asyncio
async def test_get_file_missing(supabase_query):
    supabase_query.execute.return_value = MagicMock(data=[])
    assert await crud.get_file("user-123", "nope.pdf") is None

@pytest.mark.asyncio
async def test_rename_file_record(supabase_query):
    await crud.rename_file_record("user-123", "old.pdf", "new.pdf")
    supabase_query.update.assert_called_once_with({"name": "new.pdf"})
    supabase_query.eq.assert_any_call("name", "old.pdf")
    supabase_query.eq.assert_any_call("user_id", "user-123")

@pytest.mark.asyncio
async def test_delete_file_record(supabase_query):
    await crud.delete_file_record("user-123", "old.pdf")
    supabase_query.delete.assert_called_once()
    supabase_query.eq.assert_any_call("name", "old.pdf")
    supabase_query.eq.assert_any_call("user_id", "user-123")


def test_build_search_filter():
    expr = crud.build_search_filter(["invoice", "march"])
    assert expr == (
        "name.ilike.%invoice%,tags.cs.{invoice},categories.cs.{invoice},"
        "name.ilike.%march%,tags.cs.{march},categories.cs.{march}"
    )

def test_build_search_filter_strips_filter_syntax():
    assert crud.build_search_filter(["a,b)", "(*)"]) == "name.ilike.%ab%,tags.cs.{ab},categories.cs.{ab}"

@pytest.mark.asyncio
async def test_search_files(supabase_query):
    supabase_query.execute.return_value = MagicMock(data=[_row("invoice_march.pdf")])

    records = await crud.search_files("user-123", ["invoice"])

    assert [r.name for r in records] == ["invoice_march.pdf"]
    supabase_query.eq.assert_called_once_with("user_id", "user-123")
    supabase_query.or_.assert_called_once_with("name.ilike.%invoice%,tags.cs.{invoice},categories.cs.{invoice}")

@pytest.mark.asyncio
async def test_search_files_without_usable_keywords(supabase_query):
    assert await crud.search_files("user-123", ["%%", ""]) == []
    supabase_query.execute.assert_not_called()

@pytest.mark.asyncio
async def test_list_files_created_before(supabase_query):
    cutoff = datetime.datetime(2024, 5, 1, tzinfo=datetime.timezone.utc)
    supabase_query.execute.return_value = MagicMock(data=[_row("old.pdf")])

    records = await crud.list_files_created_before(cutoff)

    assert len(records) == 1
    supabase_query.lt.assert_called_once_with("created_at", cutoff.isoformat())

@pytest.mark.asyncio
async def test_delete_file_records_by_id(supabase_query):
    await crud.delete_file_records_by_id([1, 2])
    supabase_query.in_.assert_called_once_with("id", [1, 2])

@pytest.mark.asyncio
async def test_delete_file_records_by_id_empty(supabase_query):
    await crud.delete_file_records_by_id([])
    supabase_query.execute.assert_not_called()


# --- Retention sweep ---
@pytest.mark.asyncio
async def test_purge_expired_files():
    now = datetime.datetime(2024, 5, 2, 12, 0, tzinfo=datetime.timezone.utc)
    expired = [
        FileRecord(id=1, name="a.pdf", user_id="user-1"),
        FileRecord(id=2, name="b.png", user_id="user-2"),
    ]
    with patch("services.file_api.app.crud.list_files_created_before", new_callable=AsyncMock) as mock_list, \
         patch("services.file_api.app.crud.delete_file_records_by_id", new_callable=AsyncMock) as mock_delete, \
         patch("core.storage.remove_objects", new_callable=AsyncMock) as mock_remove:
        mock_list.return_value = expired

        purged = await maintenance.purge_expired_files(24, now=now)

    assert purged == 2
    mock_list.assert_called_once_with(now - datetime.timedelta(hours=24))
    mock_remove.assert_called_once_with(["user-1/a.pdf", "user-2/b.png"])
    mock_delete.assert_called_once_with([1, 2])

@pytest.mark.asyncio
async def test_purge_expired_files_nothing_to_do():
    with patch("services.file_api.app.crud.list_files_created_before", new_callable=AsyncMock) as mock_list, \
         patch("core.storage.remove_objects", new_callable=AsyncMock) as mock_remove:
        mock_list.return_value = []
        assert await maintenance.purge_expired_files(24) == 0
    mock_remove.assert_not_called()
