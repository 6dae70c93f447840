import io
import pytest
from unittest.mock import patch, AsyncMock
from docx import Document

from services.file_api.app import analysis, assistant
from services.file_api.app.analysis import DOCX_MIME_TYPE, parse_analysis_response
from core.gemini_client import gemini_client
from core.models import FileRecord


def make_docx(*paragraphs: str) -> bytes:
    document = Document()
    for text in paragraphs:
        document.add_paragraph(text)
    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


# --- Analysis reply parsing ---
def test_parse_analysis_response():
    reply = '```json\n{"descriptive_filename": "Q3_Financial_Report", "categories": ["Finance", "finance"], "tags": [" Revenue ", "Q3"]}\n```'
    result = parse_analysis_response(reply, "scan001.pdf")
    assert result.descriptive_filename == "Q3_Financial_Report"
    assert result.categories == ["finance"]
    assert result.tags == ["revenue", "q3"]
    assert result.extension == "pdf"

def test_parse_analysis_response_drops_repeated_extension():
    reply = '{"descriptive_filename": "Beach_Sunset.JPG", "categories": [], "tags": []}'
    result = parse_analysis_response(reply, "IMG_2041.jpg")
    assert result.descriptive_filename == "Beach_Sunset"
    assert result.extension == "jpg"

def test_parse_analysis_response_accepts_camel_case_key():
    result = parse_analysis_response('{"descriptiveFilename": "Lease_Agreement"}', "doc.docx")
    assert result.descriptive_filename == "Lease_Agreement"
    assert result.tags == []

def test_parse_analysis_response_sanitizes_name():
    result = parse_analysis_response('{"descriptive_filename": "../reports/Q3: summary?"}', "a.pdf")
    assert result.descriptive_filename == "Q3 summary"

def test_parse_analysis_response_string_labels():
    reply = '{"descriptive_filename": "Q3_Report", "categories": "finance", "tags": "report, Q3"}'
    result = parse_analysis_response(reply, "a.pdf")
    assert result.categories == ["finance"]
    assert result.tags == ["report", "q3"]

@pytest.mark.parametrize("reply", [
    "Sure! Here is the analysis.",
    '["not", "an", "object"]',
    '{"categories": ["finance"]}',
    '{"descriptive_filename": "Q3_Report", "tags": 5}',
])
def test_parse_analysis_response_rejects_bad_replies(reply):
    with pytest.raises(ValueError):
        parse_analysis_response(reply, "a.pdf")


# --- Model input parts ---
@pytest.mark.asyncio
async def test_build_file_parts_inline_for_pdf():
    parts = await analysis.build_file_parts(b"%PDF", "application/pdf", "a.pdf")
    assert parts == [{"mime_type": "application/pdf", "data": b"%PDF"}]

@pytest.mark.asyncio
async def test_build_file_parts_docx_text():
    content = make_docx("Lease agreement", "", "Term: 12 months")
    parts = await analysis.build_file_parts(content, DOCX_MIME_TYPE, "lease.docx")
    assert parts == ["Document text:\nLease agreement\nTerm: 12 months"]

@pytest.mark.asyncio
async def test_build_file_parts_unreadable_docx():
    parts = await analysis.build_file_parts(b"not a zip archive", DOCX_MIME_TYPE, "broken.docx")
    assert parts == ["(The document contains no readable text.)"]


# --- analyze_file ---
@pytest.mark.asyncio
async def test_analyze_file_success():
    reply = '{"descriptive_filename": "Invoice_March", "categories": ["Billing"], "tags": ["invoice"]}'
    with patch.object(gemini_client, "generate_json", new_callable=AsyncMock) as mock_generate:
        mock_generate.return_value = (reply, {})
        result = await analysis.analyze_file(b"%PDF", "application/pdf", "inv.pdf")

    assert result.descriptive_filename == "Invoice_March"
    assert result.categories == ["billing"]
    contents = mock_generate.call_args.args[0]
    assert 'Original Filename: "inv.pdf"' in contents[0]
    assert contents[1] == {"mime_type": "application/pdf", "data": b"%PDF"}
    assert mock_generate.call_args.kwargs["model_type"] == "flash"

@pytest.mark.asyncio
async def test_analyze_file_model_error():
    with patch.object(gemini_client, "generate_json", new_callable=AsyncMock) as mock_generate:
        mock_generate.return_value = (None, {"error": "quota exceeded"})
        assert await analysis.analyze_file(b"%PDF", "application/pdf", "inv.pdf") is None

@pytest.mark.asyncio
async def test_analyze_file_unparsable_reply():
    with patch.object(gemini_client, "generate_json", new_callable=AsyncMock) as mock_generate:
        mock_generate.return_value = ("I cannot help with that.", {})
        assert await analysis.analyze_file(b"%PDF", "application/pdf", "inv.pdf") is None


# --- Search assistant ---
def test_is_file_search():
    assert assistant.is_file_search(["spiderman", "file"])
    assert assistant.is_file_search(["image"])
    assert not assistant.is_file_search(["weather", "today"])

def test_search_terms_prefers_specific_keywords():
    assert assistant.search_terms(["spiderman", "file"]) == ["spiderman"]
    assert assistant.search_terms(["pdf", "file"]) == ["pdf", "file"]

def test_describe_matches():
    assert assistant.describe_matches([]).startswith("No matching files found")
    assert assistant.describe_matches([FileRecord(name="a.pdf")]).startswith("I found 1 matching file.")
    assert assistant.describe_matches([FileRecord(name="a.pdf"), FileRecord(name="b.pdf")]).startswith("I found 2 matching files.")

@pytest.mark.asyncio
async def test_extract_keywords():
    with patch.object(gemini_client, "generate_text", new_callable=AsyncMock) as mock_generate:
        mock_generate.return_value = ('Keywords: ["Spiderman", "file", "two words"]', {})
        keywords = await assistant.extract_keywords("any spiderman document")
    assert keywords == ["spiderman", "file"]
    assert 'Query: "any spiderman document"' in mock_generate.call_args.args[0]

@pytest.mark.asyncio
async def test_extract_keywords_model_failure():
    with patch.object(gemini_client, "generate_text", new_callable=AsyncMock) as mock_generate:
        mock_generate.return_value = (None, {"error": "timeout"})
        assert await assistant.extract_keywords("hello") == []

@pytest.mark.asyncio
async def test_reply_to_message_searches_files():
    matches = [FileRecord(name="spiderman_poster.png", user_id="user-123")]
    with patch.object(gemini_client, "generate_text", new_callable=AsyncMock) as mock_generate, \
         patch("services.file_api.app.crud.search_files", new_callable=AsyncMock) as mock_search, \
         patch("core.storage.get_public_url", new_callable=AsyncMock) as mock_url:
        mock_generate.return_value = ('["spiderman", "image"]', {})
        mock_search.return_value = matches
        mock_url.return_value = "https://cdn.example/user-123/spiderman_poster.png"

        reply = await assistant.reply_to_message("user-123", "show my spiderman pictures")

    assert reply.mode == "search"
    assert reply.files[0].url == "https://cdn.example/user-123/spiderman_poster.png"
    assert reply.reply.startswith("I found 1 matching file.")
    mock_search.assert_called_once_with("user-123", ["spiderman"])
    mock_url.assert_called_once_with("user-123/spiderman_poster.png")
    mock_generate.assert_called_once()  # keyword extraction only

@pytest.mark.asyncio
async def test_reply_to_message_plain_chat():
    with patch.object(gemini_client, "generate_text", new_callable=AsyncMock) as mock_generate, \
         patch("services.file_api.app.crud.search_files", new_callable=AsyncMock) as mock_search:
        mock_generate.side_effect = [('["weather"]', {}), ("It is sunny.", {})]
        reply = await assistant.reply_to_message("user-123", "what's the weather like?")

    assert reply.mode == "chat"
    assert reply.reply == "It is sunny."
    assert reply.files == []
    mock_search.assert_not_called()

@pytest.mark.asyncio
async def test_reply_to_message_chat_failure_fallback():
    with patch.object(gemini_client, "generate_text", new_callable=AsyncMock) as mock_generate:
        mock_generate.side_effect = [(None, {"error": "down"}), (None, {"error": "down"})]
        reply = await assistant.reply_to_message("user-123", "hello")
    assert reply.mode == "chat"
    assert reply.reply == assistant.NO_REPLY_TEXT

@pytest.mark.asyncio
async def test_answer_file_question():
    record = FileRecord(name="contract.pdf", user_id="user-123")
    with patch.object(gemini_client, "generate_text", new_callable=AsyncMock) as mock_generate, \
         patch("core.storage.download_object", new_callable=AsyncMock) as mock_download:
        mock_download.return_value = b"%PDF contract"
        mock_generate.return_value = ("  The contract ends in 2026.\n", {})

        answer = await assistant.answer_file_question("user-123", record, "When does it end?")

    assert answer.filename == "contract.pdf"
    assert answer.answer == "The contract ends in 2026."
    mock_download.assert_called_once_with("user-123/contract.pdf")
    contents = mock_generate.call_args.args[0]
    assert "When does it end?" in contents[0]
    assert contents[1] == {"mime_type": "application/pdf", "data": b"%PDF contract"}
    assert mock_generate.call_args.kwargs["model_type"] == "pro"

@pytest.mark.asyncio
async def test_answer_file_question_model_failure():
    record = FileRecord(name="photo.png", user_id="user-123")
    with patch.object(gemini_client, "generate_text", new_callable=AsyncMock) as mock_generate, \
         patch("core.storage.download_object", new_callable=AsyncMock) as mock_download:
        mock_download.return_value = b"\x89PNG"
        mock_generate.return_value = (None, {"error": "blocked"})
        assert await assistant.answer_file_question("user-123", record, "What is this?") is None
