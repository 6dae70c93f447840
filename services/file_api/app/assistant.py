# services/file_api/app/assistant.py
from typing import List, Optional

from core.config import logger as core_logger
from core.gemini_client import gemini_client
from core.models import ChatResponse, FileAnswer, FileRecord
from core import storage
from core.utils import extract_json_array, normalize_labels
from . import crud
from .analysis import build_file_parts

logger = core_logger.getChild("FileAPI").getChild("Assistant")

# Keywords that mark a message as a request to find stored files
FILE_SEARCH_TRIGGERS = {"file", "image", "pdf", "document"}

KEYWORD_PROMPT_TEMPLATE = """Extract keywords from this user query for searching files.
Normalize synonyms: "document" -> "file", "doc" -> "file", "picture/photo" -> "image".
Return ONLY a JSON array of single words (no extra text).
Example: "any spiderman document" -> ["spiderman","file"]

Query: "{query}"
"""

FILE_QUESTION_PROMPT_TEMPLATE = """You are a helpful assistant answering questions about the attached file "{filename}".
Answer using only the file's content. If the answer is not in the file, say so.

Question: {question}"""

NO_REPLY_TEXT = "Sorry, I couldn't generate a response."


async def extract_keywords(message: str) -> List[str]:
    """Single-word search keywords for `message`; [] when the model gives nothing usable."""
    text, usage = await gemini_client.generate_text(KEYWORD_PROMPT_TEMPLATE.format(query=message), model_type="flash")
    if text is None:
        logger.warning(f"Keyword extraction failed: {usage.get('error', 'unknown error')}")
        return []
    keywords = [k for k in normalize_labels(extract_json_array(text)) if " " not in k]
    logger.debug(f"Extracted keywords {keywords} from {message!r}")
    return keywords


def is_file_search(keywords: List[str]) -> bool:
    return any(k in FILE_SEARCH_TRIGGERS for k in keywords)


def search_terms(keywords: List[str]) -> List[str]:
    """Keywords to match against files: the specific ones, or all of them if only generic ones exist."""
    specific = [k for k in keywords if k not in FILE_SEARCH_TRIGGERS]
    return specific or keywords


def describe_matches(files: List[FileRecord]) -> str:
    if not files:
        return "No matching files found. Try different keywords or check if files are properly tagged."
    plural = "s" if len(files) > 1 else ""
    return f"I found {len(files)} matching file{plural}. Select any file below to open or ask about it."


async def reply_to_message(user_id: str, message: str) -> ChatResponse:
    """Routes a chat message either to a file search or to a plain model reply."""
    job_prefix = f"[{user_id}]"
    keywords = await extract_keywords(message)

    if is_file_search(keywords):
        terms = search_terms(keywords)
        logger.info(f"{job_prefix} Chat message treated as file search for {terms}.")
        files = await crud.search_files(user_id, terms)
        for record in files:
            record.url = await storage.get_public_url(storage.object_key(user_id, record.name))
        return ChatResponse(reply=describe_matches(files), mode="search", keywords=keywords, files=files)

    logger.info(f"{job_prefix} Chat message forwarded to the model.")
    text, usage = await gemini_client.generate_text(message, model_type="flash")
    if text is None:
        logger.warning(f"{job_prefix} Chat reply failed: {usage.get('error', 'unknown error')}")
    return ChatResponse(reply=text or NO_REPLY_TEXT, mode="chat", keywords=keywords)


async def answer_file_question(user_id: str, record: FileRecord, question: str) -> Optional[FileAnswer]:
    """Answers `question` using the stored file as context. Returns None when the model fails."""
    job_prefix = f"[{user_id}:{record.name}]"
    content = await storage.download_object(storage.object_key(user_id, record.name))
    mime_type = storage.guess_content_type(record.name)

    contents = [FILE_QUESTION_PROMPT_TEMPLATE.format(filename=record.name, question=question)]
    contents += await build_file_parts(content, mime_type, record.name)
    text, usage = await gemini_client.generate_text(contents, model_type="pro")
    if text is None:
        logger.error(f"{job_prefix} File question failed: {usage.get('error', 'unknown error')}")
        return None
    return FileAnswer(filename=record.name, answer=text.strip())
