# services/file_api/app/analysis.py
import asyncio
import io
import json
from typing import Any, Dict, List, Optional, Union

from docx import Document

from core.config import logger as core_logger
from core.gemini_client import gemini_client, inline_part
from core.models import FileAnalysis
from core.utils import normalize_labels, sanitize_filename, split_extension, strip_code_fences

logger = core_logger.getChild("FileAPI").getChild("Analysis")

DOCX_MIME_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
# Keeps the prompt well inside the model's context window
MAX_DOCX_CHARS = 30000

ANALYSIS_PROMPT_TEMPLATE = """You are an expert file organization assistant. Analyze the following file content and its original name.
Original Filename: "{filename}"
Based on the file content, generate a concise, descriptive filename (without the extension), a list of relevant categories, and a list of specific tags.
The descriptive filename should be in snake_case or PascalCase.
Return ONLY a raw JSON object with the following schema: {{ "descriptive_filename": "string", "categories": ["string"], "tags": ["string"] }}."""


def build_analysis_prompt(original_filename: str) -> str:
    return ANALYSIS_PROMPT_TEMPLATE.format(filename=original_filename)


def extract_docx_text(content: bytes) -> str:
    """Paragraph text of a DOCX document, truncated to MAX_DOCX_CHARS."""
    document = Document(io.BytesIO(content))
    text = "\n".join(p.text for p in document.paragraphs if p.text and p.text.strip())
    return text[:MAX_DOCX_CHARS]


async def build_file_parts(content: bytes, mime_type: str, filename: str) -> List[Union[str, Dict[str, Any]]]:
    """
    Model input parts describing a file.

    Images and PDFs go inline. The model does not take DOCX inline, so its
    text is extracted and sent as a text part instead.
    """
    if mime_type != DOCX_MIME_TYPE:
        return [inline_part(content, mime_type)]

    try:
        text = await asyncio.to_thread(extract_docx_text, content)
    except Exception as e:
        logger.warning(f"[{filename}] Could not read DOCX text, analysing by name only: {e}", exc_info=False)
        text = ""
    if not text:
        return ["(The document contains no readable text.)"]
    return [f"Document text:\n{text}"]


def parse_analysis_response(text: str, original_filename: str) -> FileAnalysis:
    """
    Turns the model reply into a FileAnalysis.

    Raises ValueError when the reply is not the expected JSON object.
    """
    try:
        payload = json.loads(strip_code_fences(text))
    except json.JSONDecodeError as e:
        raise ValueError(f"Model reply is not valid JSON: {e.msg}")
    if not isinstance(payload, dict):
        raise ValueError("Model reply is not a JSON object.")

    # Tolerate the camelCase key some prompts produce
    suggested = payload.get("descriptive_filename") or payload.get("descriptiveFilename")
    if not suggested or not isinstance(suggested, str):
        raise ValueError("Model reply has no descriptive filename.")

    base, extension = split_extension(original_filename)
    suggested_base, suggested_ext = split_extension(sanitize_filename(suggested))
    # Drop an extension the model added despite instructions
    if suggested_ext and suggested_ext.lower() == extension.lower():
        suggested = suggested_base
    else:
        suggested = sanitize_filename(suggested)

    return FileAnalysis(
        descriptive_filename=suggested,
        categories=_reply_labels(payload, "categories"),
        tags=_reply_labels(payload, "tags"),
        extension=extension,
    )


def _reply_labels(payload: Dict[str, Any], key: str) -> List[str]:
    """Label list from the reply; a bare string counts as comma-separated labels."""
    value = payload.get(key)
    if value is None:
        return []
    if isinstance(value, str):
        return normalize_labels(value.split(","))
    if not isinstance(value, list):
        raise ValueError(f"Model reply field '{key}' is not a list.")
    return normalize_labels(value)


async def analyze_file(content: bytes, mime_type: str, original_filename: str) -> Optional[FileAnalysis]:
    """Asks the model for a descriptive name, categories and tags. Returns None on any failure."""
    job_prefix = f"[{original_filename}]"
    logger.info(f"{job_prefix} Analysing {len(content)} bytes ({mime_type}).")

    contents = [build_analysis_prompt(original_filename)] + await build_file_parts(content, mime_type, original_filename)
    text, usage = await gemini_client.generate_json(contents, model_type="flash")
    if text is None:
        logger.error(f"{job_prefix} Model call failed: {usage.get('error', 'unknown error')}")
        return None

    try:
        analysis = parse_analysis_response(text, original_filename)
    except ValueError as e:
        logger.error(f"{job_prefix} Could not parse model reply: {e}. Reply starts: {text[:200]!r}")
        return None

    logger.info(f"{job_prefix} Suggested name '{analysis.descriptive_filename}', {len(analysis.categories)} categories, {len(analysis.tags)} tags.")
    return analysis
