# core/utils.py
"""
Core Utility Functions.

Filename handling, label normalisation and helpers for cleaning up model
output that are shared by the file API and the UI service.
"""
import json
import re
from typing import Iterable, List, Optional, Tuple

_UNSAFE_NAME_CHARS = re.compile(r'[\x00-\x1f\x7f\\/:*?"<>|]')
_CODE_FENCE = re.compile(r"```(?:json)?", re.IGNORECASE)
_JSON_ARRAY = re.compile(r"\[.*\]", re.DOTALL)
# Characters with meaning inside a PostgREST or=(...) filter
_FILTER_META = re.compile(r"[,(){}%*\"\\.:]")


def split_extension(filename: str) -> Tuple[str, str]:
    """Splits 'report.final.pdf' into ('report.final', 'pdf'). No dot means no extension."""
    if "." not in filename.strip("."):
        return filename, ""
    base, ext = filename.rsplit(".", 1)
    return base, ext


def sanitize_filename(name: str) -> str:
    """Drops path components and characters storage keys cannot hold."""
    name = name.replace("\\", "/").split("/")[-1]
    name = _UNSAFE_NAME_CHARS.sub("", name)
    name = re.sub(r"\s+", " ", name).strip(" .")
    if not name:
        raise ValueError("Filename is empty after sanitising.")
    return name


def ensure_extension(name: str, extension: str) -> str:
    """
    Appends `.extension` unless `name` already ends with it (case-insensitive).

    Other dots in the name are kept as text: 'Invoice v1.2' becomes 'Invoice v1.2.pdf'.
    """
    if not extension:
        return name
    if name.lower().endswith(f".{extension.lower()}"):
        return name
    return f"{name}.{extension}"


def strip_code_fences(text: str) -> str:
    """Removes ```json / ``` fences the model sometimes wraps JSON in."""
    return _CODE_FENCE.sub("", text).strip()


def extract_json_array(text: str) -> List:
    """Parses the first [...] block found in `text`; returns [] when there is none."""
    match = _JSON_ARRAY.search(text or "")
    if not match:
        return []
    try:
        value = json.loads(match.group(0))
    except json.JSONDecodeError:
        return []
    return value if isinstance(value, list) else []


def normalize_labels(values: Optional[Iterable]) -> List[str]:
    """Lowercases and trims labels, dropping empties and duplicates (order kept)."""
    seen = []
    for value in values or []:
        if value is None:
            continue
        label = str(value).lower().strip()
        if label and label not in seen:
            seen.append(label)
    return seen


def parse_label_input(raw: Optional[str]) -> List[str]:
    """
    Parses tags/categories sent by a client.

    Accepts a JSON array ('["a", "b"]') or a comma-separated string ('a, b').
    Raises ValueError for JSON that is not a list.
    """
    if raw is None or not raw.strip():
        return []
    raw = raw.strip()
    if raw.startswith("["):
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid label list: {e.msg}")
        if not isinstance(parsed, list):
            raise ValueError("Label list must be a JSON array.")
        return normalize_labels(parsed)
    return normalize_labels(raw.split(","))


def escape_filter_term(term: str) -> str:
    """Strips characters that would break out of a PostgREST filter expression."""
    return _FILTER_META.sub("", term).strip()
