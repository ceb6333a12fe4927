"""Fallbacks for tool arguments the model left empty, taken from user text."""

import json
import re
from typing import Any, Dict, Optional

SEARCH_PHRASE = re.compile(r"search\s*(for|:)\s*([^\n]+)", re.IGNORECASE)
FENCED_CODE = re.compile(r"```(?:js|javascript)?\s*([\s\S]*?)```", re.IGNORECASE)
CODE_LABEL = re.compile(r"code\s*:\s*([\s\S]*)$", re.IGNORECASE)

MAX_QUERY_CHARS = 200


def find_first_json_object(text: str) -> Optional[Dict[str, Any]]:
    """Return the first balanced ``{...}`` in ``text`` that parses as JSON.

    Braces inside string literals are skipped. A balanced candidate that
    fails to parse is abandoned and the scan continues after it.
    """
    if not text:
        return None
    depth = 0
    start = -1
    in_string = False
    escaped = False
    for i, ch in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            if depth == 0:
                start = i
            depth += 1
        elif ch == "}" and depth > 0:
            depth -= 1
            if depth == 0 and start != -1:
                try:
                    candidate = json.loads(text[start : i + 1])
                except json.JSONDecodeError:
                    continue
                if isinstance(candidate, dict):
                    return candidate
    return None


def extract_labeled_json(text: str, label: str) -> Optional[Dict[str, Any]]:
    """First JSON object after the last occurrence of ``label``."""
    if not text:
        return None
    idx = text.lower().rfind(label.lower())
    if idx == -1:
        return None
    return find_first_json_object(text[idx:])


def extract_payload(text: str) -> Dict[str, Any]:
    return extract_labeled_json(text, "payload") or find_first_json_object(text) or {}


def extract_code(text: str) -> str:
    """Fenced code block if present, else everything after ``code:``."""
    if not text:
        return ""
    fence = FENCED_CODE.search(text)
    if fence:
        return fence.group(1).strip()
    labeled = CODE_LABEL.search(text)
    if labeled:
        return labeled.group(1).strip()
    return ""


def extract_query(text: str) -> str:
    match = SEARCH_PHRASE.search(text or "")
    query = match.group(2) if match else (text or "")
    return query.strip()[:MAX_QUERY_CHARS]
