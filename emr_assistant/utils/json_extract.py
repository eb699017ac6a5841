"""
Balanced JSON object extraction from free-form text.

The knowledge base is a markdown document that embeds one large JSON object
somewhere in its body. Both the retriever and the URL mapper need to pull that
object out, so the scanner lives here.
"""
import json
from typing import Any, Dict, Optional

import structlog

logger = structlog.get_logger()


def extract_json_object(text: str, max_scan: Optional[int] = None) -> Optional[str]:
    """
    Return the substring holding the first balanced ``{...}`` object in ``text``.

    Braces inside string literals are ignored and backslash escapes are honoured.
    If the object is not closed within ``max_scan`` characters (or before the end
    of the text) the partial candidate is returned so the caller's parser can
    reject it.

    Returns None when the text holds no ``{`` at all.
    """
    start = text.find("{")
    if start == -1:
        return None

    end_limit = len(text) if max_scan is None else min(len(text), start + max_scan)
    depth = 0
    in_string = False
    escape_next = False

    for i in range(start, end_limit):
        char = text[i]

        if escape_next:
            escape_next = False
            continue

        if char == "\\":
            escape_next = True
            continue

        if char == '"':
            in_string = not in_string
            continue

        if in_string:
            continue

        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start:i + 1]

    return text[start:end_limit]


def parse_embedded_json(text: str, max_scan: Optional[int] = None) -> Optional[Dict[str, Any]]:
    """Extract and decode the embedded JSON object, None if absent or malformed"""
    candidate = extract_json_object(text, max_scan=max_scan)
    if candidate is None:
        return None

    try:
        decoded = json.loads(candidate)
    except json.JSONDecodeError as e:
        logger.debug("Embedded JSON could not be parsed", error=str(e), candidate_length=len(candidate))
        return None

    if not isinstance(decoded, dict):
        return None
    return decoded
