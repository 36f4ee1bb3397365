"""
Recover a JSON object from free-form model output.

The model is told to answer with JSON only, but it regularly wraps the object
in markdown fences or adds a sentence before/after it. Every caller goes
through decode_json_response so that unreliability is absorbed in one place.
"""

import json
import logging
import re
from typing import Any, Dict, Optional

from .errors import InvalidPayload

logger = logging.getLogger(__name__)

EXCERPT_CHARS = 500

# ``` or ```json / ```python etc.
_FENCE = re.compile(r"```[\w-]*")


def _strip_fences(text: str) -> str:
    return _FENCE.sub("", text)


def _balanced_object(text: str, start: int) -> Optional[str]:
    """
    Return the object starting at `start` by matching braces.
    String contents (and escapes within them) are skipped so braces inside
    values don't count.
    """
    depth = 0
    in_string = False
    i = start
    while i < len(text):
        char = text[i]
        if in_string:
            if char == "\\" and i + 1 < len(text):
                i += 2
                continue
            if char == '"':
                in_string = False
        else:
            if char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    return text[start:i + 1]
        i += 1
    return None


def decode_json_response(raw: Any) -> Dict[str, Any]:
    """
    Extract and parse the JSON object embedded in a model response.

    Order:
    1. trim and drop fence markers
    2. slice first '{' .. last '}' and parse
    3. if that fails (trailing prose containing '}'), parse the first balanced object
    Raises InvalidPayload with an excerpt of the raw text when nothing parses.
    """
    if not isinstance(raw, str):
        raise InvalidPayload(f"Invalid JSON response from AI: expected text, got {type(raw).__name__}")

    excerpt = raw[:EXCERPT_CHARS]
    text = _strip_fences(raw.strip())

    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end < start:
        logger.error(f"No JSON object in AI response: {excerpt!r}")
        raise InvalidPayload("Invalid JSON response from AI: no JSON object found", excerpt)

    try:
        result = json.loads(text[start:end + 1])
    except json.JSONDecodeError as e:
        candidate = _balanced_object(text, start)
        if candidate is None:
            logger.error(f"Unparseable AI response: {excerpt!r}")
            raise InvalidPayload(f"Invalid JSON response from AI: {e}", excerpt) from e
        try:
            result = json.loads(candidate)
        except json.JSONDecodeError as inner:
            logger.error(f"Unparseable AI response: {excerpt!r}")
            raise InvalidPayload(f"Invalid JSON response from AI: {inner}", excerpt) from inner

    if not isinstance(result, dict):
        raise InvalidPayload("Invalid JSON response from AI: top level is not an object", excerpt)
    return result
