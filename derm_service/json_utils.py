"""
JSON extraction for model output.

Models often wrap their JSON in markdown code fences or add a sentence
before/after it. Only that surrounding text is trimmed here; the object
itself must parse as-is.
"""
import json
import logging
import re

from .errors import AIResponseError, truncate_preview

logger = logging.getLogger(__name__)

_CODE_FENCE = re.compile(r'```(?:json|JSON)?\s*([\s\S]*?)```')


def strip_code_fences(text: str) -> str:
    """Return the contents of the first fenced block, or the text unchanged."""
    match = _CODE_FENCE.search(text)
    if match:
        return match.group(1)
    return text


def extract_json_text(text: str) -> str:
    """Trim everything outside the outermost {...} of a model response."""
    if text is None:
        raise AIResponseError("Model response was empty")

    text = strip_code_fences(text).strip()
    start = text.find('{')
    end = text.rfind('}')
    if start == -1 or end == -1 or end < start:
        logger.error(f"No JSON object found in response: {truncate_preview(text)}")
        raise AIResponseError("Model response contained no JSON object")
    return text[start:end + 1]


def extract_json(text: str) -> dict:
    """Extract and parse the JSON object in a model response."""
    candidate = extract_json_text(text)
    try:
        return json.loads(candidate)
    except json.JSONDecodeError as e:
        logger.warning(f"JSON parse error: {e}. Raw: {truncate_preview(candidate)}")
        raise AIResponseError(f"Model response is not valid JSON: {e.msg} at position {e.pos}") from e
