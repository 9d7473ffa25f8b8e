import json
import re
from typing import Any, Dict, List, Union

from billtracker.utils.logging import get_logger

LOGGER = get_logger(__name__)

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def parse_json_safely(text: str) -> Union[Dict[str, Any], List[Any], None]:
    """Parse JSON from model output, tolerating common formatting noise.

    Handles:
    - Markdown code fences (```json ... ```)
    - Leading/trailing whitespace
    - Prose before or after a single JSON object

    Args:
        text: The text containing JSON

    Returns:
        Parsed JSON value or None if parsing fails
    """
    if not text:
        return None

    cleaned_text = _FENCE_RE.sub("", text.strip()).strip()

    try:
        return json.loads(cleaned_text)
    except json.JSONDecodeError as e:
        LOGGER.warning(f"Initial JSON parse failed: {e}, attempting repairs...")

    # Trailing content after a complete value
    decoder = json.JSONDecoder()
    start = min(
        (idx for idx in (cleaned_text.find("{"), cleaned_text.find("[")) if idx != -1),
        default=-1,
    )
    if start != -1:
        try:
            value, _ = decoder.raw_decode(cleaned_text, start)
            LOGGER.info(f"Parsed JSON value starting at position {start}")
            return value
        except json.JSONDecodeError:
            pass

    LOGGER.error("Failed to parse JSON from model response")
    return None
