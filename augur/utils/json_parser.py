"""Tolerant JSON extraction from LLM replies.

Handles the usual reply shapes: plain JSON, fenced code blocks, and a JSON
object embedded in prose (possibly followed by more prose or a second object).
"""

import json
import re
from typing import Any, Dict

_FENCE = re.compile(r"```(?:json|JSON)?\s*\n(.*?)\n\s*```", re.DOTALL)
_TRAILING_COMMA = re.compile(r",\s*([}\]])")


def _loads_object(text: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        # Models often leave a trailing comma before a closing bracket
        return json.loads(_TRAILING_COMMA.sub(r"\1", text))


def parse_json_from_llm(raw: str) -> Dict[str, Any]:
    """Return the first JSON object found in an LLM reply.

    Args:
        raw: Raw LLM output string.

    Returns:
        Parsed JSON object as dict.

    Raises:
        ValueError: If no JSON object can be recovered.
    """
    if not raw or not raw.strip():
        raise ValueError("Empty input")

    text = raw.strip()

    candidates = [text]
    candidates.extend(m.group(1).strip() for m in _FENCE.finditer(text))
    for candidate in candidates:
        try:
            result = _loads_object(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(result, dict):
            return result

    # Scan for the first decodable object; raw_decode stops at its closing brace
    decoder = json.JSONDecoder()
    for match in re.finditer(r"\{", text):
        try:
            result, _ = decoder.raw_decode(text, match.start())
        except json.JSONDecodeError:
            continue
        if isinstance(result, dict):
            return result

    raise ValueError(f"No valid JSON found in LLM output: {text[:200]}")
