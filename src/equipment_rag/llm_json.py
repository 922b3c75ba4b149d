"""Tolerant parsing of nominally-JSON LLM replies.

Models frequently wrap JSON in markdown fences or surround it with prose.
The helpers here locate the payload with find/rfind and return a tagged
result so callers branch explicitly on ``Parsed`` vs ``Unparsed`` instead
of catching decode errors.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Union

_FENCE_RE = re.compile(r"```(?:json)?\s*|```")


@dataclass(frozen=True)
class Parsed:
    """The reply contained a JSON payload of the expected shape."""

    data: Any


@dataclass(frozen=True)
class Unparsed:
    """The reply could not be interpreted.

    Attributes:
        raw_text: The reply as received.
        reason: Short description of what went wrong.
    """

    raw_text: str
    reason: str


ParseResult = Union[Parsed, Unparsed]


def _extract(response: str, opening: str, closing: str) -> ParseResult:
    if not response or not response.strip():
        return Unparsed(raw_text=response or "", reason="empty response")

    text = _FENCE_RE.sub("", response).strip()
    start = text.find(opening)
    end = text.rfind(closing) + 1
    if start == -1 or end == 0 or end <= start:
        return Unparsed(raw_text=response, reason=f"no {opening}...{closing} payload")

    try:
        data = json.loads(text[start:end])
    except json.JSONDecodeError as exc:
        return Unparsed(raw_text=response, reason=f"invalid JSON: {exc.msg}")

    return Parsed(data=data)


def parse_json_object(response: str) -> ParseResult:
    """Extract a JSON object from an LLM reply.

    Args:
        response: Raw LLM output.

    Returns:
        Parsed with a dict, or Unparsed with the reason.
    """
    result = _extract(response, "{", "}")
    if isinstance(result, Parsed) and not isinstance(result.data, dict):
        return Unparsed(raw_text=response, reason="payload is not an object")
    return result


def parse_json_array(response: str) -> ParseResult:
    """Extract a JSON array from an LLM reply."""
    result = _extract(response, "[", "]")
    if isinstance(result, Parsed) and not isinstance(result.data, list):
        return Unparsed(raw_text=response, reason="payload is not an array")
    return result
