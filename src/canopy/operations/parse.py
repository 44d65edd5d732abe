"""Parse collaborator replies into structured agent results.

The collaborator is asked for one JSON object, but replies often carry
explanatory text (or intermediate tool-step text) before the payload, or
wrap it in a markdown fence. parse_agent_response() never raises: when
no object can be recovered it returns an UnparsedResult holding the full
text as output.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from pydantic import ValidationError

from canopy.models.result import ParsedResult, UnparsedResult

logger = logging.getLogger(__name__)


def _strip_fence(text: str) -> str:
    """Remove a leading markdown code fence (```json ... ```)."""
    if not text.startswith("```"):
        return text
    start = text.find("\n") + 1
    end = text.rfind("```")
    if start > 0 and end > start:
        return text[start:end].strip()
    return text


_DECODER = json.JSONDecoder()


def extract_last_json_object(text: str) -> str | None:
    """Return the last top-level ``{...}`` span in *text* that is valid JSON, or None.

    Each ``{`` is tried as the start of an object with the JSON decoder,
    so braces inside string values never count. Objects nested in one
    already found are skipped, and spans that fail to decode (``{x}``)
    are passed over rather than ending the search.
    """
    found: str | None = None
    pos = text.find("{")
    while pos != -1:
        try:
            _, end = _DECODER.raw_decode(text, pos)
        except json.JSONDecodeError:
            pos = text.find("{", pos + 1)
            continue
        found = text[pos:end]
        pos = text.find("{", end)
    return found


def _loads_object(text: str) -> dict[str, Any] | None:
    try:
        value = json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return None
    return value if isinstance(value, dict) else None


def _recover_payload(text: str) -> dict[str, Any] | None:
    body = _strip_fence(text.strip())
    payload = _loads_object(body)
    if payload is not None:
        return payload

    candidate = extract_last_json_object(body)
    if candidate is not None:
        return _loads_object(candidate)
    return None


def parse_agent_response(text: str | None) -> ParsedResult | UnparsedResult:
    """Parse a collaborator reply.

    Tries, in order: the whole text (after stripping a leading code
    fence), then the last balanced brace span. A recovered object that
    fails validation still degrades to the fallback rather than raising.
    """
    text = text or ""
    payload = _recover_payload(text)
    if payload is None:
        logger.debug("No JSON object in reply (%d chars); using fallback", len(text))
        return UnparsedResult.from_text(text)

    payload.pop("kind", None)
    try:
        return ParsedResult.model_validate(payload)
    except ValidationError as exc:
        logger.warning("Reply JSON failed validation, using fallback: %s", exc.errors()[:1])
        return UnparsedResult.from_text(text)
