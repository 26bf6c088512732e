"""Extract JSON payloads from model responses."""

from __future__ import annotations

import json
import logging
import re

from .errors import ProviderFailure

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")


def parse_json_response(raw: str):
    """Parse the JSON a model returned, tolerating markdown and chatter.

    Tries, in order: a fenced code block, the widest ``{...}`` span, the
    widest ``[...]`` span, then the whole text.
    """
    text = raw.strip()

    match = _FENCE_RE.search(text)
    if match:
        try:
            return json.loads(match.group(1))
        except json.JSONDecodeError:
            logger.debug("fenced block is not valid JSON, trying other spans")

    for open_ch, close_ch in (("{", "}"), ("[", "]")):
        start = text.find(open_ch)
        end = text.rfind(close_ch)
        if start != -1 and end > start:
            try:
                return json.loads(text[start:end + 1])
            except json.JSONDecodeError:
                continue

    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise ProviderFailure(
            "Failed to parse model response. The model may have returned invalid JSON."
        ) from exc


def parse_json_object(raw: str) -> dict:
    """Like parse_json_response, but the payload must be a JSON object."""
    data = parse_json_response(raw)
    if not isinstance(data, dict):
        raise ProviderFailure(
            f"Expected a JSON object from the model, got {type(data).__name__}"
        )
    return data
