"""Recovery of structured output from agent stdout."""

from __future__ import annotations

import json
import re
from typing import Any

from agent_dispatch.orchestrator.models import OutputFormat

_FENCED_BLOCK = re.compile(r"```(?:json)?\s*\n?(.*?)```", re.DOTALL | re.IGNORECASE)
_DECODER = json.JSONDecoder()


class MalformedOutputError(ValueError):
    """Agent exited cleanly but its output does not match the requested format."""


def parse_output(text: str, output_format: OutputFormat) -> Any:
    """Parse agent stdout into the requested format or raise ``MalformedOutputError``."""

    stripped = text.strip()
    if not stripped:
        raise MalformedOutputError("Agent produced no output.")
    if output_format is not OutputFormat.JSON:
        return stripped

    payload = find_json_payload(stripped)
    if payload is None:
        raise MalformedOutputError("No parseable JSON object found in agent output.")
    return payload


def find_json_payload(text: str) -> dict[str, Any] | list[Any] | None:
    """Direct parse, then the first fenced block that parses, then the first embedded block."""

    direct = _try_load(text)
    if direct is not None:
        return direct

    for fenced in _FENCED_BLOCK.finditer(text):
        payload = _try_load(fenced.group(1).strip())
        if payload is not None:
            return payload

    for index, char in enumerate(text):
        if char not in "{[":
            continue
        try:
            payload, _ = _DECODER.raw_decode(text, index)
        except json.JSONDecodeError:
            continue
        if isinstance(payload, dict | list):
            return payload
    return None


def unwrap_envelope(text: str, key: str) -> str:
    """Return the string field ``key`` of a CLI JSON envelope, or the text unchanged."""

    try:
        envelope = json.loads(text)
    except json.JSONDecodeError:
        return text
    if isinstance(envelope, dict) and isinstance(envelope.get(key), str):
        return envelope[key]
    return text


def _try_load(raw: str) -> dict[str, Any] | list[Any] | None:
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return None
    if not isinstance(parsed, dict | list):
        return None
    return parsed
