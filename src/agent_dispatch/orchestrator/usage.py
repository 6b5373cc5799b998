"""Token usage extraction from agent output streams."""

from __future__ import annotations

import math
import re

from agent_dispatch.orchestrator.models import TokenUsage

_PROMPT_PATTERNS = (
    re.compile(r'"(?:prompt_tokens|input_tokens|promptTokenCount)"\s*:\s*(\d+)', re.IGNORECASE),
    re.compile(r"input[_ ]tokens?\s*[:=]\s*([\d,]+)", re.IGNORECASE),
)
_COMPLETION_PATTERNS = (
    re.compile(
        r'"(?:completion_tokens|output_tokens|candidatesTokenCount)"\s*:\s*(\d+)',
        re.IGNORECASE,
    ),
    re.compile(r"(?:output|completion)[_ ]tokens?\s*[:=]\s*([\d,]+)", re.IGNORECASE),
)
_TOTAL_PATTERNS = (
    re.compile(r'"(?:total_tokens|totalTokenCount)"\s*:\s*(\d+)', re.IGNORECASE),
    re.compile(r"total[_ ]tokens?\s*[:=]\s*([\d,]+)", re.IGNORECASE),
    re.compile(r"tokens used\s*[\r\n ]+\s*([\d,]+)", re.IGNORECASE),
)


def estimate_tokens(text: str) -> int:
    """Rough token count: one token per four characters."""

    return math.ceil(len(text) / 4)


def extract_usage(*, stdout: str, stderr: str) -> TokenUsage | None:
    """Return reported token usage, or None when the agent printed none."""

    prompt = completion = total = None
    for text in (stdout, stderr):
        prompt = prompt if prompt is not None else _first_int(_PROMPT_PATTERNS, text)
        completion = (
            completion if completion is not None else _first_int(_COMPLETION_PATTERNS, text)
        )
        total = total if total is not None else _first_int(_TOTAL_PATTERNS, text)

    if prompt is None and completion is None and total is None:
        return None
    if total is None:
        total = sum(value for value in (prompt, completion) if value is not None)
    return TokenUsage(
        prompt_tokens=prompt,
        completion_tokens=completion,
        total_tokens=total,
        source="reported",
    )


def resolve_usage(*, prompt: str, stdout: str, stderr: str) -> TokenUsage:
    """Reported usage when available, else a character-count estimate."""

    reported = extract_usage(stdout=stdout, stderr=stderr)
    if reported is not None:
        return reported
    prompt_tokens = estimate_tokens(prompt)
    completion_tokens = estimate_tokens(stdout)
    return TokenUsage(
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        total_tokens=prompt_tokens + completion_tokens,
    )


def _first_int(patterns: tuple[re.Pattern[str], ...], text: str) -> int | None:
    for pattern in patterns:
        match = pattern.search(text)
        if match is None:
            continue
        raw = match.group(1).replace(",", "").strip()
        if raw.isdigit():
            return int(raw)
    return None
