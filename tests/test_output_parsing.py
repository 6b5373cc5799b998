from __future__ import annotations

import allure
import pytest

from agent_dispatch.orchestrator.models import OutputFormat
from agent_dispatch.orchestrator.output_parsing import (
    MalformedOutputError,
    find_json_payload,
    parse_output,
    unwrap_envelope,
)

pytestmark = [
    allure.epic("Dispatch"),
    allure.feature("Output Parsing"),
]


def test_direct_json_is_parsed() -> None:
    assert parse_output('{"ok": true}', OutputFormat.JSON) == {"ok": True}


def test_first_parseable_fenced_block_wins() -> None:
    text = (
        "Some notes.\n"
        "```json\n{not json}\n```\n"
        "Now the real answer:\n"
        "```json\n{\"files\": [\"a.py\"]}\n```\n"
        "```\n{\"ignored\": 1}\n```\n"
    )

    assert find_json_payload(text) == {"files": ["a.py"]}


def test_embedded_object_without_fence_is_found() -> None:
    text = 'Result follows {"status": "done", "count": 2} and some trailing words'

    assert parse_output(text, OutputFormat.JSON) == {"status": "done", "count": 2}


def test_top_level_array_is_accepted() -> None:
    assert parse_output("[1, 2, 3]", OutputFormat.JSON) == [1, 2, 3]


def test_text_without_json_is_malformed_for_json_format() -> None:
    with pytest.raises(MalformedOutputError, match="No parseable JSON"):
        parse_output("I could not do it, sorry.", OutputFormat.JSON)


def test_empty_output_is_malformed_for_every_format() -> None:
    for output_format in OutputFormat:
        with pytest.raises(MalformedOutputError, match="no output"):
            parse_output("  \n", output_format)


def test_text_formats_return_stripped_output() -> None:
    assert parse_output("\n# Title\n\nbody\n", OutputFormat.MARKDOWN) == "# Title\n\nbody"
    assert parse_output("  done  ", OutputFormat.TEXT) == "done"


def test_unwrap_envelope_returns_named_string_field() -> None:
    envelope = '{"type": "result", "is_error": false, "result": "hello"}'

    assert unwrap_envelope(envelope, "result") == "hello"
    assert unwrap_envelope(envelope, "response") == envelope
    assert unwrap_envelope("plain text", "result") == "plain text"
