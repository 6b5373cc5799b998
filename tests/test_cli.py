from __future__ import annotations

import json
from pathlib import Path

import allure
from click.testing import CliRunner

from agent_dispatch.main import agent_dispatch

pytestmark = [
    allure.epic("Dispatch"),
    allure.feature("CLI"),
]


def test_classify_prints_fields() -> None:
    runner = CliRunner()

    result = runner.invoke(agent_dispatch, ["classify", "fix bug in parser.ts null check"])

    assert result.exit_code == 0, result.output
    assert "Category: bug-fix" in result.output
    assert "Complexity: medium" in result.output
    assert "Confidence: 0.70" in result.output


def test_classify_json_with_hints() -> None:
    runner = CliRunner()

    result = runner.invoke(
        agent_dispatch,
        [
            "classify",
            "make it nicer",
            "--category",
            "documentation",
            "--files",
            "1",
            "--lines",
            "20",
            "--format",
            "json",
        ],
    )

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert payload["category"] == "documentation"
    assert payload["complexity"] == "simple"
    assert payload["confidence"] == 1.0


def test_route_security_task_json(echo_backends: Path) -> None:
    runner = CliRunner()

    result = runner.invoke(
        agent_dispatch,
        ["route", "rotate JWT signing secret", "--backend", "gemini", "--format", "json"],
    )

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert payload["classification"]["security_critical"] is True
    assert payload["plan"]["primary"] == "claude"
    assert payload["plan"]["fallbacks"] == []
    assert payload["plan"]["policy_forced"] is True
    assert payload["plan"]["reason"] == "Security-critical task requires claude"


def test_route_table_shows_fallbacks(echo_backends: Path) -> None:
    runner = CliRunner()

    result = runner.invoke(agent_dispatch, ["route", "fix bug in parser.ts null check"])

    assert result.exit_code == 0, result.output
    assert "Primary: codex" in result.output
    assert "Fallbacks: gemini, claude" in result.output


def test_run_dispatches_to_echo_agent_and_records_stats(echo_backends: Path) -> None:
    runner = CliRunner()

    result = runner.invoke(
        agent_dispatch,
        ["run", "write docs for the module", "--output-format", "json", "--timeout", "60"],
    )

    assert result.exit_code == 0, result.output
    assert "Attempt 1:" in result.output
    assert "succeeded" in result.output
    assert '"delivery": "argv"' in result.output
    assert echo_backends.exists()

    stats = runner.invoke(agent_dispatch, ["stats"])
    assert stats.exit_code == 0, stats.output
    assert "Routing stats (all time)" in stats.output
    assert "Dispatches: 1 (succeeded 1, success rate 100%)" in stats.output

    recent = runner.invoke(agent_dispatch, ["stats", "--hours", "1"])
    assert "Routing stats (last 1h)" in recent.output


def test_run_security_task_ignores_backend_override(echo_backends: Path) -> None:
    runner = CliRunner()

    result = runner.invoke(
        agent_dispatch,
        ["run", "rotate JWT signing secret", "--backend", "gemini", "--timeout", "60"],
    )

    assert result.exit_code == 0, result.output
    assert "Plan: claude (Security-critical task requires claude)" in result.output
    assert "Result: succeeded on claude" in result.output


def test_run_fails_when_every_backend_fails(echo_backends: Path, monkeypatch) -> None:
    monkeypatch.setenv("ECHO_AGENT_EXIT_CODE", "2")
    runner = CliRunner()

    result = runner.invoke(
        agent_dispatch,
        ["run", "fix bug in parser.ts null check", "--timeout", "60"],
    )

    assert result.exit_code == 1
    assert "Attempt 3:" in result.output
    assert "Dispatch failed on every backend." in result.output


def test_quota_lists_and_toggles_credentials(echo_backends: Path) -> None:
    runner = CliRunner()

    initial = runner.invoke(agent_dispatch, ["quota"])
    assert initial.exit_code == 0, initial.output
    assert "claude: 1000/1000 requests remaining" in initial.output
    assert "codex: 150/150 requests remaining" in initial.output
    assert "gemini: 1000000/1000000 tokens remaining" in initial.output
    assert "claude-default (subscription)" in initial.output

    disabled = runner.invoke(
        agent_dispatch,
        ["quota", "--disable", "claude-default", "--enable", "missing-id"],
    )
    assert disabled.exit_code == 0, disabled.output
    assert "Credential disabled: claude-default" in disabled.output
    assert "Credential not found: missing-id" in disabled.output
    assert "claude: 0/0 requests remaining" in disabled.output

    health = runner.invoke(agent_dispatch, ["health"])
    assert health.exit_code == 0, health.output
    assert "claude: unavailable (installed, 0/0 requests left)" in health.output
    assert "codex: ok (installed, 150/150 requests left)" in health.output


def test_health_reports_missing_binary(echo_backends: Path, monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("AGENT_DISPATCH_CODEX_COMMAND", str(tmp_path / "missing-codex"))
    runner = CliRunner()

    result = runner.invoke(agent_dispatch, ["health"])

    assert result.exit_code == 0, result.output
    assert "codex: unavailable (not installed, 150/150 requests left)" in result.output


def test_batch_requires_descriptions(echo_backends: Path) -> None:
    runner = CliRunner()

    result = runner.invoke(agent_dispatch, ["batch"])

    assert result.exit_code == 2
    assert "Pass task descriptions" in result.output
