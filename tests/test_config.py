from __future__ import annotations

from pathlib import Path

import allure
import pytest

from agent_dispatch.config import Settings
from agent_dispatch.orchestrator.models import BackendType, OutputFormat, QuotaUnit
from agent_dispatch.orchestrator.pricing import ModelPricing

pytestmark = [
    allure.epic("Configuration"),
    allure.feature("Settings"),
]


def test_defaults_describe_stock_backend_tiers() -> None:
    settings = Settings.from_env()

    claude = settings.backends[BackendType.CLAUDE]
    codex = settings.backends[BackendType.CODEX]
    gemini = settings.backends[BackendType.GEMINI]
    assert claude.command == ("claude",)
    assert (claude.timeout_seconds, claude.quota_limit, claude.quota_reset_hours) == (300, 1000, 24)
    assert (codex.timeout_seconds, codex.quota_limit, codex.quota_reset_hours) == (240, 150, 5)
    assert gemini.quota_unit is QuotaUnit.TOKENS
    assert gemini.quota_limit == 1_000_000
    assert gemini.model == "gemini-2.5-flash"
    assert settings.dispatch.prompt_argv_max_bytes == 8192
    assert settings.dispatch.output_format is OutputFormat.TEXT
    assert settings.enabled_backends == (BackendType.CLAUDE, BackendType.CODEX, BackendType.GEMINI)
    assert settings.db_path == Path(".agent_dispatch.db")
    assert settings.pricing == {}
    settings.validate()


def test_env_overrides(monkeypatch) -> None:
    monkeypatch.setenv("AGENT_DISPATCH_CODEX_COMMAND", "npx --yes '@openai/codex'")
    monkeypatch.setenv("AGENT_DISPATCH_CODEX_MODEL", "gpt-5-codex")
    monkeypatch.setenv("AGENT_DISPATCH_CODEX_QUOTA_LIMIT", "40")
    monkeypatch.setenv("AGENT_DISPATCH_CODEX_METERED", "yes")
    monkeypatch.setenv("AGENT_DISPATCH_GEMINI_ENABLED", "false")
    monkeypatch.setenv("AGENT_DISPATCH_GEMINI_MODEL", "")
    monkeypatch.setenv("AGENT_DISPATCH_OUTPUT_FORMAT", "JSON")
    monkeypatch.setenv("AGENT_DISPATCH_KILL_GRACE_SECONDS", "1.5")
    monkeypatch.setenv("AGENT_DISPATCH_PRICING", "codex:*:1.25:10")

    settings = Settings.from_env(db_path=Path("custom.db"))

    codex = settings.backends[BackendType.CODEX]
    assert codex.command == ("npx", "--yes", "@openai/codex")
    assert codex.model == "gpt-5-codex"
    assert codex.quota_limit == 40
    assert codex.metered is True
    assert settings.backends[BackendType.GEMINI].model is None
    assert settings.enabled_backends == (BackendType.CLAUDE, BackendType.CODEX)
    assert settings.dispatch.output_format is OutputFormat.JSON
    assert settings.dispatch.kill_grace_seconds == 1.5
    assert settings.pricing == {("codex", "*"): ModelPricing(input_per_1m=1.25, output_per_1m=10.0)}
    assert settings.db_path == Path("custom.db")


@pytest.mark.parametrize(
    ("name", "value", "message"),
    [
        ("AGENT_DISPATCH_CLAUDE_QUOTA_LIMIT", "lots", "Invalid integer value"),
        ("AGENT_DISPATCH_CLAUDE_TIMEOUT_SECONDS", "soon", "Invalid number value"),
        ("AGENT_DISPATCH_SECURITY_BACKEND", "copilot", "expected one of claude, codex, gemini"),
        ("AGENT_DISPATCH_CODEX_ENABLED", "maybe", "Invalid boolean value"),
    ],
)
def test_invalid_env_values_name_the_variable(monkeypatch, name: str, value: str, message: str) -> None:
    monkeypatch.setenv(name, value)

    with pytest.raises(ValueError, match=message) as error:
        Settings.from_env()
    assert name in str(error.value)


@pytest.mark.parametrize(
    ("name", "value", "message"),
    [
        ("AGENT_DISPATCH_PROMPT_ARGV_MAX_BYTES", "0", "PROMPT_ARGV_MAX_BYTES must be > 0"),
        ("AGENT_DISPATCH_CLAUDE_ENABLED", "0", "SECURITY_BACKEND=claude is not an enabled backend"),
        ("AGENT_DISPATCH_GEMINI_QUOTA_LIMIT", "0", "GEMINI_QUOTA_LIMIT must be > 0"),
        ("AGENT_DISPATCH_CODEX_COMMAND", "", "CODEX_COMMAND must not be empty"),
        ("AGENT_DISPATCH_CODEX_TIMEOUT_SECONDS", "-1", "CODEX_TIMEOUT_SECONDS must be > 0"),
    ],
)
def test_validate_rejects_unusable_values(monkeypatch, name: str, value: str, message: str) -> None:
    monkeypatch.setenv(name, value)
    settings = Settings.from_env()

    with pytest.raises(ValueError, match=message):
        settings.validate()


def test_security_backend_can_be_moved(monkeypatch) -> None:
    monkeypatch.setenv("AGENT_DISPATCH_CLAUDE_ENABLED", "0")
    monkeypatch.setenv("AGENT_DISPATCH_SECURITY_BACKEND", "codex")
    monkeypatch.setenv("AGENT_DISPATCH_DEFAULT_BACKEND", "gemini")

    settings = Settings.from_env()
    settings.validate()

    assert settings.dispatch.security_backend is BackendType.CODEX
    assert settings.dispatch.default_backend is BackendType.GEMINI
