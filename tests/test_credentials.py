from __future__ import annotations

from datetime import timedelta

import allure

from agent_dispatch.config import BackendSettings, Settings
from agent_dispatch.orchestrator.credentials import (
    VENDOR_KEY_PRIORITY,
    SecretOverlayStore,
    env_credential_store,
    load_env_credentials,
)
from agent_dispatch.orchestrator.models import BackendType
from agent_dispatch.orchestrator.quota import InMemoryCredentialStore

pytestmark = [
    allure.epic("Dispatch"),
    allure.feature("Credentials"),
]


def _settings(**overrides) -> BackendSettings:
    values = {"command": ("agent",), "quota_limit": 25, "quota_reset_hours": 5.0}
    values.update(overrides)
    return BackendSettings(**values)


def test_numbered_keys_get_priority_by_index_and_vendor_key_goes_last() -> None:
    environ = {
        "CLAUDE_KEY_1": "sk-first",
        "CLAUDE_KEY_3": "sk-third",
        "ANTHROPIC_API_KEY": "sk-vendor",
    }

    credentials = load_env_credentials(BackendType.CLAUDE, _settings(), environ=environ)

    assert [(item.name, item.priority) for item in credentials] == [
        ("CLAUDE_KEY_1", 0),
        ("CLAUDE_KEY_3", 2),
        ("ANTHROPIC_API_KEY", VENDOR_KEY_PRIORITY),
    ]
    assert [item.secret for item in credentials] == ["sk-first", "sk-third", "sk-vendor"]
    assert all(item.daily_limit == 25 for item in credentials)
    assert all(item.reset_period == timedelta(hours=5) for item in credentials)


def test_duplicate_secrets_are_loaded_once() -> None:
    environ = {
        "GEMINI_KEY_1": "AIza-shared",
        "GEMINI_KEY_2": "AIza-shared",
        "GEMINI_API_KEY": "AIza-shared",
        "GOOGLE_API_KEY": "AIza-google",
    }

    credentials = load_env_credentials(BackendType.GEMINI, _settings(), environ=environ)

    assert [item.name for item in credentials] == ["GEMINI_KEY_1", "GOOGLE_API_KEY"]


def test_credential_ids_are_stable_and_do_not_leak_secrets() -> None:
    environ = {"CODEX_KEY_1": "sk-secret-value"}

    first = load_env_credentials(BackendType.CODEX, _settings(), environ=environ)[0]
    second = load_env_credentials(BackendType.CODEX, _settings(), environ=environ)[0]

    assert first.credential_id == second.credential_id
    assert first.credential_id.startswith("codex-")
    assert "sk-secret-value" not in first.credential_id
    assert "sk-secret-value" not in repr(first)


def test_without_keys_backend_runs_on_its_own_login() -> None:
    credentials = load_env_credentials(BackendType.CODEX, _settings(), environ={})

    assert len(credentials) == 1
    (credential,) = credentials
    assert credential.credential_id == "codex-default"
    assert credential.name == "subscription"
    assert credential.secret is None
    assert credential.used_today == 0


def test_env_store_covers_enabled_backends_only() -> None:
    settings = Settings()
    settings.backends[BackendType.GEMINI].enabled = False

    store = env_credential_store(settings, environ={"CLAUDE_KEY_1": "sk-a", "CLAUDE_KEY_2": "sk-b"})

    assert len(store.list_credentials(BackendType.CLAUDE)) == 2
    assert [item.credential_id for item in store.list_credentials(BackendType.CODEX)] == [
        "codex-default",
    ]
    assert store.list_credentials(BackendType.GEMINI) == []


def test_overlay_restores_secrets_and_hides_unconfigured_rows(make_credential) -> None:
    base = InMemoryCredentialStore(
        [make_credential("claude-current"), make_credential("claude-stale")],
    )
    overlay = SecretOverlayStore(base, [make_credential("claude-current", secret="sk-live")])

    (credential,) = overlay.list_credentials(BackendType.CLAUDE)
    assert credential.credential_id == "claude-current"
    assert credential.secret == "sk-live"

    overlay.persist_usage("claude-current", 4, credential.reset_at)
    stored = base.get("claude-current")
    assert stored is not None
    assert stored.used_today == 4
    assert stored.secret is None
    assert base.get("claude-stale") is not None
