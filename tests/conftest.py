"""Shared test fixtures."""

from __future__ import annotations

import os
import shlex
import sys
from datetime import timedelta
from pathlib import Path

import pytest

from agent_dispatch.orchestrator.credentials import KEY_ENV_VARS, MAX_NUMBERED_KEYS
from agent_dispatch.orchestrator.models import BackendType, Credential
from agent_dispatch.storage.common import utc_now

ECHO_AGENT_ARGV = (sys.executable, "-m", "agent_dispatch.orchestrator.backend.echo_agent")
ECHO_AGENT_COMMAND = " ".join(shlex.quote(part) for part in ECHO_AGENT_ARGV)

_SRC_DIR = Path(__file__).resolve().parents[1] / "src"


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch) -> None:
    """Keep real API keys and echo-agent switches out of tests; let agents import the package."""

    for prefix, vendor_vars in KEY_ENV_VARS.values():
        for index in range(1, MAX_NUMBERED_KEYS + 1):
            monkeypatch.delenv(f"{prefix}_{index}", raising=False)
        for name in vendor_vars:
            monkeypatch.delenv(name, raising=False)
    for name in list(os.environ):
        if name.startswith(("AGENT_DISPATCH_", "ECHO_AGENT_")):
            monkeypatch.delenv(name, raising=False)
    existing = os.environ.get("PYTHONPATH")
    monkeypatch.setenv(
        "PYTHONPATH",
        str(_SRC_DIR) if not existing else f"{_SRC_DIR}{os.pathsep}{existing}",
    )


@pytest.fixture()
def echo_command() -> tuple[str, ...]:
    return ECHO_AGENT_ARGV


@pytest.fixture()
def echo_backends(monkeypatch, tmp_path: Path) -> Path:
    """Point every backend at the echo agent and the DB at a temp file."""

    for backend in BackendType:
        monkeypatch.setenv(f"AGENT_DISPATCH_{backend.value.upper()}_COMMAND", ECHO_AGENT_COMMAND)
    db_path = tmp_path / "dispatch.db"
    monkeypatch.setenv("AGENT_DISPATCH_DB_PATH", str(db_path))
    return db_path


@pytest.fixture()
def make_credential():
    """Factory for credentials with a reset one period from now."""

    return _make_credential


def _make_credential(  # noqa: PLR0913
    credential_id: str,
    *,
    backend: BackendType = BackendType.CLAUDE,
    priority: int = 0,
    daily_limit: int = 10,
    used_today: int = 0,
    reset_in: timedelta = timedelta(hours=24),
    reset_period: timedelta = timedelta(hours=24),
    active: bool = True,
    secret: str | None = None,
) -> Credential:
    return Credential(
        credential_id=credential_id,
        backend=backend,
        name=credential_id,
        priority=priority,
        daily_limit=daily_limit,
        used_today=used_today,
        reset_at=utc_now() + reset_in,
        reset_period=reset_period,
        active=active,
        secret=secret,
    )
