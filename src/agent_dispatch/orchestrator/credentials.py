"""Credential discovery from the environment."""

from __future__ import annotations

import hashlib
import logging
import os
from collections.abc import Iterable, Mapping
from datetime import datetime, timedelta

from agent_dispatch.config import BackendSettings, Settings
from agent_dispatch.orchestrator.models import BackendType, Credential
from agent_dispatch.orchestrator.quota import CredentialStore, InMemoryCredentialStore
from agent_dispatch.storage.common import utc_now

logger = logging.getLogger(__name__)

MAX_NUMBERED_KEYS = 10
VENDOR_KEY_PRIORITY = 100

# Numbered key prefix and vendor variables the CLI itself would read.
KEY_ENV_VARS: dict[BackendType, tuple[str, tuple[str, ...]]] = {
    BackendType.CLAUDE: ("CLAUDE_KEY", ("ANTHROPIC_API_KEY",)),
    BackendType.CODEX: ("CODEX_KEY", ("OPENAI_API_KEY",)),
    BackendType.GEMINI: ("GEMINI_KEY", ("GEMINI_API_KEY", "GOOGLE_API_KEY")),
}


def load_env_credentials(
    backend: BackendType,
    settings: BackendSettings,
    *,
    environ: Mapping[str, str] | None = None,
    now: datetime | None = None,
) -> list[Credential]:
    """Credentials for ``backend`` from ``<PREFIX>_1..10`` and vendor key variables.

    Numbered keys get priority ``n - 1``; a vendor key not already listed gets
    priority 100.  With no keys at all the backend runs on its own login, modelled
    as one secret-less credential.
    """

    environ = os.environ if environ is None else environ
    now = now or utc_now()
    period = timedelta(hours=settings.quota_reset_hours)
    prefix, vendor_vars = KEY_ENV_VARS[backend]

    def make(credential_id: str, name: str, priority: int, secret: str | None) -> Credential:
        return Credential(
            credential_id=credential_id,
            backend=backend,
            name=name,
            priority=priority,
            daily_limit=settings.quota_limit,
            used_today=0,
            reset_at=now + period,
            reset_period=period,
            secret=secret,
        )

    credentials: list[Credential] = []
    seen: set[str] = set()
    for index in range(1, MAX_NUMBERED_KEYS + 1):
        name = f"{prefix}_{index}"
        secret = environ.get(name, "").strip()
        if not secret or secret in seen:
            continue
        seen.add(secret)
        credentials.append(make(f"{backend.value}-{_fingerprint(secret)}", name, index - 1, secret))

    for name in vendor_vars:
        secret = environ.get(name, "").strip()
        if secret and secret not in seen:
            seen.add(secret)
            credentials.append(
                make(f"{backend.value}-{_fingerprint(secret)}", name, VENDOR_KEY_PRIORITY, secret),
            )
            break

    if not credentials:
        credentials.append(make(f"{backend.value}-default", "subscription", 0, None))
    logger.debug("Loaded %s credential(s) for %s", len(credentials), backend.value)
    return credentials


def load_all_env_credentials(
    settings: Settings,
    *,
    environ: Mapping[str, str] | None = None,
) -> list[Credential]:
    now = utc_now()
    return [
        credential
        for backend in settings.enabled_backends
        for credential in load_env_credentials(
            backend,
            settings.backends[backend],
            environ=environ,
            now=now,
        )
    ]


def env_credential_store(
    settings: Settings,
    *,
    environ: Mapping[str, str] | None = None,
) -> InMemoryCredentialStore:
    """In-memory store seeded from the environment for every enabled backend."""

    return InMemoryCredentialStore(load_all_env_credentials(settings, environ=environ))


class SecretOverlayStore:
    """Re-attach secrets to credentials read from a store that does not keep them.

    Only the given credentials are listed; rows left over from keys that are no
    longer configured stay in the base store untouched.
    """

    def __init__(self, base: CredentialStore, credentials: Iterable[Credential]) -> None:
        self._base = base
        self._secrets = {credential.credential_id: credential.secret for credential in credentials}

    def list_credentials(self, backend: BackendType) -> list[Credential]:
        loaded = [
            credential
            for credential in self._base.list_credentials(backend)
            if credential.credential_id in self._secrets
        ]
        for credential in loaded:
            credential.secret = self._secrets[credential.credential_id]
        return loaded

    def persist_usage(self, credential_id: str, used_today: int, reset_at: datetime) -> None:
        self._base.persist_usage(credential_id, used_today, reset_at)


def _fingerprint(secret: str) -> str:
    # Stable id across restarts without exposing the key.
    return hashlib.sha256(secret.encode("utf-8")).hexdigest()[:12]
