"""Wiring of settings, credentials and storage into a ready dispatcher."""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from pathlib import Path

from agent_dispatch.config import Settings
from agent_dispatch.orchestrator.backend import (
    ClaudeAdapter,
    CliBackendAdapter,
    CodexAdapter,
    GeminiAdapter,
)
from agent_dispatch.orchestrator.credentials import SecretOverlayStore, load_all_env_credentials
from agent_dispatch.orchestrator.dispatcher import Dispatcher
from agent_dispatch.orchestrator.ledger import LedgerSink
from agent_dispatch.orchestrator.models import BackendType, Credential
from agent_dispatch.orchestrator.quota import Clock, CredentialStore, QuotaRegistry
from agent_dispatch.orchestrator.routing import Router, RoutingPolicy
from agent_dispatch.storage.common import utc_now
from agent_dispatch.storage.repository import DispatchRepository

logger = logging.getLogger(__name__)

ADAPTER_TYPES: dict[BackendType, type[CliBackendAdapter]] = {
    BackendType.CLAUDE: ClaudeAdapter,
    BackendType.CODEX: CodexAdapter,
    BackendType.GEMINI: GeminiAdapter,
}


def build_adapters(settings: Settings) -> dict[BackendType, CliBackendAdapter]:
    """One adapter per enabled backend, configured from its settings group."""

    adapters: dict[BackendType, CliBackendAdapter] = {}
    for backend in settings.enabled_backends:
        item = settings.backends[backend]
        adapters[backend] = ADAPTER_TYPES[backend](
            command=item.command,
            model=item.model,
            quota_unit=item.quota_unit,
            metered=item.metered,
            pricing=settings.pricing,
            prompt_argv_max_bytes=settings.dispatch.prompt_argv_max_bytes,
            kill_grace_seconds=settings.dispatch.kill_grace_seconds,
            poll_interval_seconds=settings.dispatch.poll_interval_seconds,
        )
    return adapters


def build_dispatcher(  # noqa: PLR0913
    settings: Settings,
    *,
    store: CredentialStore,
    ledger: LedgerSink | None = None,
    adapters: Mapping[BackendType, CliBackendAdapter] | None = None,
    clock: Clock = utc_now,
    working_dir: Path | None = None,
) -> Dispatcher:
    """Dispatcher over ``store`` credentials; quota changes are written back to the store."""

    settings.validate()
    adapters = dict(adapters) if adapters is not None else build_adapters(settings)
    quota = QuotaRegistry.from_store(
        store,
        {backend: settings.backends[backend].quota_unit for backend in adapters},
        clock=clock,
    )
    router = Router(RoutingPolicy.from_settings(settings), registered=tuple(adapters))
    return Dispatcher(
        adapters=adapters,
        quota=quota,
        router=router,
        ledger=ledger,
        timeouts={backend: settings.backends[backend].timeout_seconds for backend in adapters},
        output_format=settings.dispatch.output_format,
        working_dir=working_dir,
    )


def register_env_credentials(
    repository: DispatchRepository,
    settings: Settings,
    *,
    environ: Mapping[str, str] | None = None,
) -> list[Credential]:
    """Store rows for credentials configured in the environment and return them with secrets."""

    credentials = load_all_env_credentials(settings, environ=environ)
    repository.sync_credentials(credentials)
    logger.debug("Registered %s credential(s) in %s", len(credentials), settings.db_path)
    return credentials


@contextmanager
def persistent_dispatcher(
    settings: Settings,
    *,
    environ: Mapping[str, str] | None = None,
    working_dir: Path | None = None,
) -> Iterator[Dispatcher]:
    """Dispatcher whose quota counters and ledger live in the SQLite database.

    Credentials come from the environment on every start; counters persist
    between runs under the same credential ids.  All pending quota updates are
    written before the context exits.
    """

    repository = DispatchRepository(
        settings.db_path,
        busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    repository.init_schema()
    try:
        credentials = register_env_credentials(repository, settings, environ=environ)
        dispatcher = build_dispatcher(
            settings,
            store=SecretOverlayStore(repository, credentials),
            ledger=repository,
            working_dir=working_dir,
        )
        try:
            yield dispatcher
        finally:
            dispatcher.quota.close()
    finally:
        repository.close()
