"""SQLite-backed credential store and dispatch ledger."""

from __future__ import annotations

import json
from collections.abc import Iterable
from datetime import datetime, timedelta
from pathlib import Path

from sqlmodel import Session, col, select

from agent_dispatch.orchestrator.models import (
    AttemptOutcome,
    AttemptRecord,
    BackendType,
    Complexity,
    Credential,
    FailureClass,
    LedgerEntry,
    LedgerRecord,
    TaskCategory,
)
from agent_dispatch.storage.alembic_runner import upgrade_head
from agent_dispatch.storage.common import (
    build_sqlite_engine,
    from_db_datetime,
    to_db_datetime,
    utc_now,
)
from agent_dispatch.storage.sqlmodel_models import (
    DispatchAttempt,
    DispatchLedgerEntry,
    QuotaCredential,
)


class DispatchRepository:
    """Persistence facade backed by SQLModel + SQLite.

    Implements both the credential store used by quota pools and the ledger
    sink used by the dispatcher.  Secrets are never written to the database.
    """

    def __init__(self, db_path: Path, *, busy_timeout_ms: int = 5000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        upgrade_head(self.db_path)

    def sync_credentials(self, credentials: Iterable[Credential]) -> None:
        """Insert unknown credentials and refresh configured limits of known ones.

        Usage counters, reset times and the active flag of existing rows are kept.
        """

        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            for credential in credentials:
                row = session.get(QuotaCredential, credential.credential_id)
                if row is None:
                    row = QuotaCredential(
                        credential_id=credential.credential_id,
                        backend=credential.backend.value,
                        name=credential.name,
                        priority=credential.priority,
                        daily_limit=credential.daily_limit,
                        used_today=credential.used_today,
                        reset_period_seconds=int(credential.reset_period.total_seconds()),
                        active=credential.active,
                        reset_at=to_db_datetime(credential.reset_at),
                        created_at=now,
                        updated_at=now,
                    )
                else:
                    row.name = credential.name
                    row.priority = credential.priority
                    row.daily_limit = credential.daily_limit
                    row.reset_period_seconds = int(credential.reset_period.total_seconds())
                    row.updated_at = now
                session.add(row)
            session.commit()

    def list_credentials(self, backend: BackendType) -> list[Credential]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(QuotaCredential)
                .where(QuotaCredential.backend == backend.value)
                .order_by(col(QuotaCredential.priority).asc(), col(QuotaCredential.name).asc()),
            ).all()
        return [_to_credential(row) for row in rows]

    def persist_usage(self, credential_id: str, used_today: int, reset_at: datetime) -> None:
        with Session(self.engine) as session:
            row = session.get(QuotaCredential, credential_id)
            if row is None:
                return
            row.used_today = used_today
            row.reset_at = to_db_datetime(reset_at)
            row.updated_at = to_db_datetime(utc_now())
            session.add(row)
            session.commit()

    def set_credential_active(self, credential_id: str, *, active: bool) -> bool:
        """Enable or disable a credential; False if it does not exist."""

        with Session(self.engine) as session:
            row = session.get(QuotaCredential, credential_id)
            if row is None:
                return False
            row.active = active
            row.updated_at = to_db_datetime(utc_now())
            session.add(row)
            session.commit()
        return True

    def append(self, entry: LedgerEntry) -> None:
        """Persist one ledger entry with all of its attempts in a single transaction."""

        with Session(self.engine) as session:
            session.add(
                DispatchLedgerEntry(
                    entry_id=entry.entry_id,
                    description=entry.description,
                    category=entry.classification.category.value,
                    complexity=entry.classification.complexity.value,
                    security_critical=entry.classification.security_critical,
                    confidence=entry.classification.confidence,
                    primary_backend=entry.plan.primary.value,
                    fallbacks_json=json.dumps([backend.value for backend in entry.plan.fallbacks]),
                    reason=entry.plan.reason,
                    final_outcome=entry.final_outcome.value,
                    final_backend=entry.final_backend.value if entry.final_backend else None,
                    total_cost_usd=entry.total_cost_usd,
                    created_at=to_db_datetime(entry.created_at),
                ),
            )
            # Attempts reference the ledger row by foreign key.
            session.flush()
            for attempt_no, attempt in enumerate(entry.attempts, start=1):
                session.add(
                    DispatchAttempt(
                        entry_id=entry.entry_id,
                        attempt_no=attempt_no,
                        backend=attempt.backend.value,
                        credential_id=attempt.credential_id,
                        outcome=attempt.outcome.value,
                        success=attempt.success,
                        failure_class=(
                            attempt.failure_class.value if attempt.failure_class else None
                        ),
                        exit_code=attempt.exit_code,
                        prompt_delivery=attempt.prompt_delivery,
                        duration_ms=int(attempt.duration_seconds * 1000),
                        quota_units=attempt.quota_units,
                        prompt_tokens=attempt.usage.prompt_tokens,
                        completion_tokens=attempt.usage.completion_tokens,
                        total_tokens=attempt.usage.total_tokens,
                        estimated_cost_usd=attempt.estimated_cost_usd,
                        error_summary=attempt.error,
                        created_at=to_db_datetime(attempt.timestamp),
                    ),
                )
            session.commit()

    def list_records(
        self,
        *,
        since: datetime | None = None,
        limit: int | None = None,
    ) -> list[LedgerRecord]:
        """Ledger entries newest first, each with its attempts in order."""

        with Session(self.engine) as session:
            statement = select(DispatchLedgerEntry).order_by(
                col(DispatchLedgerEntry.created_at).desc(),
            )
            if since is not None:
                statement = statement.where(
                    DispatchLedgerEntry.created_at >= to_db_datetime(since),
                )
            if limit is not None:
                statement = statement.limit(limit)
            entries = session.exec(statement).all()
            entry_ids = [row.entry_id for row in entries]
            attempts = (
                session.exec(
                    select(DispatchAttempt)
                    .where(col(DispatchAttempt.entry_id).in_(entry_ids))
                    .order_by(
                        col(DispatchAttempt.entry_id).asc(),
                        col(DispatchAttempt.attempt_no).asc(),
                    ),
                ).all()
                if entry_ids
                else []
            )

        attempts_by_entry: dict[str, list[AttemptRecord]] = {}
        for row in attempts:
            attempts_by_entry.setdefault(row.entry_id, []).append(_to_attempt_record(row))
        return [
            _to_ledger_record(row, tuple(attempts_by_entry.get(row.entry_id, [])))
            for row in entries
        ]


def _to_credential(row: QuotaCredential) -> Credential:
    return Credential(
        credential_id=row.credential_id,
        backend=BackendType(row.backend),
        name=row.name,
        priority=row.priority,
        daily_limit=row.daily_limit,
        used_today=row.used_today,
        reset_at=from_db_datetime(row.reset_at),
        reset_period=timedelta(seconds=row.reset_period_seconds),
        active=row.active,
    )


def _to_attempt_record(row: DispatchAttempt) -> AttemptRecord:
    return AttemptRecord(
        attempt_no=row.attempt_no,
        backend=BackendType(row.backend),
        outcome=AttemptOutcome(row.outcome),
        success=row.success,
        duration_seconds=row.duration_ms / 1000,
        estimated_cost_usd=row.estimated_cost_usd,
        quota_units=row.quota_units,
        failure_class=FailureClass(row.failure_class) if row.failure_class else None,
        exit_code=row.exit_code,
        credential_id=row.credential_id,
        error=row.error_summary,
    )


def _to_ledger_record(row: DispatchLedgerEntry, attempts: tuple[AttemptRecord, ...]) -> LedgerRecord:
    return LedgerRecord(
        entry_id=row.entry_id,
        description=row.description,
        category=TaskCategory(row.category),
        complexity=Complexity(row.complexity),
        security_critical=row.security_critical,
        confidence=row.confidence,
        primary_backend=BackendType(row.primary_backend),
        fallbacks=tuple(BackendType(value) for value in json.loads(row.fallbacks_json)),
        reason=row.reason,
        final_outcome=AttemptOutcome(row.final_outcome),
        final_backend=BackendType(row.final_backend) if row.final_backend else None,
        created_at=from_db_datetime(row.created_at),
        attempts=attempts,
    )
