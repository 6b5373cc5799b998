"""SQLModel ORM tables for credentials and the dispatch ledger."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Text, UniqueConstraint, text
from sqlmodel import Field, SQLModel


class QuotaCredential(SQLModel, table=True):
    __tablename__ = "quota_credentials"  # type: ignore[bad-override]

    credential_id: str = Field(primary_key=True)
    backend: str = Field(index=True)
    name: str
    priority: int = 0
    daily_limit: int
    used_today: int = 0
    reset_period_seconds: int
    active: bool = Field(default=True, sa_column_kwargs={"server_default": text("1")})
    reset_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class DispatchLedgerEntry(SQLModel, table=True):
    __tablename__ = "dispatch_ledger"  # type: ignore[bad-override]

    entry_id: str = Field(primary_key=True)
    description: str = Field(sa_column=Column(Text(), nullable=False))
    category: str = Field(index=True)
    complexity: str = Field(index=True)
    security_critical: bool = False
    confidence: float
    primary_backend: str
    fallbacks_json: str = Field(sa_column=Column(Text(), nullable=False))
    reason: str = Field(sa_column=Column(Text(), nullable=False))
    final_outcome: str = Field(index=True)
    final_backend: str | None = None
    total_cost_usd: float = 0.0
    created_at: datetime = Field(
        sa_column=Column(DateTime(timezone=True), nullable=False, index=True),
    )


class DispatchAttempt(SQLModel, table=True):
    __tablename__ = "dispatch_attempts"  # type: ignore[bad-override]
    __table_args__ = (
        UniqueConstraint("entry_id", "attempt_no", name="uq_dispatch_attempts_entry_attempt_no"),
    )

    attempt_id: int | None = Field(default=None, primary_key=True)
    entry_id: str = Field(
        sa_column=Column(
            ForeignKey("dispatch_ledger.entry_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    attempt_no: int
    backend: str = Field(index=True)
    credential_id: str | None = None
    outcome: str
    success: bool = False
    failure_class: str | None = None
    exit_code: int | None = None
    prompt_delivery: str | None = None
    duration_ms: int = 0
    quota_units: int = 0
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None
    estimated_cost_usd: float = 0.0
    error_summary: str | None = Field(default=None, sa_column=Column(Text(), nullable=True))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
