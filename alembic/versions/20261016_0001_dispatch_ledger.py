"""Create quota credential and dispatch ledger tables."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261016_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "quota_credentials",
        sa.Column("credential_id", sa.String(), nullable=False),
        sa.Column("backend", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False),
        sa.Column("daily_limit", sa.Integer(), nullable=False),
        sa.Column("used_today", sa.Integer(), nullable=False),
        sa.Column("reset_period_seconds", sa.Integer(), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("reset_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("credential_id"),
    )
    op.create_index(
        "ix_quota_credentials_backend",
        "quota_credentials",
        ["backend"],
        unique=False,
    )

    op.create_table(
        "dispatch_ledger",
        sa.Column("entry_id", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("category", sa.String(), nullable=False),
        sa.Column("complexity", sa.String(), nullable=False),
        sa.Column("security_critical", sa.Boolean(), nullable=False),
        sa.Column("confidence", sa.Float(), nullable=False),
        sa.Column("primary_backend", sa.String(), nullable=False),
        sa.Column("fallbacks_json", sa.Text(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("final_outcome", sa.String(), nullable=False),
        sa.Column("final_backend", sa.String(), nullable=True),
        sa.Column("total_cost_usd", sa.Float(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("entry_id"),
    )
    op.create_index("ix_dispatch_ledger_category", "dispatch_ledger", ["category"], unique=False)
    op.create_index(
        "ix_dispatch_ledger_complexity",
        "dispatch_ledger",
        ["complexity"],
        unique=False,
    )
    op.create_index(
        "ix_dispatch_ledger_final_outcome",
        "dispatch_ledger",
        ["final_outcome"],
        unique=False,
    )
    op.create_index(
        "ix_dispatch_ledger_created_at",
        "dispatch_ledger",
        ["created_at"],
        unique=False,
    )

    op.create_table(
        "dispatch_attempts",
        sa.Column("attempt_id", sa.Integer(), nullable=False),
        sa.Column("entry_id", sa.String(), nullable=False),
        sa.Column("attempt_no", sa.Integer(), nullable=False),
        sa.Column("backend", sa.String(), nullable=False),
        sa.Column("credential_id", sa.String(), nullable=True),
        sa.Column("outcome", sa.String(), nullable=False),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column("failure_class", sa.String(), nullable=True),
        sa.Column("exit_code", sa.Integer(), nullable=True),
        sa.Column("prompt_delivery", sa.String(), nullable=True),
        sa.Column("duration_ms", sa.Integer(), nullable=False),
        sa.Column("quota_units", sa.Integer(), nullable=False),
        sa.Column("prompt_tokens", sa.Integer(), nullable=True),
        sa.Column("completion_tokens", sa.Integer(), nullable=True),
        sa.Column("total_tokens", sa.Integer(), nullable=True),
        sa.Column("estimated_cost_usd", sa.Float(), nullable=False),
        sa.Column("error_summary", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["entry_id"], ["dispatch_ledger.entry_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("attempt_id"),
        sa.UniqueConstraint(
            "entry_id",
            "attempt_no",
            name="uq_dispatch_attempts_entry_attempt_no",
        ),
    )
    op.create_index(
        "ix_dispatch_attempts_entry_id",
        "dispatch_attempts",
        ["entry_id"],
        unique=False,
    )
    op.create_index(
        "ix_dispatch_attempts_backend",
        "dispatch_attempts",
        ["backend"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_dispatch_attempts_backend", table_name="dispatch_attempts")
    op.drop_index("ix_dispatch_attempts_entry_id", table_name="dispatch_attempts")
    op.drop_table("dispatch_attempts")
    op.drop_index("ix_dispatch_ledger_created_at", table_name="dispatch_ledger")
    op.drop_index("ix_dispatch_ledger_final_outcome", table_name="dispatch_ledger")
    op.drop_index("ix_dispatch_ledger_complexity", table_name="dispatch_ledger")
    op.drop_index("ix_dispatch_ledger_category", table_name="dispatch_ledger")
    op.drop_table("dispatch_ledger")
    op.drop_index("ix_quota_credentials_backend", table_name="quota_credentials")
    op.drop_table("quota_credentials")
