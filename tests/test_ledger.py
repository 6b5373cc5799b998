from __future__ import annotations

from datetime import timedelta

import allure
import pytest

from agent_dispatch.orchestrator.classifier import classify
from agent_dispatch.orchestrator.ledger import (
    InMemoryLedger,
    compute_routing_stats,
    render_stats_lines,
)
from agent_dispatch.orchestrator.models import (
    AttemptOutcome,
    BackendType,
    ExecutionResult,
    LedgerEntry,
    Plan,
)
from agent_dispatch.storage.common import utc_now

pytestmark = [
    allure.epic("Dispatch"),
    allure.feature("Ledger & Stats"),
]


def _ok(backend: BackendType, *, cost: float = 0.0, duration: float = 1.0) -> ExecutionResult:
    return ExecutionResult(
        success=True,
        backend=backend,
        outcome=AttemptOutcome.SUCCEEDED,
        output="done",
        duration_seconds=duration,
        estimated_cost_usd=cost,
    )


def _failed(backend: BackendType, outcome: AttemptOutcome, *, duration: float = 0.0) -> ExecutionResult:
    return ExecutionResult.failure(backend, outcome, "failed", duration_seconds=duration)


def _entry(description: str, *attempts: ExecutionResult, **extra) -> LedgerEntry:
    return LedgerEntry(
        description=description,
        classification=classify(description),
        plan=Plan(primary=attempts[0].backend, fallbacks=(), reason="test"),
        attempts=attempts,
        final_outcome=attempts[-1].outcome,
        **extra,
    )


def _records():
    ledger = InMemoryLedger()
    ledger.append(_entry("write docs for the module", _ok(BackendType.GEMINI, duration=2.0)))
    ledger.append(
        _entry(
            "fix bug in parser.ts null check",
            _failed(BackendType.CODEX, AttemptOutcome.TIMED_OUT, duration=3.0),
            _ok(BackendType.CLAUDE, cost=0.25, duration=1.0),
        ),
    )
    ledger.append(
        _entry(
            "fix the crash on startup",
            _failed(BackendType.CODEX, AttemptOutcome.QUOTA_EXHAUSTED),
            _failed(BackendType.GEMINI, AttemptOutcome.BACKEND_FAILED, duration=3.0),
        ),
    )
    return ledger


def test_stats_count_dispatches_by_final_backend() -> None:
    stats = compute_routing_stats(_records().list_records())

    assert stats.total_dispatches == 3
    assert stats.succeeded == 2
    assert stats.success_rate == pytest.approx(2 / 3)
    assert stats.total_attempts == 5
    assert stats.dispatches_by_backend == {"gemini": 2, "claude": 1}
    assert stats.attempt_outcomes["quota_exhausted"] == 1
    assert stats.cost_by_backend["claude"] == pytest.approx(0.25)
    assert stats.total_cost_usd == pytest.approx(0.25)
    assert stats.average_duration_seconds == pytest.approx(3.0)
    assert sum(stats.dispatches_by_category.values()) == 3


def test_skipped_attempts_do_not_count_as_fallback() -> None:
    stats = compute_routing_stats(_records().list_records())

    assert stats.fallback_dispatches == 1


def test_in_memory_ledger_filters_by_time() -> None:
    ledger = InMemoryLedger()
    old = _entry("write docs", _ok(BackendType.GEMINI), created_at=utc_now() - timedelta(days=2))
    recent = _entry("write docs", _ok(BackendType.GEMINI))
    ledger.append(old)
    ledger.append(recent)

    records = ledger.list_records(since=utc_now() - timedelta(hours=1))

    assert [record.entry_id for record in records] == [recent.entry_id]
    assert ledger.entries() == (old, recent)


def test_render_stats_lines() -> None:
    lines = render_stats_lines(compute_routing_stats(_records().list_records()))

    assert lines[0] == "Dispatches: 3 (succeeded 2, success rate 67%)"
    assert "By backend: claude=1, gemini=2" in lines
    assert "Average duration: 3.00s" in lines
    assert lines[-1] == "Estimated cost: $0.2500 (claude=$0.2500, codex=$0.0000, gemini=$0.0000)"


def test_render_empty_stats() -> None:
    assert render_stats_lines(compute_routing_stats([])) == ["No dispatches recorded."]
