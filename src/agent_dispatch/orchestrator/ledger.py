"""Ledger sinks and routing statistics."""

from __future__ import annotations

from collections import Counter, defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol

from agent_dispatch.orchestrator.models import AttemptOutcome, LedgerEntry, LedgerRecord

_SKIPPED = (AttemptOutcome.QUOTA_EXHAUSTED, AttemptOutcome.POLICY_FORCED_EXHAUSTED)


class LedgerSink(Protocol):
    """Append-only destination for dispatch records."""

    def append(self, entry: LedgerEntry) -> None: ...


class InMemoryLedger:
    """Process-local ledger; list append is atomic, so no lock is needed."""

    def __init__(self) -> None:
        self._entries: list[LedgerEntry] = []

    def append(self, entry: LedgerEntry) -> None:
        self._entries.append(entry)

    def entries(self) -> tuple[LedgerEntry, ...]:
        return tuple(self._entries)

    def list_records(self, *, since: datetime | None = None) -> list[LedgerRecord]:
        return [
            entry.to_record()
            for entry in self._entries
            if since is None or entry.created_at >= since
        ]


@dataclass(slots=True)
class RoutingStats:
    """Aggregates over a set of ledger records."""

    total_dispatches: int = 0
    succeeded: int = 0
    total_attempts: int = 0
    fallback_dispatches: int = 0
    dispatches_by_backend: dict[str, int] = field(default_factory=dict)
    dispatches_by_complexity: dict[str, int] = field(default_factory=dict)
    dispatches_by_category: dict[str, int] = field(default_factory=dict)
    attempt_outcomes: dict[str, int] = field(default_factory=dict)
    cost_by_backend: dict[str, float] = field(default_factory=dict)
    average_duration_seconds: float = 0.0
    average_confidence: float = 0.0

    @property
    def success_rate(self) -> float:
        if self.total_dispatches == 0:
            return 0.0
        return self.succeeded / self.total_dispatches

    @property
    def total_cost_usd(self) -> float:
        return sum(self.cost_by_backend.values())


def compute_routing_stats(records: Iterable[LedgerRecord]) -> RoutingStats:
    """Summarize dispatches; a dispatch counts toward the backend that ran its last attempt."""

    stats = RoutingStats()
    by_backend: Counter[str] = Counter()
    by_complexity: Counter[str] = Counter()
    by_category: Counter[str] = Counter()
    outcomes: Counter[str] = Counter()
    cost: defaultdict[str, float] = defaultdict(float)
    durations: list[float] = []
    confidence_total = 0.0

    for record in records:
        stats.total_dispatches += 1
        stats.succeeded += int(record.success)
        confidence_total += record.confidence
        by_complexity[record.complexity.value] += 1
        by_category[record.category.value] += 1
        if record.final_backend is not None:
            by_backend[record.final_backend.value] += 1
        executed = [attempt for attempt in record.attempts if attempt.outcome not in _SKIPPED]
        if len(executed) > 1:
            stats.fallback_dispatches += 1
        durations.append(sum(attempt.duration_seconds for attempt in record.attempts))
        for attempt in record.attempts:
            stats.total_attempts += 1
            outcomes[attempt.outcome.value] += 1
            cost[attempt.backend.value] += attempt.estimated_cost_usd

    stats.dispatches_by_backend = dict(by_backend)
    stats.dispatches_by_complexity = dict(by_complexity)
    stats.dispatches_by_category = dict(by_category)
    stats.attempt_outcomes = dict(outcomes)
    stats.cost_by_backend = dict(cost)
    if stats.total_dispatches:
        stats.average_duration_seconds = sum(durations) / stats.total_dispatches
        stats.average_confidence = confidence_total / stats.total_dispatches
    return stats


def render_stats_lines(stats: RoutingStats) -> list[str]:
    """Render stats for CLI output."""

    if stats.total_dispatches == 0:
        return ["No dispatches recorded."]
    return [
        f"Dispatches: {stats.total_dispatches} "
        f"(succeeded {stats.succeeded}, success rate {stats.success_rate:.0%})",
        f"Attempts: {stats.total_attempts} (dispatches with fallback: {stats.fallback_dispatches})",
        "By backend: " + _fmt_counts(stats.dispatches_by_backend),
        "By complexity: " + _fmt_counts(stats.dispatches_by_complexity),
        "By category: " + _fmt_counts(stats.dispatches_by_category),
        "Attempt outcomes: " + _fmt_counts(stats.attempt_outcomes),
        f"Average duration: {stats.average_duration_seconds:.2f}s",
        f"Average confidence: {stats.average_confidence:.2f}",
        f"Estimated cost: ${stats.total_cost_usd:.4f} ("
        + ", ".join(
            f"{backend}=${value:.4f}" for backend, value in sorted(stats.cost_by_backend.items())
        )
        + ")",
    ]


def _fmt_counts(counts: dict[str, int]) -> str:
    if not counts:
        return "none"
    return ", ".join(f"{key}={value}" for key, value in sorted(counts.items()))
