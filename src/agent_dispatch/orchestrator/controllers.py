"""Controllers for dispatcher CLI commands."""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any

from agent_dispatch.config import Settings
from agent_dispatch.orchestrator.classifier import classify
from agent_dispatch.orchestrator.dispatcher import BackendHealth, DispatchOutcome
from agent_dispatch.orchestrator.flows import dispatch_batch
from agent_dispatch.orchestrator.ledger import compute_routing_stats, render_stats_lines
from agent_dispatch.orchestrator.models import (
    BackendQuotaStatus,
    BackendType,
    Classification,
    ClassificationHints,
    Complexity,
    OutputFormat,
    Plan,
    TaskCategory,
)
from agent_dispatch.orchestrator.services import persistent_dispatcher, register_env_credentials
from agent_dispatch.storage.common import utc_now
from agent_dispatch.storage.repository import DispatchRepository

_OUTPUT_PREVIEW_CHARS = 4000


@dataclass(slots=True)
class HintOptions:
    """Classification overrides shared by classify, route, run and batch."""

    category: str | None = None
    complexity: str | None = None
    files_affected: int | None = None
    estimated_lines: int | None = None
    security_critical: bool = False

    def to_hints(self) -> ClassificationHints:
        return ClassificationHints(
            category=TaskCategory(self.category) if self.category else None,
            complexity=Complexity(self.complexity) if self.complexity else None,
            files_affected=self.files_affected,
            estimated_lines=self.estimated_lines,
            security_critical=self.security_critical,
        )


@dataclass(slots=True)
class ClassifyCommand:
    """CLI input for classification only."""

    description: str
    hints: HintOptions
    output_format: str = "table"


@dataclass(slots=True)
class RouteCommand:
    """CLI input for a routing dry run."""

    db_path: Path | None
    description: str
    hints: HintOptions
    backend: str | None = None
    output_format: str = "table"


@dataclass(slots=True)
class RunCommand:
    """CLI input for one dispatch."""

    db_path: Path | None
    description: str
    hints: HintOptions
    backend: str | None = None
    model: str | None = None
    timeout_seconds: float | None = None
    output_format: str | None = None
    working_dir: Path | None = None
    context_files: tuple[Path, ...] = ()


@dataclass(slots=True)
class BatchCommand:
    """CLI input for concurrent dispatch of several descriptions."""

    db_path: Path | None
    descriptions: tuple[str, ...]
    hints: HintOptions
    timeout_seconds: float | None = None
    output_format: str | None = None
    working_dir: Path | None = None


@dataclass(slots=True)
class QuotaCommand:
    """CLI input for quota inspection and credential toggles."""

    db_path: Path | None
    enable: tuple[str, ...] = ()
    disable: tuple[str, ...] = ()


@dataclass(slots=True)
class HealthCommand:
    """CLI input for backend health check."""

    db_path: Path | None


@dataclass(slots=True)
class StatsCommand:
    """CLI input for routing statistics."""

    db_path: Path | None
    hours: int | None = None


@dataclass(slots=True)
class DispatchReport:
    """Dispatch report to render in CLI."""

    lines: list[str]
    success: bool


class DispatchCliController:
    """Coordinates classification, routing, dispatch and inspection CLI operations."""

    def classify(self, command: ClassifyCommand) -> list[str]:
        classification = classify(command.description, command.hints.to_hints())
        if command.output_format == "json":
            return [json.dumps(classification.to_dict(), indent=2)]
        return _classification_lines(classification)

    def route(self, command: RouteCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with persistent_dispatcher(settings) as dispatcher:
            classification, plan = dispatcher.plan(
                command.description,
                command.hints.to_hints(),
                backend=_backend_or_none(command.backend),
            )
        if command.output_format == "json":
            return [
                json.dumps(
                    {"classification": classification.to_dict(), "plan": plan.to_dict()},
                    indent=2,
                ),
            ]
        return [*_classification_lines(classification), *_plan_lines(plan)]

    def run(self, command: RunCommand) -> DispatchReport:
        settings = Settings.from_env(db_path=command.db_path)
        with persistent_dispatcher(settings, working_dir=command.working_dir) as dispatcher:
            outcome = dispatcher.dispatch(
                command.description,
                command.hints.to_hints(),
                timeout_seconds=command.timeout_seconds,
                context_files=command.context_files,
                output_format=_output_format_or_none(command.output_format),
                backend=_backend_or_none(command.backend),
                model=command.model,
            )
        return DispatchReport(lines=_outcome_lines(outcome), success=outcome.result.success)

    def batch(self, command: BatchCommand) -> DispatchReport:
        if not command.descriptions:
            raise ValueError("Batch needs at least one task description.")
        settings = Settings.from_env(db_path=command.db_path)
        with persistent_dispatcher(settings, working_dir=command.working_dir) as dispatcher:
            outcomes = dispatch_batch(
                dispatcher,
                list(command.descriptions),
                hints=command.hints.to_hints(),
                timeout_seconds=command.timeout_seconds,
                output_format=_output_format_or_none(command.output_format),
            )

        lines: list[str] = []
        for index, outcome in enumerate(outcomes, start=1):
            result = outcome.result
            lines.append(
                f"[{index}] {result.outcome.value} on {result.backend.value} "
                f"({len(outcome.entry.attempts)} attempt(s)): {outcome.entry.description}",
            )
            if result.error:
                lines.append(f"    error: {result.error}")
        succeeded = sum(1 for outcome in outcomes if outcome.result.success)
        lines.append(f"Batch: {succeeded}/{len(outcomes)} succeeded")
        return DispatchReport(lines=lines, success=succeeded == len(outcomes))

    def quota(self, command: QuotaCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        lines: list[str] = []
        if command.enable or command.disable:
            with _repository(settings) as repository:
                register_env_credentials(repository, settings)
                for credential_id, active in (
                    *((item, True) for item in command.enable),
                    *((item, False) for item in command.disable),
                ):
                    if repository.set_credential_active(credential_id, active=active):
                        lines.append(
                            f"Credential {'enabled' if active else 'disabled'}: {credential_id}",
                        )
                    else:
                        lines.append(f"Credential not found: {credential_id}")

        with persistent_dispatcher(settings) as dispatcher:
            snapshot = dispatcher.quota.snapshot()
        for status in snapshot.values():
            lines.extend(_quota_lines(status))
        return lines

    def health(self, command: HealthCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with persistent_dispatcher(settings) as dispatcher:
            report = dispatcher.check_health()
        return [_health_line(item) for item in report]

    def stats(self, command: StatsCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        since = utc_now() - timedelta(hours=command.hours) if command.hours else None
        with _repository(settings) as repository:
            records = repository.list_records(since=since)
        window = f"last {command.hours}h" if command.hours else "all time"
        return [f"Routing stats ({window})", *render_stats_lines(compute_routing_stats(records))]


def _backend_or_none(value: str | None) -> BackendType | None:
    return BackendType(value) if value else None


def _output_format_or_none(value: str | None) -> OutputFormat | None:
    return OutputFormat(value) if value else None


def _classification_lines(classification: Classification) -> list[str]:
    return [
        f"Category: {classification.category.value}",
        f"Complexity: {classification.complexity.value}",
        f"Files affected: {classification.files_affected}",
        f"Estimated lines: {classification.estimated_lines}",
        f"Security critical: {'yes' if classification.security_critical else 'no'}",
        f"Confidence: {classification.confidence:.2f}",
    ]


def _plan_lines(plan: Plan) -> list[str]:
    lines = [
        f"Primary: {plan.primary.value}",
        "Fallbacks: " + (", ".join(item.value for item in plan.fallbacks) or "none"),
        f"Reason: {plan.reason}",
    ]
    if plan.policy_forced:
        lines.append("Policy forced: yes")
    if plan.quota_exhausted:
        lines.append("Quota exhausted: yes")
    return lines


def _outcome_lines(outcome: DispatchOutcome) -> list[str]:
    entry = outcome.entry
    result = outcome.result
    lines = [
        f"Dispatch: {entry.entry_id}",
        f"Classification: {entry.classification.category.value}/"
        f"{entry.classification.complexity.value} "
        f"(confidence {entry.classification.confidence:.2f})",
        f"Plan: {' -> '.join(item.value for item in entry.plan.candidates())} "
        f"({entry.plan.reason})",
    ]
    for index, attempt in enumerate(entry.attempts, start=1):
        details = [f"{attempt.duration_seconds:.2f}s"]
        if attempt.credential_id:
            details.append(f"credential={attempt.credential_id}")
        if attempt.prompt_delivery:
            details.append(f"via={attempt.prompt_delivery}")
        if attempt.failure_class is not None:
            details.append(f"failure_class={attempt.failure_class.value}")
        lines.append(
            f"Attempt {index}: {attempt.backend.value} {attempt.outcome.value} "
            f"({', '.join(details)})",
        )
        if attempt.error:
            lines.append(f"  error: {attempt.error}")
    lines.append(f"Result: {result.outcome.value} on {result.backend.value}")
    if entry.total_cost_usd:
        lines.append(f"Estimated cost: ${entry.total_cost_usd:.4f}")
    if result.success:
        lines.append(_render_output(result.output))
    return lines


def _render_output(output: Any) -> str:
    if isinstance(output, dict | list):
        return json.dumps(output, indent=2, ensure_ascii=False)
    text = str(output)
    if len(text) > _OUTPUT_PREVIEW_CHARS:
        return text[:_OUTPUT_PREVIEW_CHARS] + "\n... (truncated)"
    return text


def _quota_lines(status: BackendQuotaStatus) -> list[str]:
    lines = [
        f"{status.backend.value}: {status.remaining}/{status.daily_limit} "
        f"{status.unit.value} remaining",
    ]
    for credential in status.credentials:
        lines.append(
            f"  - {credential.credential_id} ({credential.name}) "
            f"priority={credential.priority} "
            f"{'active' if credential.active else 'disabled'} "
            f"used={credential.used_today}/{credential.daily_limit} "
            f"resets={credential.reset_at.isoformat(timespec='minutes')}",
        )
    return lines


def _health_line(item: BackendHealth) -> str:
    installed = "installed" if item.installed else "not installed"
    if item.quota is None:
        quota = "no quota pool"
    else:
        quota = f"{item.quota.remaining}/{item.quota.daily_limit} {item.quota.unit.value} left"
    status = "ok" if item.healthy else "unavailable"
    return f"{item.backend.value}: {status} ({installed}, {quota})"


@contextmanager
def _repository(settings: Settings) -> Iterator[DispatchRepository]:
    repository = DispatchRepository(
        settings.db_path,
        busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()
