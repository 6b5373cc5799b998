"""Classify, route, execute with fallback, and account one task."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, replace
from pathlib import Path

from agent_dispatch.orchestrator.backend.base import BackendAdapter
from agent_dispatch.orchestrator.classifier import classify
from agent_dispatch.orchestrator.ledger import LedgerSink
from agent_dispatch.orchestrator.models import (
    AttemptOutcome,
    BackendQuotaStatus,
    BackendType,
    Classification,
    ClassificationHints,
    ExecutionRequest,
    ExecutionResult,
    LedgerEntry,
    OutputFormat,
    Plan,
    Reservation,
)
from agent_dispatch.orchestrator.quota import QuotaRegistry
from agent_dispatch.orchestrator.routing import Router

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class DispatchOutcome:
    """Final result of a dispatch plus its ledger record."""

    result: ExecutionResult
    entry: LedgerEntry


@dataclass(frozen=True, slots=True)
class BackendHealth:
    """Installation and quota state of one backend."""

    backend: BackendType
    installed: bool
    quota: BackendQuotaStatus | None

    @property
    def healthy(self) -> bool:
        return self.installed and self.quota is not None and self.quota.available


class Dispatcher:
    """Run tasks against the best available backend, falling back in plan order.

    Safe to share between threads: per-dispatch state lives on the stack, quota
    is guarded per credential, and the ledger is append-only.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        adapters: Mapping[BackendType, BackendAdapter],
        quota: QuotaRegistry,
        router: Router,
        ledger: LedgerSink | None = None,
        timeouts: Mapping[BackendType, float] | None = None,
        default_timeout_seconds: float = 300.0,
        output_format: OutputFormat = OutputFormat.TEXT,
        working_dir: Path | None = None,
    ) -> None:
        if not adapters:
            raise ValueError("Dispatcher needs at least one backend adapter.")
        missing = [backend.value for backend in router.registered if backend not in adapters]
        if missing:
            raise ValueError(f"Router references backends without adapters: {', '.join(missing)}")
        self._adapters = dict(adapters)
        self._quota = quota
        self._router = router
        self._ledger = ledger
        self._timeouts = dict(timeouts or {})
        self._default_timeout_seconds = default_timeout_seconds
        self._output_format = output_format
        self._working_dir = working_dir

    @property
    def quota(self) -> QuotaRegistry:
        return self._quota

    def plan(
        self,
        description: str,
        hints: ClassificationHints | None = None,
        *,
        backend: BackendType | None = None,
    ) -> tuple[Classification, Plan]:
        """Classification and plan a dispatch would start from, without executing."""

        classification = classify(description, hints)
        snapshot = self._quota.snapshot()
        if backend is not None and not classification.security_critical:
            return classification, self._router.force(backend, snapshot)
        return classification, self._router.route(classification, snapshot)

    def dispatch(  # noqa: PLR0913
        self,
        description: str,
        hints: ClassificationHints | None = None,
        *,
        working_dir: Path | None = None,
        timeout_seconds: float | None = None,
        context_files: Sequence[Path] = (),
        output_format: OutputFormat | None = None,
        backend: BackendType | None = None,
        model: str | None = None,
        cancel_requested: Callable[[], bool] | None = None,
    ) -> DispatchOutcome:
        """Execute ``description`` and return the final result with its ledger entry.

        A manual ``backend`` override never applies to security-critical tasks.
        Failures of every kind come back as the result; only programming errors raise.
        """

        classification, plan = self.plan(description, hints, backend=backend)
        logger.info(
            "Dispatching %s/%s task to %s: %s",
            classification.category.value,
            classification.complexity.value,
            " -> ".join(item.value for item in plan.candidates()),
            plan.reason,
        )

        attempts: list[ExecutionResult] = []
        for candidate in plan.candidates():
            if cancel_requested is not None and cancel_requested():
                attempts.append(
                    ExecutionResult.failure(
                        candidate,
                        AttemptOutcome.CANCELLED,
                        "Cancelled before the attempt started",
                    ),
                )
                break

            request = ExecutionRequest(
                prompt=description,
                working_dir=working_dir or self._working_dir or Path.cwd(),
                timeout_seconds=timeout_seconds or self._timeout_for(candidate),
                output_format=output_format or self._output_format,
                context_files=tuple(context_files),
                model=model,
                cancel_requested=cancel_requested,
            )
            result = self._attempt(candidate, request, plan)
            attempts.append(result)
            logger.info(
                "Attempt %s on %s: %s%s",
                len(attempts),
                candidate.value,
                result.outcome.value,
                f" ({result.error})" if result.error else "",
            )
            if result.success or result.outcome is AttemptOutcome.CANCELLED:
                break

        final = attempts[-1]
        entry = LedgerEntry(
            description=description,
            classification=classification,
            plan=plan,
            attempts=tuple(attempts),
            final_outcome=final.outcome,
        )
        self._record(entry)
        return DispatchOutcome(result=final, entry=entry)

    def check_health(self) -> list[BackendHealth]:
        snapshot = self._quota.snapshot()
        return [
            BackendHealth(
                backend=backend,
                installed=adapter.is_available(),
                quota=snapshot.get(backend),
            )
            for backend, adapter in self._adapters.items()
        ]

    def _timeout_for(self, backend: BackendType) -> float:
        return self._timeouts.get(backend, self._default_timeout_seconds)

    def _attempt(self, backend: BackendType, request: ExecutionRequest, plan: Plan) -> ExecutionResult:
        adapter = self._adapters[backend]
        amount = adapter.estimate_quota_units(request)
        reservation = self._quota.try_reserve(backend, amount)
        if reservation is None:
            if plan.policy_forced:
                return ExecutionResult.failure(
                    backend,
                    AttemptOutcome.POLICY_FORCED_EXHAUSTED,
                    f"Security-critical task requires {backend.value}, which has no quota left",
                )
            return ExecutionResult.failure(
                backend,
                AttemptOutcome.QUOTA_EXHAUSTED,
                f"No {backend.value} credential has {amount} {adapter.quota_unit.value} left",
            )

        credential = self._quota.pool(backend).credential(reservation.credential_id)
        try:
            result = adapter.execute(replace(request, credential=credential))
        except BaseException:
            self._quota.release(reservation)
            raise
        self._settle(reservation, result)
        return result

    def _settle(self, reservation: Reservation, result: ExecutionResult) -> None:
        if result.outcome is AttemptOutcome.SPAWN_FAILED:
            self._quota.release(reservation)
            return
        self._quota.commit(reservation, result.quota_units, success=result.success)

    def _record(self, entry: LedgerEntry) -> None:
        if self._ledger is None:
            return
        try:
            self._ledger.append(entry)
        except Exception:  # noqa: BLE001
            logger.exception("Failed to record ledger entry %s", entry.entry_id)
