"""Quota-aware ranking of backends for a classified task."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from agent_dispatch.config import Settings
from agent_dispatch.orchestrator.models import (
    BackendType,
    Classification,
    Complexity,
    Plan,
    QuotaSnapshot,
    TaskCategory,
)

logger = logging.getLogger(__name__)

_CLAUDE, _CODEX, _GEMINI = BackendType.CLAUDE, BackendType.CODEX, BackendType.GEMINI

CATEGORY_PREFERENCES: dict[TaskCategory, tuple[BackendType, ...]] = {
    TaskCategory.DOCUMENTATION: (_GEMINI, _CODEX, _CLAUDE),
    TaskCategory.TEST_GENERATION: (_GEMINI, _CODEX, _CLAUDE),
    TaskCategory.BOILERPLATE: (_GEMINI, _CODEX, _CLAUDE),
    TaskCategory.BUG_FIX: (_CODEX, _GEMINI, _CLAUDE),
    TaskCategory.API_IMPLEMENTATION: (_CODEX, _CLAUDE, _GEMINI),
    TaskCategory.REFACTORING: (_CODEX, _CLAUDE, _GEMINI),
    TaskCategory.ARCHITECTURE: (_CLAUDE, _CODEX, _GEMINI),
    TaskCategory.ALGORITHM: (_CLAUDE, _CODEX, _GEMINI),
    TaskCategory.SECURITY: (_CLAUDE,),
    TaskCategory.RESEARCH: (_GEMINI, _CLAUDE, _CODEX),
    TaskCategory.UNKNOWN: (_CLAUDE, _CODEX, _GEMINI),
}

COMPLEXITY_PREFERENCES: dict[Complexity, tuple[BackendType, ...]] = {
    Complexity.SIMPLE: (_GEMINI, _CODEX, _CLAUDE),
    Complexity.MEDIUM: (_CODEX, _CLAUDE, _GEMINI),
    Complexity.COMPLEX: (_CLAUDE, _CODEX, _GEMINI),
}


def merge_preferences(
    primary: Iterable[BackendType],
    secondary: Iterable[BackendType],
) -> tuple[BackendType, ...]:
    """Order of ``primary`` followed by unseen entries of ``secondary``; stable, no duplicates."""

    merged: list[BackendType] = []
    for backend in (*primary, *secondary):
        if backend not in merged:
            merged.append(backend)
    return tuple(merged)


@dataclass(slots=True)
class RoutingPolicy:
    """Preference tables plus the backends that override them."""

    security_backend: BackendType = BackendType.CLAUDE
    default_backend: BackendType = BackendType.CLAUDE
    category_preferences: dict[TaskCategory, tuple[BackendType, ...]] = field(
        default_factory=lambda: dict(CATEGORY_PREFERENCES),
    )
    complexity_preferences: dict[Complexity, tuple[BackendType, ...]] = field(
        default_factory=lambda: dict(COMPLEXITY_PREFERENCES),
    )

    @classmethod
    def from_settings(cls, settings: Settings) -> RoutingPolicy:
        return cls(
            security_backend=settings.dispatch.security_backend,
            default_backend=settings.dispatch.default_backend,
        )


class Router:
    """Build a ``Plan`` from a classification and a read-only quota snapshot.

    The availability check here is advisory.  A backend that looks available
    may still fail to reserve at dispatch time, in which case the dispatcher
    moves on to the next candidate.
    """

    def __init__(self, policy: RoutingPolicy, registered: Sequence[BackendType]) -> None:
        if not registered:
            raise ValueError("Router needs at least one registered backend.")
        for name, backend in (
            ("security", policy.security_backend),
            ("default", policy.default_backend),
        ):
            if backend not in registered:
                raise ValueError(f"The {name} backend {backend.value} is not registered.")
        self.policy = policy
        self.registered = tuple(registered)

    def preference_order(self, classification: Classification) -> tuple[BackendType, ...]:
        merged = merge_preferences(
            self.policy.category_preferences.get(classification.category, ()),
            self.policy.complexity_preferences.get(classification.complexity, ()),
        )
        return tuple(backend for backend in merged if backend in self.registered)

    def route(self, classification: Classification, snapshot: QuotaSnapshot) -> Plan:
        if classification.security_critical:
            return self._security_plan(snapshot)

        order = self.preference_order(classification)
        available = [backend for backend in order if _is_available(snapshot, backend)]
        if available:
            primary, *fallbacks = available
            plan = Plan(
                primary=primary,
                fallbacks=tuple(fallbacks),
                reason=(
                    f"Best match for {classification.category.value} "
                    f"({classification.complexity.value}) with quota available"
                ),
            )
        else:
            plan = self._exhausted_plan(order, snapshot)
        logger.debug(
            "Routed %s/%s to %s (fallbacks: %s)",
            classification.category.value,
            classification.complexity.value,
            plan.primary.value,
            ", ".join(backend.value for backend in plan.fallbacks) or "-",
        )
        return plan

    def force(self, backend: BackendType, snapshot: QuotaSnapshot) -> Plan:
        """Manual override: run on ``backend`` only."""

        if backend not in self.registered:
            raise ValueError(f"Backend {backend.value} is not registered.")
        exhausted = not _is_available(snapshot, backend)
        reason = "Forced backend selection (manual override)"
        if exhausted:
            reason += "; quota appears exhausted"
        return Plan(primary=backend, fallbacks=(), reason=reason, quota_exhausted=exhausted)

    def _security_plan(self, snapshot: QuotaSnapshot) -> Plan:
        backend = self.policy.security_backend
        if _is_available(snapshot, backend):
            reason = f"Security-critical task requires {backend.value}"
            exhausted = False
        else:
            reason = f"Security-critical task requires {backend.value} (forced despite exhausted quota)"
            exhausted = True
            logger.warning("Security backend %s has no quota; routing anyway", backend.value)
        return Plan(
            primary=backend,
            fallbacks=(),
            reason=reason,
            policy_forced=True,
            quota_exhausted=exhausted,
        )

    def _exhausted_plan(self, order: tuple[BackendType, ...], snapshot: QuotaSnapshot) -> Plan:
        outside = sorted(
            (
                backend
                for backend in self.registered
                if backend not in order and _is_available(snapshot, backend)
            ),
            key=lambda backend: -snapshot[backend].remaining,
        )
        if outside:
            primary, *fallbacks = outside
            return Plan(
                primary=primary,
                fallbacks=tuple(fallbacks),
                reason=f"Fallback: {primary.value} is available (preferred backends exhausted)",
            )
        default = self.policy.default_backend
        logger.warning("No backend has quota; falling back to %s", default.value)
        return Plan(
            primary=default,
            fallbacks=(),
            reason=f"No backends have quota - using {default.value} as fallback",
            quota_exhausted=True,
        )


def _is_available(snapshot: QuotaSnapshot, backend: BackendType) -> bool:
    status = snapshot.get(backend)
    return status is not None and status.available
