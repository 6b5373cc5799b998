"""Backend interface for task execution."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from agent_dispatch.orchestrator.models import (
    BackendType,
    ExecutionRequest,
    ExecutionResult,
    QuotaUnit,
    TokenUsage,
)


class RunState(str, Enum):
    """Lifecycle of one agent process."""

    PENDING = "pending"
    SPAWNED = "spawned"
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"
    SPAWN_FAILED = "spawn_failed"


@dataclass(slots=True)
class ProcessRun:
    """Captured outcome of one agent process."""

    state: RunState
    exit_code: int | None
    stdout: str
    stderr: str
    duration_seconds: float


class BackendAdapter(Protocol):
    """Protocol implemented by every backend."""

    backend: BackendType
    quota_unit: QuotaUnit

    def execute(self, request: ExecutionRequest) -> ExecutionResult:
        """Run one attempt. Failures are returned, never raised."""

    def is_available(self) -> bool:
        """Whether the backend can be invoked on this machine."""

    def estimate_cost(self, request: ExecutionRequest, usage: TokenUsage | None = None) -> float:
        """Estimated USD cost; zero for subscription backends."""

    def estimate_quota_units(self, request: ExecutionRequest) -> int:
        """Units to reserve before the attempt runs."""
