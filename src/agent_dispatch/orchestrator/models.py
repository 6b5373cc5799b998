"""Domain models for task classification, routing and execution."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Any
from uuid import uuid4

from agent_dispatch.storage.common import utc_now


class BackendType(str, Enum):
    """Registered CLI agent backends."""

    CLAUDE = "claude"
    CODEX = "codex"
    GEMINI = "gemini"


class Complexity(str, Enum):
    """Coarse effort bucket used by routing."""

    SIMPLE = "simple"
    MEDIUM = "medium"
    COMPLEX = "complex"


class TaskCategory(str, Enum):
    """Closed set of task categories recognised by the classifier."""

    DOCUMENTATION = "documentation"
    TEST_GENERATION = "test-generation"
    BOILERPLATE = "boilerplate"
    BUG_FIX = "bug-fix"
    API_IMPLEMENTATION = "api-implementation"
    REFACTORING = "refactoring"
    ARCHITECTURE = "architecture"
    SECURITY = "security"
    ALGORITHM = "algorithm"
    RESEARCH = "research"
    UNKNOWN = "unknown"


class OutputFormat(str, Enum):
    """Expected shape of agent output."""

    JSON = "json"
    TEXT = "text"
    MARKDOWN = "markdown"


class AttemptOutcome(str, Enum):
    """Terminal state of one execution attempt."""

    SUCCEEDED = "succeeded"
    BACKEND_FAILED = "backend_failed"
    MALFORMED_OUTPUT = "malformed_output"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"
    SPAWN_FAILED = "spawn_failed"
    QUOTA_EXHAUSTED = "quota_exhausted"
    POLICY_FORCED_EXHAUSTED = "policy_forced_exhausted"


class FailureClass(str, Enum):
    """Normalized reason for a backend-reported failure."""

    BACKEND_TRANSIENT = "backend_transient"
    BACKEND_NON_RETRYABLE = "backend_non_retryable"
    BILLING_OR_QUOTA = "billing_or_quota"
    ACCESS_OR_AUTH = "access_or_auth"
    MODEL_NOT_AVAILABLE = "model_not_available"


class QuotaUnit(str, Enum):
    """Unit in which a backend's quota is counted."""

    REQUESTS = "requests"
    TOKENS = "tokens"


@dataclass(frozen=True, slots=True)
class Classification:
    """Immutable classification of one task description."""

    complexity: Complexity
    category: TaskCategory
    files_affected: int
    estimated_lines: int
    security_critical: bool
    confidence: float

    def __post_init__(self) -> None:
        if self.files_affected < 0 or self.estimated_lines < 0:
            raise ValueError("Classification footprint must be non-negative.")
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"Confidence out of range: {self.confidence}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "complexity": self.complexity.value,
            "category": self.category.value,
            "files_affected": self.files_affected,
            "estimated_lines": self.estimated_lines,
            "security_critical": self.security_critical,
            "confidence": round(self.confidence, 3),
        }


@dataclass(frozen=True, slots=True)
class ClassificationHints:
    """Caller-provided overrides for classification fields."""

    category: TaskCategory | None = None
    complexity: Complexity | None = None
    files_affected: int | None = None
    estimated_lines: int | None = None
    security_critical: bool = False
    files: tuple[str, ...] = ()


@dataclass(slots=True)
class Credential:
    """One quota-bearing identity for a backend."""

    credential_id: str
    backend: BackendType
    name: str
    priority: int
    daily_limit: int
    used_today: int
    reset_at: datetime
    reset_period: timedelta
    active: bool = True
    secret: str | None = field(default=None, repr=False)

    @property
    def remaining(self) -> int:
        return max(0, self.daily_limit - self.used_today)


@dataclass(frozen=True, slots=True)
class Reservation:
    """Handle for one provisional quota debit."""

    reservation_id: str
    credential_id: str
    backend: BackendType
    amount: int


@dataclass(frozen=True, slots=True)
class CredentialStatus:
    """Read-only view of one credential's quota."""

    credential_id: str
    name: str
    priority: int
    active: bool
    used_today: int
    daily_limit: int
    reset_at: datetime

    @property
    def remaining(self) -> int:
        return max(0, self.daily_limit - self.used_today)


@dataclass(frozen=True, slots=True)
class BackendQuotaStatus:
    """Read-only aggregate of a backend's quota used by the router."""

    backend: BackendType
    unit: QuotaUnit
    remaining: int
    daily_limit: int
    credentials: tuple[CredentialStatus, ...] = ()

    @property
    def available(self) -> bool:
        return self.remaining > 0


QuotaSnapshot = dict[BackendType, BackendQuotaStatus]


@dataclass(frozen=True, slots=True)
class ExecutionRequest:
    """Everything an adapter needs to run one attempt."""

    prompt: str
    working_dir: Path
    timeout_seconds: float
    output_format: OutputFormat = OutputFormat.TEXT
    context_files: tuple[Path, ...] = ()
    model: str | None = None
    credential: Credential | None = None
    cancel_requested: Callable[[], bool] | None = None


@dataclass(frozen=True, slots=True)
class TokenUsage:
    """Token counts reported by an agent or estimated from text length."""

    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None
    source: str = "estimate"


@dataclass(frozen=True, slots=True)
class ExecutionResult:
    """Outcome of one attempt; either a success with output or a failure with error."""

    success: bool
    backend: BackendType
    outcome: AttemptOutcome
    output: Any = None
    raw_output: str = ""
    error: str | None = None
    duration_seconds: float = 0.0
    estimated_cost_usd: float = 0.0
    quota_units: int = 0
    failure_class: FailureClass | None = None
    exit_code: int | None = None
    credential_id: str | None = None
    prompt_delivery: str | None = None
    usage: TokenUsage = field(default_factory=TokenUsage)
    timestamp: datetime = field(default_factory=utc_now)

    def __post_init__(self) -> None:
        if self.success:
            if self.outcome is not AttemptOutcome.SUCCEEDED:
                raise ValueError("Successful result must have outcome 'succeeded'.")
            if self.error is not None or self.output is None:
                raise ValueError("Successful result requires output and no error.")
        else:
            if self.outcome is AttemptOutcome.SUCCEEDED:
                raise ValueError("Failed result cannot have outcome 'succeeded'.")
            if not self.error:
                raise ValueError("Failed result requires an error message.")

    @classmethod
    def failure(
        cls,
        backend: BackendType,
        outcome: AttemptOutcome,
        error: str,
        **extra: Any,
    ) -> ExecutionResult:
        return cls(success=False, backend=backend, outcome=outcome, error=error, **extra)


@dataclass(frozen=True, slots=True)
class Plan:
    """Ordered list of backends to try for one task."""

    primary: BackendType
    fallbacks: tuple[BackendType, ...]
    reason: str
    policy_forced: bool = False
    quota_exhausted: bool = False

    def candidates(self) -> tuple[BackendType, ...]:
        return (self.primary, *self.fallbacks)

    def to_dict(self) -> dict[str, Any]:
        return {
            "primary": self.primary.value,
            "fallbacks": [backend.value for backend in self.fallbacks],
            "reason": self.reason,
            "policy_forced": self.policy_forced,
            "quota_exhausted": self.quota_exhausted,
        }


@dataclass(frozen=True, slots=True)
class LedgerEntry:
    """Append-only record of one dispatch and every attempt it made."""

    description: str
    classification: Classification
    plan: Plan
    attempts: tuple[ExecutionResult, ...]
    final_outcome: AttemptOutcome
    entry_id: str = field(default_factory=lambda: uuid4().hex)
    created_at: datetime = field(default_factory=utc_now)

    @property
    def success(self) -> bool:
        return self.final_outcome is AttemptOutcome.SUCCEEDED

    @property
    def final_backend(self) -> BackendType | None:
        if not self.attempts:
            return None
        return self.attempts[-1].backend

    @property
    def total_cost_usd(self) -> float:
        return sum(attempt.estimated_cost_usd for attempt in self.attempts)

    def to_record(self) -> LedgerRecord:
        return LedgerRecord(
            entry_id=self.entry_id,
            description=self.description,
            category=self.classification.category,
            complexity=self.classification.complexity,
            security_critical=self.classification.security_critical,
            confidence=self.classification.confidence,
            primary_backend=self.plan.primary,
            fallbacks=self.plan.fallbacks,
            reason=self.plan.reason,
            final_outcome=self.final_outcome,
            final_backend=self.final_backend,
            created_at=self.created_at,
            attempts=tuple(
                AttemptRecord(
                    attempt_no=index,
                    backend=attempt.backend,
                    outcome=attempt.outcome,
                    success=attempt.success,
                    duration_seconds=attempt.duration_seconds,
                    estimated_cost_usd=attempt.estimated_cost_usd,
                    quota_units=attempt.quota_units,
                    failure_class=attempt.failure_class,
                    exit_code=attempt.exit_code,
                    credential_id=attempt.credential_id,
                    error=attempt.error,
                )
                for index, attempt in enumerate(self.attempts, start=1)
            ),
        )


@dataclass(frozen=True, slots=True)
class AttemptRecord:
    """Flat attempt view read back from a ledger."""

    attempt_no: int
    backend: BackendType
    outcome: AttemptOutcome
    success: bool
    duration_seconds: float
    estimated_cost_usd: float
    quota_units: int
    failure_class: FailureClass | None = None
    exit_code: int | None = None
    credential_id: str | None = None
    error: str | None = None


@dataclass(frozen=True, slots=True)
class LedgerRecord:
    """Flat ledger entry view used by stats and the CLI."""

    entry_id: str
    description: str
    category: TaskCategory
    complexity: Complexity
    security_critical: bool
    confidence: float
    primary_backend: BackendType
    fallbacks: tuple[BackendType, ...]
    reason: str
    final_outcome: AttemptOutcome
    final_backend: BackendType | None
    created_at: datetime
    attempts: tuple[AttemptRecord, ...] = ()

    @property
    def success(self) -> bool:
        return self.final_outcome is AttemptOutcome.SUCCEEDED
