"""Deterministic classification of backend-reported failures."""

from __future__ import annotations

from dataclasses import dataclass

from agent_dispatch.orchestrator.models import FailureClass

_RULES: tuple[tuple[str, FailureClass, tuple[str, ...]], ...] = (
    (
        "billing_or_quota",
        FailureClass.BILLING_OR_QUOTA,
        (
            "quota",
            "resource_exhausted",
            "insufficient",
            "billing",
            "payment",
            "credits",
            "usage limit",
            "exceeded",
        ),
    ),
    (
        "access_or_auth",
        FailureClass.ACCESS_OR_AUTH,
        (
            "unauthorized",
            "forbidden",
            "permission denied",
            "invalid api key",
            "authentication",
            "not logged in",
        ),
    ),
    (
        "model_not_available",
        FailureClass.MODEL_NOT_AVAILABLE,
        (
            "model not found",
            "unknown model",
            "unsupported model",
            "invalid model",
            "model is not available",
            "not available in your region",
        ),
    ),
    (
        "rate_limit",
        FailureClass.BACKEND_TRANSIENT,
        ("too many requests", "rate limit", "429", "please retry", "try again later"),
    ),
    (
        "transient",
        FailureClass.BACKEND_TRANSIENT,
        (
            "temporarily unavailable",
            "temporary failure",
            "connection reset",
            "network error",
            "could not resolve host",
            "overloaded",
        ),
    ),
)


@dataclass(frozen=True, slots=True)
class BackendFailureClassification:
    """Failure class plus the rule and pattern that produced it."""

    failure_class: FailureClass
    matched_rule: str
    matched_pattern: str | None


def classify_backend_failure(
    *,
    exit_code: int | None,
    stdout: str,
    stderr: str,
    transient_exit_codes: tuple[int, ...] = (75,),
) -> BackendFailureClassification:
    """Classify a non-timeout backend failure; unmatched failures are non-retryable."""

    haystack = f"{stderr}\n{stdout}".lower()
    for rule_name, failure_class, patterns in _RULES:
        pattern = _first_match(haystack, patterns)
        if pattern is not None:
            return BackendFailureClassification(failure_class, rule_name, pattern)

    if exit_code is not None and exit_code in transient_exit_codes:
        return BackendFailureClassification(
            FailureClass.BACKEND_TRANSIENT,
            "transient_exit_code",
            None,
        )
    return BackendFailureClassification(
        FailureClass.BACKEND_NON_RETRYABLE,
        "fallback_non_retryable",
        None,
    )


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in haystack:
            return pattern
    return None
