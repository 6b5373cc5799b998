from __future__ import annotations

import allure

from agent_dispatch.orchestrator.failure_classifier import classify_backend_failure
from agent_dispatch.orchestrator.models import FailureClass

pytestmark = [
    allure.epic("Dispatch"),
    allure.feature("Backend Failures"),
]


def test_classifier_prefers_billing_over_transient_exit_code() -> None:
    classified = classify_backend_failure(
        exit_code=75,
        stdout="",
        stderr="Quota exceeded for this project",
    )
    assert classified.failure_class == FailureClass.BILLING_OR_QUOTA
    assert classified.matched_rule == "billing_or_quota"
    assert classified.matched_pattern == "quota"


def test_classifier_maps_auth_failures() -> None:
    classified = classify_backend_failure(
        exit_code=1,
        stdout="",
        stderr="Error: Invalid API key provided",
    )
    assert classified.failure_class == FailureClass.ACCESS_OR_AUTH


def test_classifier_maps_model_unavailable() -> None:
    classified = classify_backend_failure(
        exit_code=1,
        stdout="",
        stderr="Invalid model requested",
    )
    assert classified.failure_class == FailureClass.MODEL_NOT_AVAILABLE
    assert classified.matched_rule == "model_not_available"


def test_classifier_maps_rate_limit_to_backend_transient() -> None:
    classified = classify_backend_failure(
        exit_code=1,
        stdout="",
        stderr="HTTP 429 too many requests, please retry",
    )
    assert classified.failure_class == FailureClass.BACKEND_TRANSIENT
    assert classified.matched_rule == "rate_limit"


def test_classifier_uses_transient_exit_codes() -> None:
    classified = classify_backend_failure(
        exit_code=137,
        stdout="",
        stderr="",
        transient_exit_codes=(137, 143),
    )
    assert classified.failure_class == FailureClass.BACKEND_TRANSIENT
    assert classified.matched_rule == "transient_exit_code"


def test_classifier_falls_back_to_non_retryable() -> None:
    classified = classify_backend_failure(
        exit_code=2,
        stdout="fatal: unsupported syntax in prompt template",
        stderr="",
    )
    assert classified.failure_class == FailureClass.BACKEND_NON_RETRYABLE
    assert classified.matched_rule == "fallback_non_retryable"
