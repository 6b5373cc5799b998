from __future__ import annotations

import allure
import pytest

from agent_dispatch.orchestrator.classifier import (
    classify,
    complexity_for,
    detect_category,
    is_security_sensitive,
)
from agent_dispatch.orchestrator.models import (
    Classification,
    ClassificationHints,
    Complexity,
    TaskCategory,
)

pytestmark = [
    allure.epic("Dispatch"),
    allure.feature("Classification"),
]


def test_bug_fix_description_is_medium_with_two_keyword_hits() -> None:
    classification = classify("fix bug in parser.ts null check")

    assert classification.category is TaskCategory.BUG_FIX
    assert classification.complexity is Complexity.MEDIUM
    assert classification.files_affected == 2
    assert classification.estimated_lines == 50
    assert classification.security_critical is False
    assert classification.confidence == pytest.approx(0.7)


def test_security_keywords_force_complex() -> None:
    classification = classify("rotate JWT signing secret")

    assert classification.category is TaskCategory.SECURITY
    assert classification.complexity is Complexity.COMPLEX
    assert classification.security_critical is True


@pytest.mark.parametrize(
    "description",
    [
        "Update the password reset email copy",
        "store the api key in the vault",
        "check CSRF protection on the form",
        "sanitize input to stop SQL injection",
    ],
)
def test_security_sensitive_text_marks_task_critical(description: str) -> None:
    assert classify(description).security_critical is True


def test_plain_key_word_is_not_security_sensitive() -> None:
    assert is_security_sensitive("add a sort key to the table") is False


def test_unmatched_description_degrades_to_unknown() -> None:
    classification = classify("make it nicer")

    assert classification.category is TaskCategory.UNKNOWN
    assert classification.complexity is Complexity.MEDIUM
    assert classification.confidence == pytest.approx(0.5)


def test_empty_description_does_not_raise() -> None:
    classification = classify("")

    assert classification.category is TaskCategory.UNKNOWN
    assert 0.0 <= classification.confidence <= 1.0


@pytest.mark.parametrize(
    ("category", "files", "lines", "expected"),
    [
        (TaskCategory.DOCUMENTATION, 2, 100, Complexity.SIMPLE),
        (TaskCategory.DOCUMENTATION, 3, 100, Complexity.MEDIUM),
        (TaskCategory.DOCUMENTATION, 3, 201, Complexity.COMPLEX),
        (TaskCategory.BUG_FIX, 1, 50, Complexity.SIMPLE),
        (TaskCategory.BUG_FIX, 1, 51, Complexity.MEDIUM),
        (TaskCategory.BUG_FIX, 3, 150, Complexity.MEDIUM),
        (TaskCategory.BUG_FIX, 4, 10, Complexity.COMPLEX),
        (TaskCategory.REFACTORING, 2, 100, Complexity.MEDIUM),
        (TaskCategory.REFACTORING, 2, 101, Complexity.COMPLEX),
        (TaskCategory.API_IMPLEMENTATION, 1, 10, Complexity.MEDIUM),
        (TaskCategory.API_IMPLEMENTATION, 4, 10, Complexity.COMPLEX),
        (TaskCategory.RESEARCH, 50, 5000, Complexity.SIMPLE),
        (TaskCategory.ARCHITECTURE, 1, 1, Complexity.COMPLEX),
        (TaskCategory.ALGORITHM, 1, 1, Complexity.COMPLEX),
    ],
)
def test_complexity_band_boundaries(
    category: TaskCategory,
    files: int,
    lines: int,
    expected: Complexity,
) -> None:
    assert complexity_for(category, files, lines) is expected


def test_category_ties_break_by_priority() -> None:
    category, hits = detect_category("refactor after the crash")

    assert hits == 1
    assert category is TaskCategory.REFACTORING


def test_hints_override_detected_fields_and_raise_confidence() -> None:
    classification = classify(
        "make it nicer",
        ClassificationHints(
            category=TaskCategory.DOCUMENTATION,
            files_affected=1,
            estimated_lines=20,
        ),
    )

    assert classification.category is TaskCategory.DOCUMENTATION
    assert classification.files_affected == 1
    assert classification.estimated_lines == 20
    assert classification.complexity is Complexity.SIMPLE
    assert classification.confidence == pytest.approx(1.0)


def test_files_hint_counts_listed_files() -> None:
    classification = classify(
        "update docs",
        ClassificationHints(files=("a.md", "b.md", "c.md")),
    )

    assert classification.files_affected == 3


def test_complexity_hint_is_ignored_for_security_tasks() -> None:
    classification = classify(
        "encrypt stored tokens",
        ClassificationHints(complexity=Complexity.SIMPLE),
    )

    assert classification.security_critical is True
    assert classification.complexity is Complexity.COMPLEX


def test_security_hint_false_keeps_keyword_evidence() -> None:
    classification = classify(
        "rotate the ssh key on build hosts",
        ClassificationHints(security_critical=False),
    )

    assert classification.security_critical is True


def test_security_hint_marks_innocent_text_critical() -> None:
    classification = classify("update docs", ClassificationHints(security_critical=True))

    assert classification.security_critical is True
    assert classification.complexity is Complexity.COMPLEX


def test_classification_rejects_out_of_range_values() -> None:
    with pytest.raises(ValueError, match="Confidence"):
        Classification(
            complexity=Complexity.SIMPLE,
            category=TaskCategory.UNKNOWN,
            files_affected=0,
            estimated_lines=0,
            security_critical=False,
            confidence=1.5,
        )
    with pytest.raises(ValueError, match="non-negative"):
        Classification(
            complexity=Complexity.SIMPLE,
            category=TaskCategory.UNKNOWN,
            files_affected=-1,
            estimated_lines=0,
            security_critical=False,
            confidence=0.5,
        )
