"""Keyword and footprint based task classification.

Classification is a pure function of the description and optional hints.
It never fails: a description that matches nothing degrades to category
``unknown`` with ``medium`` complexity and base confidence.
"""

from __future__ import annotations

from dataclasses import dataclass

from agent_dispatch.orchestrator.models import (
    Classification,
    ClassificationHints,
    Complexity,
    TaskCategory,
)

CATEGORY_KEYWORDS: dict[TaskCategory, tuple[str, ...]] = {
    TaskCategory.DOCUMENTATION: (
        "document",
        "readme",
        "comment",
        "jsdoc",
        "docs",
        "docstring",
        "guide",
        "tutorial",
    ),
    TaskCategory.TEST_GENERATION: (
        "test",
        "unit test",
        "integration test",
        "e2e test",
        "spec",
        "pytest",
        "jest",
        "vitest",
    ),
    TaskCategory.BOILERPLATE: (
        "scaffold",
        "template",
        "boilerplate",
        "generate",
        "create new",
        "setup",
        "init",
    ),
    TaskCategory.BUG_FIX: (
        "bug",
        "fix",
        "error",
        "issue",
        "broken",
        "not working",
        "crash",
        "debug",
    ),
    TaskCategory.API_IMPLEMENTATION: (
        "api",
        "endpoint",
        "route",
        "handler",
        "controller",
        "rest",
        "graphql",
    ),
    TaskCategory.REFACTORING: (
        "refactor",
        "restructure",
        "reorganize",
        "clean up",
        "improve",
        "optimize",
        "rename",
    ),
    TaskCategory.ARCHITECTURE: (
        "architecture",
        "design",
        "system",
        "structure",
        "framework",
        "pattern",
        "adr",
    ),
    TaskCategory.SECURITY: (
        "security",
        "auth",
        "permission",
        "encrypt",
        "token",
        "secret",
        "jwt",
        "credential",
        "password",
        "vulnerability",
    ),
    TaskCategory.ALGORITHM: (
        "algorithm",
        "sorting",
        "search",
        "optimization",
        "complexity",
        "data structure",
    ),
    TaskCategory.RESEARCH: (
        "research",
        "investigate",
        "analyze",
        "explore",
        "study",
        "learn",
        "understand",
    ),
}

SECURITY_KEYWORDS: tuple[str, ...] = (
    "auth",
    "password",
    "token",
    "secret",
    "api key",
    "private key",
    "ssh key",
    "credential",
    "encrypt",
    "decrypt",
    "permission",
    "security",
    "vulnerability",
    "injection",
    "xss",
    "csrf",
    "jwt",
)

# Earlier wins when keyword hit counts tie.
CATEGORY_PRIORITY: tuple[TaskCategory, ...] = (
    TaskCategory.SECURITY,
    TaskCategory.ARCHITECTURE,
    TaskCategory.ALGORITHM,
    TaskCategory.API_IMPLEMENTATION,
    TaskCategory.REFACTORING,
    TaskCategory.BUG_FIX,
    TaskCategory.TEST_GENERATION,
    TaskCategory.DOCUMENTATION,
    TaskCategory.BOILERPLATE,
    TaskCategory.RESEARCH,
    TaskCategory.UNKNOWN,
)


@dataclass(frozen=True, slots=True)
class ComplexityBand:
    """Upper bounds (inclusive) for one complexity step; ``None`` is unbounded."""

    max_files: int | None
    max_lines: int | None
    complexity: Complexity

    def admits(self, files: int, lines: int) -> bool:
        return (self.max_files is None or files <= self.max_files) and (
            self.max_lines is None or lines <= self.max_lines
        )


_SMALL_CHANGE_BANDS = (
    ComplexityBand(2, 100, Complexity.SIMPLE),
    ComplexityBand(3, 200, Complexity.MEDIUM),
)

# First admitting band wins; no band admits -> complex.
COMPLEXITY_BANDS: dict[TaskCategory, tuple[ComplexityBand, ...]] = {
    TaskCategory.DOCUMENTATION: _SMALL_CHANGE_BANDS,
    TaskCategory.TEST_GENERATION: _SMALL_CHANGE_BANDS,
    TaskCategory.BOILERPLATE: _SMALL_CHANGE_BANDS,
    TaskCategory.BUG_FIX: (
        ComplexityBand(1, 50, Complexity.SIMPLE),
        ComplexityBand(3, 150, Complexity.MEDIUM),
    ),
    TaskCategory.REFACTORING: (ComplexityBand(2, 100, Complexity.MEDIUM),),
    TaskCategory.API_IMPLEMENTATION: (ComplexityBand(3, 200, Complexity.MEDIUM),),
    TaskCategory.RESEARCH: (ComplexityBand(None, None, Complexity.SIMPLE),),
    TaskCategory.ARCHITECTURE: (),
    TaskCategory.ALGORITHM: (),
    TaskCategory.SECURITY: (),
    TaskCategory.UNKNOWN: (
        ComplexityBand(1, 50, Complexity.SIMPLE),
        ComplexityBand(3, 200, Complexity.MEDIUM),
    ),
}

_BASE_CONFIDENCE = 0.5


def classify(description: str, hints: ClassificationHints | None = None) -> Classification:
    """Classify a task description, letting explicit hints override each field."""

    hints = hints or ClassificationHints()
    text = description.lower()

    if hints.category is not None:
        category, keyword_hits = hints.category, 0
    else:
        category, keyword_hits = detect_category(text)

    security_critical = (
        hints.security_critical
        or category is TaskCategory.SECURITY
        or is_security_sensitive(text)
    )

    files_given = hints.files_affected is not None or bool(hints.files)
    if hints.files_affected is not None:
        files_affected = hints.files_affected
    elif hints.files:
        files_affected = len(hints.files)
    else:
        files_affected = estimate_files(text)
    estimated_lines = (
        hints.estimated_lines if hints.estimated_lines is not None else estimate_lines(text)
    )

    if security_critical:
        complexity = Complexity.COMPLEX
    elif hints.complexity is not None:
        complexity = hints.complexity
    else:
        complexity = complexity_for(category, files_affected, estimated_lines)

    confidence = _BASE_CONFIDENCE
    if hints.category is not None:
        confidence += 0.3
    if files_given:
        confidence += 0.1
    if hints.estimated_lines is not None:
        confidence += 0.1
    if keyword_hits >= 2:
        confidence += 0.2
    elif keyword_hits == 1:
        confidence += 0.1

    return Classification(
        complexity=complexity,
        category=category,
        files_affected=max(0, files_affected),
        estimated_lines=max(0, estimated_lines),
        security_critical=security_critical,
        confidence=min(1.0, confidence),
    )


def detect_category(text: str) -> tuple[TaskCategory, int]:
    """Best-scoring category for lowercased text and its keyword hit count."""

    best, best_hits = TaskCategory.UNKNOWN, 0
    for category in CATEGORY_PRIORITY:
        keywords = CATEGORY_KEYWORDS.get(category, ())
        hits = sum(1 for keyword in keywords if keyword in text)
        if hits > best_hits:
            best, best_hits = category, hits
    return best, best_hits


def is_security_sensitive(text: str) -> bool:
    return any(keyword in text for keyword in SECURITY_KEYWORDS)


def estimate_files(text: str) -> int:
    if any(marker in text for marker in ("across", "multiple", "all files")):
        return 5
    if any(marker in text for marker in ("file", "component", "module")):
        return 1
    return 2


def estimate_lines(text: str) -> int:
    if any(marker in text for marker in ("complete", "entire", "full")):
        return 300
    if any(marker in text for marker in ("add", "implement", "create")):
        return 150
    if any(marker in text for marker in ("fix", "update", "modify")):
        return 50
    return 100


def complexity_for(category: TaskCategory, files: int, lines: int) -> Complexity:
    for band in COMPLEXITY_BANDS.get(category, COMPLEXITY_BANDS[TaskCategory.UNKNOWN]):
        if band.admits(files, lines):
            return band.complexity
    return Complexity.COMPLEX
