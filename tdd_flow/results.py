"""Result objects returned by the generators and analyzers.

These are not persisted; ``to_dict`` produces the camelCase payload that the
tool handlers serialize back to the client.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from .models import format_timestamp, utc_now

TEST_STATUSES = ("passed", "failed", "skipped", "pending")
REFACTORING_TYPES = (
    "extract_method",
    "remove_duplication",
    "improve_naming",
    "simplify_conditional",
    "extract_class",
    "move_method",
)
VIOLATION_TYPES = ("no_failing_test", "premature_implementation", "skipped_refactor")


def _drop_none(data: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in data.items() if value is not None}


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class GeneratedTest:
    __test__ = False

    name: str
    description: str
    code: str
    imports: Optional[List[str]] = None
    setup: Optional[str] = None
    teardown: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none({
            "name": self.name,
            "description": self.description,
            "code": self.code,
            "imports": self.imports,
            "setup": self.setup,
            "teardown": self.teardown,
        })


@dataclass(slots=True)
class GeneratedTests:
    __test__ = False

    language: str
    framework: str
    test_type: str
    tests: List[GeneratedTest]
    requirements: str
    estimated_coverage: Optional[float] = None
    generated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "language": self.language,
            "framework": self.framework,
            "testType": self.test_type,
            "tests": [test.to_dict() for test in self.tests],
            "metadata": _drop_none({
                "generatedAt": format_timestamp(self.generated_at),
                "requirements": self.requirements,
                "estimatedCoverage": self.estimated_coverage,
            }),
        }


@dataclass(slots=True)
class GeneratedImplementation:
    language: str
    code: str
    based_on_tests: List[str]
    implementation_style: str
    imports: List[str] = field(default_factory=list)
    exports: List[str] = field(default_factory=list)
    dependencies: List[str] = field(default_factory=list)
    generated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "language": self.language,
            "code": self.code,
            "imports": list(self.imports),
            "exports": list(self.exports),
            "dependencies": list(self.dependencies),
            "metadata": {
                "generatedAt": format_timestamp(self.generated_at),
                "basedOnTests": list(self.based_on_tests),
                "implementationStyle": self.implementation_style,
            },
        }


# ---------------------------------------------------------------------------
# Test runs
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class TestResult:
    __test__ = False

    name: str
    status: str
    duration: float = 0.0
    error: Optional[str] = None
    output: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none({
            "name": self.name,
            "status": self.status,
            "duration": self.duration,
            "error": self.error,
            "output": self.output,
        })


@dataclass(slots=True)
class RunSummary:
    total: int = 0
    passed: int = 0
    failed: int = 0
    skipped: int = 0
    duration: float = 0.0
    coverage: Optional[float] = None

    @classmethod
    def of(cls, tests: List[TestResult], duration: Optional[float] = None) -> "RunSummary":
        return cls(
            total=len(tests),
            passed=sum(1 for t in tests if t.status == "passed"),
            failed=sum(1 for t in tests if t.status == "failed"),
            skipped=sum(1 for t in tests if t.status in ("skipped", "pending")),
            duration=duration if duration is not None else sum(t.duration for t in tests),
        )

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none({
            "total": self.total,
            "passed": self.passed,
            "failed": self.failed,
            "skipped": self.skipped,
            "duration": self.duration,
            "coverage": self.coverage,
        })


@dataclass(slots=True)
class TestSuiteResult:
    __test__ = False

    name: str
    tests: List[TestResult]
    summary: RunSummary

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "tests": [test.to_dict() for test in self.tests],
            "summary": self.summary.to_dict(),
        }


@dataclass(slots=True)
class TestResults:
    __test__ = False

    framework: str
    suites: List[TestSuiteResult]
    overall: RunSummary
    timestamp: datetime = field(default_factory=utc_now)

    @classmethod
    def from_suites(cls, framework: str, suites: List[TestSuiteResult]) -> "TestResults":
        overall = RunSummary(
            total=sum(s.summary.total for s in suites),
            passed=sum(s.summary.passed for s in suites),
            failed=sum(s.summary.failed for s in suites),
            skipped=sum(s.summary.skipped for s in suites),
            duration=sum(s.summary.duration for s in suites),
        )
        return cls(framework=framework, suites=suites, overall=overall)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "framework": self.framework,
            "suites": [suite.to_dict() for suite in self.suites],
            "overall": self.overall.to_dict(),
            "timestamp": format_timestamp(self.timestamp),
        }


# ---------------------------------------------------------------------------
# Coverage
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class CoverageMetric:
    total: int = 0
    covered: int = 0
    percentage: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {"total": self.total, "covered": self.covered, "percentage": self.percentage}


@dataclass(slots=True)
class CoverageFile:
    path: str
    lines: CoverageMetric
    functions: CoverageMetric
    branches: CoverageMetric

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "lines": self.lines.to_dict(),
            "functions": self.functions.to_dict(),
            "branches": self.branches.to_dict(),
        }


@dataclass(slots=True)
class CoverageReport:
    files: List[CoverageFile]
    lines: float
    functions: float
    branches: float
    statements: float
    threshold: Optional[Dict[str, float]] = None
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none({
            "files": [f.to_dict() for f in self.files],
            "overall": {
                "lines": self.lines,
                "functions": self.functions,
                "branches": self.branches,
                "statements": self.statements,
            },
            "threshold": dict(self.threshold) if self.threshold else None,
            "timestamp": format_timestamp(self.timestamp),
        })


# ---------------------------------------------------------------------------
# Refactoring and cycle validation
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class Refactoring:
    type: str
    description: str
    before: str
    after: str
    rationale: str
    impact: str = "low"  # 'low', 'medium', 'high'

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "description": self.description,
            "before": self.before,
            "after": self.after,
            "rationale": self.rationale,
            "impact": self.impact,
        }


@dataclass(slots=True)
class RefactoredCode:
    original_code: str
    refactored_code: str
    refactorings: List[Refactoring]
    preserves_tests: bool
    refactoring_goals: List[str]
    refactored_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "originalCode": self.original_code,
            "refactoredCode": self.refactored_code,
            "refactorings": [r.to_dict() for r in self.refactorings],
            "preservesTests": self.preserves_tests,
            "metadata": {
                "refactoredAt": format_timestamp(self.refactored_at),
                "refactoringGoals": list(self.refactoring_goals),
            },
        }


@dataclass(slots=True)
class CycleViolation:
    type: str
    description: str
    suggestion: str

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "description": self.description, "suggestion": self.suggestion}


@dataclass(slots=True)
class TDDCycleValidation:
    is_valid: bool
    current_state: str
    violations: List[CycleViolation]
    suggestions: List[str]
    score: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "isValid": self.is_valid,
            "currentState": self.current_state,
            "violations": [v.to_dict() for v in self.violations],
            "suggestions": list(self.suggestions),
            "score": self.score,
        }
