"""Data models for TDD Flow bookkeeping.

This module contains the records persisted by the JSONL store: features,
TDD sessions, test methods, file associations and per-project settings.
Records keep snake_case attributes in Python and camelCase keys on disk.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class FeatureStatus(str, Enum):
    PLANNING = "planning"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ON_HOLD = "on_hold"
    CANCELLED = "cancelled"


class FeaturePriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class TDDStage(str, Enum):
    RED = "red"  # write a failing test
    GREEN = "green"  # make it pass with the least code
    REFACTOR = "refactor"  # clean up with tests green


FEATURE_STATUSES = tuple(s.value for s in FeatureStatus)
FEATURE_PRIORITIES = tuple(p.value for p in FeaturePriority)
TDD_STAGES = tuple(s.value for s in TDDStage)
TEST_METHOD_STATUSES = ("passed", "failed", "skipped", "pending")
TEST_TYPES = ("unit", "integration", "e2e", "performance")
FILE_TYPES = ("test", "implementation", "config", "documentation")

# Keys restored to datetime when records are read back from disk.
DATE_FIELDS = frozenset({
    "createdAt",
    "updatedAt",
    "startedAt",
    "completedAt",
    "lastExecutedAt",
    "lastModified",
})


# ---------------------------------------------------------------------------
# Timestamp helpers
# ---------------------------------------------------------------------------


def utc_now() -> datetime:
    """Current UTC time truncated to milliseconds, the precision stored on disk."""
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=(now.microsecond // 1000) * 1000)


def format_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def restore_dates(data: Any) -> Any:
    """Recursively convert known timestamp keys back into datetimes."""
    if isinstance(data, list):
        return [restore_dates(item) for item in data]
    if isinstance(data, dict):
        restored: Dict[str, Any] = {}
        for key, value in data.items():
            if key in DATE_FIELDS and isinstance(value, (str, int, float)):
                try:
                    restored[key] = parse_timestamp(value)
                except ValueError:
                    restored[key] = value
            else:
                restored[key] = restore_dates(value)
        return restored
    return data


def _opt_timestamp(value: Optional[datetime]) -> Optional[str]:
    return format_timestamp(value) if value is not None else None


def _opt_parse(value: Any) -> Optional[datetime]:
    return parse_timestamp(value) if value is not None else None


def _drop_none(data: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in data.items() if value is not None}


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class ProgressInfo:
    """Snapshot of how far a feature's tests and implementation have got."""

    tests_written: int = 0
    tests_pass: int = 0
    implementation_files: List[str] = field(default_factory=list)
    coverage_percentage: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none({
            "testsWritten": self.tests_written,
            "testsPass": self.tests_pass,
            "implementationFiles": list(self.implementation_files),
            "coveragePercentage": self.coverage_percentage,
        })

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProgressInfo":
        return cls(
            tests_written=data.get("testsWritten", 0),
            tests_pass=data.get("testsPass", 0),
            implementation_files=list(data.get("implementationFiles", [])),
            coverage_percentage=data.get("coveragePercentage"),
        )

    def validate(self) -> List[str]:
        issues = []
        if not _is_number(self.tests_written) or self.tests_written < 0:
            issues.append("progress.testsWritten must be a number >= 0")
        if not _is_number(self.tests_pass) or self.tests_pass < 0:
            issues.append("progress.testsPass must be a number >= 0")
        if self.coverage_percentage is not None and (
            not _is_number(self.coverage_percentage) or not 0 <= self.coverage_percentage <= 100
        ):
            issues.append("progress.coveragePercentage must be between 0 and 100")
        return issues


@dataclass(slots=True)
class Feature:
    """A unit of product work tracked through the TDD cycle."""

    id: str
    project_id: str
    name: str
    description: str
    status: str = FeatureStatus.PLANNING.value
    priority: str = FeaturePriority.MEDIUM.value
    acceptance_criteria: List[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    progress: Optional[ProgressInfo] = None
    tags: Optional[List[str]] = None
    estimated_hours: Optional[float] = None
    actual_hours: Optional[float] = None
    assignee: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none({
            "id": self.id,
            "projectId": self.project_id,
            "name": self.name,
            "description": self.description,
            "status": self.status,
            "priority": self.priority,
            "acceptanceCriteria": list(self.acceptance_criteria),
            "createdAt": format_timestamp(self.created_at),
            "updatedAt": format_timestamp(self.updated_at),
            "progress": self.progress.to_dict() if self.progress else None,
            "tags": list(self.tags) if self.tags is not None else None,
            "estimatedHours": self.estimated_hours,
            "actualHours": self.actual_hours,
            "assignee": self.assignee,
        })

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Feature":
        progress = data.get("progress")
        return cls(
            id=data["id"],
            project_id=data["projectId"],
            name=data["name"],
            description=data.get("description", ""),
            status=data.get("status", FeatureStatus.PLANNING.value),
            priority=data.get("priority", FeaturePriority.MEDIUM.value),
            acceptance_criteria=list(data.get("acceptanceCriteria", [])),
            created_at=parse_timestamp(data["createdAt"]),
            updated_at=parse_timestamp(data["updatedAt"]),
            progress=ProgressInfo.from_dict(progress) if progress else None,
            tags=list(data["tags"]) if data.get("tags") is not None else None,
            estimated_hours=data.get("estimatedHours"),
            actual_hours=data.get("actualHours"),
            assignee=data.get("assignee"),
        )

    def validate(self) -> List[str]:
        issues = []
        if not self.id:
            issues.append("id is required")
        if not self.project_id:
            issues.append("projectId is required")
        if not self.name:
            issues.append("name must not be empty")
        if self.status not in FEATURE_STATUSES:
            issues.append(f"status must be one of {', '.join(FEATURE_STATUSES)}")
        if self.priority not in FEATURE_PRIORITIES:
            issues.append(f"priority must be one of {', '.join(FEATURE_PRIORITIES)}")
        if self.estimated_hours is not None and (not _is_number(self.estimated_hours) or self.estimated_hours <= 0):
            issues.append("estimatedHours must be positive")
        if self.actual_hours is not None and (not _is_number(self.actual_hours) or self.actual_hours <= 0):
            issues.append("actualHours must be positive")
        if self.progress is not None:
            issues.extend(self.progress.validate())
        return issues


@dataclass(slots=True)
class TDDSession:
    """One developer's pass through red/green/refactor on a feature."""

    id: str
    feature_id: str
    project_id: str
    developer: str
    stage: str = TDDStage.RED.value
    started_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    completed_at: Optional[datetime] = None
    notes: Optional[str] = None
    cycle_count: int = 0
    test_files: Optional[List[str]] = None
    implementation_files: Optional[List[str]] = None

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none({
            "id": self.id,
            "featureId": self.feature_id,
            "projectId": self.project_id,
            "developer": self.developer,
            "stage": self.stage,
            "startedAt": format_timestamp(self.started_at),
            "updatedAt": format_timestamp(self.updated_at),
            "completedAt": _opt_timestamp(self.completed_at),
            "notes": self.notes,
            "cycleCount": self.cycle_count,
            "testFiles": list(self.test_files) if self.test_files is not None else None,
            "implementationFiles": (
                list(self.implementation_files) if self.implementation_files is not None else None
            ),
        })

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TDDSession":
        return cls(
            id=data["id"],
            feature_id=data["featureId"],
            project_id=data["projectId"],
            developer=data.get("developer", "unknown"),
            stage=data.get("stage", TDDStage.RED.value),
            started_at=parse_timestamp(data["startedAt"]),
            updated_at=parse_timestamp(data["updatedAt"]),
            completed_at=_opt_parse(data.get("completedAt")),
            notes=data.get("notes"),
            cycle_count=data.get("cycleCount", 0),
            test_files=data.get("testFiles"),
            implementation_files=data.get("implementationFiles"),
        )

    def validate(self) -> List[str]:
        issues = []
        if not self.id:
            issues.append("id is required")
        if not self.feature_id:
            issues.append("featureId is required")
        if not self.project_id:
            issues.append("projectId is required")
        if self.stage not in TDD_STAGES:
            issues.append(f"stage must be one of {', '.join(TDD_STAGES)}")
        if not isinstance(self.cycle_count, int) or self.cycle_count < 0:
            issues.append("cycleCount must be an integer >= 0")
        return issues


@dataclass(slots=True)
class TestExecutionResult:
    """Outcome of the latest run of a registered test method."""

    __test__ = False

    duration: float
    passed: bool
    output: Optional[str] = None
    error: Optional[str] = None
    coverage: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none({
            "duration": self.duration,
            "passed": self.passed,
            "output": self.output,
            "error": self.error,
            "coverage": self.coverage,
        })

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TestExecutionResult":
        if "duration" not in data or "passed" not in data:
            raise ValueError("Test execution result requires 'duration' and 'passed'")
        return cls(
            duration=data["duration"],
            passed=data["passed"],
            output=data.get("output"),
            error=data.get("error"),
            coverage=data.get("coverage"),
        )

    def validate(self) -> List[str]:
        issues = []
        if not _is_number(self.duration) or self.duration < 0:
            issues.append("duration must be a number >= 0")
        if not isinstance(self.passed, bool):
            issues.append("passed must be a boolean")
        if self.coverage is not None and (not _is_number(self.coverage) or not 0 <= self.coverage <= 100):
            issues.append("coverage must be between 0 and 100")
        return issues


@dataclass(slots=True)
class TestMethod:
    """A single test tracked at method granularity."""

    __test__ = False

    id: str
    feature_id: str
    project_id: str
    name: str
    file_path: str
    framework: str
    status: str = "pending"  # 'passed', 'failed', 'skipped', 'pending'
    created_at: datetime = field(default_factory=utc_now)
    last_executed_at: Optional[datetime] = None
    execution_results: Optional[TestExecutionResult] = None
    test_type: Optional[str] = None  # 'unit', 'integration', 'e2e', 'performance'
    dependencies: Optional[List[str]] = None

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none({
            "id": self.id,
            "featureId": self.feature_id,
            "projectId": self.project_id,
            "name": self.name,
            "filePath": self.file_path,
            "status": self.status,
            "framework": self.framework,
            "createdAt": format_timestamp(self.created_at),
            "lastExecutedAt": _opt_timestamp(self.last_executed_at),
            "executionResults": self.execution_results.to_dict() if self.execution_results else None,
            "testType": self.test_type,
            "dependencies": list(self.dependencies) if self.dependencies is not None else None,
        })

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TestMethod":
        results = data.get("executionResults")
        return cls(
            id=data["id"],
            feature_id=data["featureId"],
            project_id=data["projectId"],
            name=data["name"],
            file_path=data["filePath"],
            framework=data["framework"],
            status=data.get("status", "pending"),
            created_at=parse_timestamp(data["createdAt"]),
            last_executed_at=_opt_parse(data.get("lastExecutedAt")),
            execution_results=TestExecutionResult.from_dict(results) if results else None,
            test_type=data.get("testType"),
            dependencies=data.get("dependencies"),
        )

    def validate(self) -> List[str]:
        issues = []
        if not self.id:
            issues.append("id is required")
        if not self.feature_id:
            issues.append("featureId is required")
        if not self.name:
            issues.append("name must not be empty")
        if not self.file_path:
            issues.append("filePath is required")
        if self.status not in TEST_METHOD_STATUSES:
            issues.append(f"status must be one of {', '.join(TEST_METHOD_STATUSES)}")
        if self.test_type is not None and self.test_type not in TEST_TYPES:
            issues.append(f"testType must be one of {', '.join(TEST_TYPES)}")
        if self.execution_results is not None:
            issues.extend(self.execution_results.validate())
        return issues


@dataclass(slots=True)
class FileAssociation:
    """Link between a feature and a file in the project tree."""

    id: str
    feature_id: str
    project_id: str
    file_path: str
    file_type: str  # 'test', 'implementation', 'config', 'documentation'
    created_at: datetime = field(default_factory=utc_now)
    last_modified: datetime = field(default_factory=utc_now)
    size: int = 0
    line_count: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none({
            "id": self.id,
            "featureId": self.feature_id,
            "projectId": self.project_id,
            "filePath": self.file_path,
            "fileType": self.file_type,
            "createdAt": format_timestamp(self.created_at),
            "lastModified": format_timestamp(self.last_modified),
            "size": self.size,
            "lineCount": self.line_count,
        })

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FileAssociation":
        return cls(
            id=data["id"],
            feature_id=data["featureId"],
            project_id=data["projectId"],
            file_path=data["filePath"],
            file_type=data["fileType"],
            created_at=parse_timestamp(data["createdAt"]),
            last_modified=parse_timestamp(data["lastModified"]),
            size=data.get("size", 0),
            line_count=data.get("lineCount"),
        )

    def validate(self) -> List[str]:
        issues = []
        if not self.id:
            issues.append("id is required")
        if not self.feature_id:
            issues.append("featureId is required")
        if not self.file_path:
            issues.append("filePath is required")
        if self.file_type not in FILE_TYPES:
            issues.append(f"fileType must be one of {', '.join(FILE_TYPES)}")
        if not isinstance(self.size, int) or self.size < 0:
            issues.append("size must be an integer >= 0")
        if self.line_count is not None and (not isinstance(self.line_count, int) or self.line_count < 0):
            issues.append("lineCount must be an integer >= 0")
        return issues


@dataclass(slots=True)
class ProjectConfig:
    """Per-project defaults for feature and test bookkeeping."""

    project_id: str
    local_path: str
    default_priority: str = FeaturePriority.MEDIUM.value
    default_developer: str = "unknown"
    test_framework: str = "jest"
    test_timeout: int = 300_000
    auto_register_tests: bool = False
    coverage_threshold: float = 80.0
    exclude_patterns: Optional[List[str]] = None
    include_patterns: Optional[List[str]] = None

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none({
            "projectId": self.project_id,
            "localPath": self.local_path,
            "defaultPriority": self.default_priority,
            "defaultDeveloper": self.default_developer,
            "testFramework": self.test_framework,
            "testTimeout": self.test_timeout,
            "autoRegisterTests": self.auto_register_tests,
            "coverageThreshold": self.coverage_threshold,
            "excludePatterns": self.exclude_patterns,
            "includePatterns": self.include_patterns,
        })

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProjectConfig":
        return cls(
            project_id=data["projectId"],
            local_path=data["localPath"],
            default_priority=data.get("defaultPriority", FeaturePriority.MEDIUM.value),
            default_developer=data.get("defaultDeveloper", "unknown"),
            test_framework=data.get("testFramework", "jest"),
            test_timeout=data.get("testTimeout", 300_000),
            auto_register_tests=data.get("autoRegisterTests", False),
            coverage_threshold=data.get("coverageThreshold", 80.0),
            exclude_patterns=data.get("excludePatterns"),
            include_patterns=data.get("includePatterns"),
        )

    def validate(self) -> List[str]:
        issues = []
        if not self.project_id:
            issues.append("projectId is required")
        if self.default_priority not in FEATURE_PRIORITIES:
            issues.append(f"defaultPriority must be one of {', '.join(FEATURE_PRIORITIES)}")
        if not _is_number(self.test_timeout) or self.test_timeout <= 0:
            issues.append("testTimeout must be positive")
        if not _is_number(self.coverage_threshold) or not 0 <= self.coverage_threshold <= 100:
            issues.append("coverageThreshold must be between 0 and 100")
        return issues
