"""Judge how closely recent work follows red-green-refactor.

Two signals are combined: the project's current state (are there tests, do
they pass, does the code look like it wants refactoring) and the wording of
recent git commit subjects.
"""

from __future__ import annotations

import fnmatch
import logging
import os
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

from .models import TDDStage
from .refactoring import detect_language, find_complex_conditionals, find_long_methods
from .results import CycleViolation, TDDCycleValidation
from .tdd_logging import log_error_with_context, log_performance

logger = logging.getLogger("tdd_flow.cycle")

DEFAULT_TIME_WINDOW = "1 hour"
QUICK_TEST_TIMEOUT = 30  # seconds
MAX_QUALITY_FILES = 10

IGNORED_DIRS = {"node_modules", "dist", "build", "target", ".git", "vendor", "__pycache__", ".venv", "venv"}
SOURCE_SUFFIXES = {".js", ".ts", ".py", ".java", ".cs", ".go", ".rs", ".php"}
TEST_FILE_PATTERNS = (
    "*.test.*",
    "*.spec.*",
    "test_*.py",
    "*_test.go",
    "*_test.rs",
    "Test*.java",
    "Test*.cs",
    "Test*.php",
    "*Test.java",
    "*Tests.cs",
    "*Test.php",
)
TEST_DIRS = {"tests", "test", "__tests__"}

TEST_KEYWORDS = ("test", "spec", "tdd", "failing test", "red")
IMPLEMENTATION_KEYWORDS = ("implement", "add", "feature", "fix", "green")
REFACTOR_KEYWORDS = ("refactor", "cleanup", "improve", "extract", "rename")

PREMATURE_IMPLEMENTATION_PENALTY = 30
NO_FAILING_TEST_PENALTY = 25
SKIPPED_REFACTOR_PENALTY = 20

STATE_SUGGESTIONS = {
    TDDStage.RED.value: [
        "Write minimal code to make the failing test pass",
        "Focus on functionality, not code quality yet",
    ],
    TDDStage.GREEN.value: [
        "Look for refactoring opportunities to improve code quality",
        "Remove duplication and improve naming",
        "Consider extracting methods or classes",
    ],
    TDDStage.REFACTOR.value: [
        "Make small, incremental improvements",
        "Run tests frequently to ensure behavior is preserved",
        "Commit refactoring changes separately",
    ],
}

# Marker file (or glob) -> quick test command; tried in order.
QUICK_TEST_COMMANDS: Sequence[Tuple[str, str]] = (
    ("package.json", "npm test -- --passWithNoTests"),
    ("pytest.ini", "pytest --tb=no -q"),
    ("pyproject.toml", "pytest --tb=no -q"),
    ("setup.cfg", "pytest --tb=no -q"),
    ("test_*.py", "pytest --tb=no -q"),
    ("go.mod", "go test ./... -v"),
    ("Cargo.toml", "cargo test"),
    ("*.csproj", "dotnet test --no-build --verbosity=quiet"),
    ("composer.json", "php vendor/bin/phpunit"),
)


@dataclass(slots=True)
class CommitPatterns:
    test_commits: int = 0
    implementation_commits: int = 0
    refactor_commits: int = 0
    implementation_before_tests: bool = False
    total: int = 0

    @property
    def lacks_test_commits(self) -> bool:
        return self.total > 0 and self.test_commits == 0

    @property
    def skipped_refactoring(self) -> bool:
        return self.refactor_commits == 0 and self.implementation_commits > 2


def commit_subject(entry: str) -> str:
    """Subject of a ``hash|subject|author|date`` log line, or the line itself."""
    parts = entry.split("|")
    return parts[1] if len(parts) >= 4 else entry


def _matches(text: str, keywords: Sequence[str]) -> bool:
    return any(keyword in text for keyword in keywords)


def analyze_commit_patterns(commits: Sequence[str]) -> CommitPatterns:
    """Classify commits, given oldest first."""
    patterns = CommitPatterns(total=len(commits))
    previous_is_test: Optional[bool] = None
    for entry in commits:
        subject = commit_subject(entry).lower()
        is_test = _matches(subject, TEST_KEYWORDS)
        is_implementation = _matches(subject, IMPLEMENTATION_KEYWORDS)
        if is_test:
            patterns.test_commits += 1
        if is_implementation:
            patterns.implementation_commits += 1
            if previous_is_test is False:
                patterns.implementation_before_tests = True
        if _matches(subject, REFACTOR_KEYWORDS):
            patterns.refactor_commits += 1
        previous_is_test = is_test
    return patterns


def score_adherence(patterns: CommitPatterns) -> Tuple[List[CycleViolation], int]:
    violations: List[CycleViolation] = []
    score = 100
    if patterns.implementation_before_tests:
        violations.append(CycleViolation(
            type="premature_implementation",
            description="Implementation code was committed before corresponding tests",
            suggestion="Always write failing tests before implementing functionality",
        ))
        score -= PREMATURE_IMPLEMENTATION_PENALTY
    if patterns.lacks_test_commits:
        violations.append(CycleViolation(
            type="no_failing_test",
            description="No test commits found in recent history",
            suggestion="Ensure you are writing tests as part of your development process",
        ))
        score -= NO_FAILING_TEST_PENALTY
    if patterns.skipped_refactoring:
        violations.append(CycleViolation(
            type="skipped_refactor",
            description="Multiple feature implementations without refactoring commits",
            suggestion="Include refactoring as a regular part of your TDD cycle",
        ))
        score -= SKIPPED_REFACTOR_PENALTY
    return violations, max(score, 0)


def suggestions_for(state: str, violations: Sequence[CycleViolation]) -> List[str]:
    suggestions = list(STATE_SUGGESTIONS.get(state, []))
    if violations:
        suggestions += [
            "Review TDD principles: Red-Green-Refactor cycle",
            "Consider using git commits to track TDD progress",
        ]
    else:
        suggestions.append("Great job following TDD! Continue with small, incremental changes")
    return suggestions


def parse_quick_test_output(output: str, command: str) -> Dict[str, int]:
    if "jest" in command or "npm test" in command or "pytest" in command:
        passed = re.search(r"(\d+) passed", output)
        failed = re.search(r"(\d+) failed", output)
        return {
            "passed": int(passed.group(1)) if passed else 0,
            "failed": int(failed.group(1)) if failed else 0,
        }
    if "go test" in command:
        return {
            "passed": len(re.findall(r"^ok\s+\S+", output, re.MULTILINE)),
            "failed": len(re.findall(r"^FAIL\s+\S+", output, re.MULTILINE)),
        }

    lines = output.split("\n")
    return {
        "passed": sum(1 for line in lines if "passed" in line or "OK" in line or "✓" in line),
        "failed": sum(1 for line in lines if "failed" in line or "FAIL" in line or "✗" in line or "ERROR" in line),
    }


def _walk(project: Path) -> Iterator[Path]:
    for root, dirs, files in os.walk(project):
        dirs[:] = [d for d in dirs if d not in IGNORED_DIRS]
        for name in files:
            yield Path(root) / name


def _is_test_file(path: Path, project: Path) -> bool:
    if any(fnmatch.fnmatch(path.name, pattern) for pattern in TEST_FILE_PATTERNS):
        return True
    return any(part in TEST_DIRS for part in path.relative_to(project).parts[:-1])


def has_test_files(project: Path) -> bool:
    return any(_is_test_file(path, project) for path in _walk(project))


def source_files(project: Path, limit: int = MAX_QUALITY_FILES) -> List[Path]:
    found = []
    for path in _walk(project):
        if path.suffix in SOURCE_SUFFIXES and not _is_test_file(path, project):
            found.append(path)
            if len(found) >= limit:
                break
    return found


def count_duplicate_lines(content: str) -> int:
    """Repeated substantial lines, grouped in threes."""
    counts: Dict[str, int] = {}
    for raw in content.split("\n"):
        line = raw.strip()
        if len(line) > 20 and not line.startswith(("//", "*", "#")):
            counts[line] = counts.get(line, 0) + 1
    return sum(c - 1 for c in counts.values() if c > 1) // 3


def count_complexity_issues(content: str) -> int:
    nested_ifs = len(re.findall(r"if\s*\([^)]*\)\s*\{[^}]*if\s*\(", content))
    long_parameter_lists = len(re.findall(r"\([^)]*,[^)]*,[^)]*,[^)]*,[^)]*\)", content))
    return nested_ifs + len(find_complex_conditionals(content)) + long_parameter_lists


class CycleValidator:
    """Classify the current TDD stage of a project and score its history."""

    def __init__(self, quick_test_timeout: float = QUICK_TEST_TIMEOUT):
        self.quick_test_timeout = quick_test_timeout

    @log_performance("validate_tdd_cycle")
    def validate_cycle(
        self,
        project_path: str | Path,
        git_history: Optional[List[str]] = None,
        time_window: str = DEFAULT_TIME_WINDOW,
    ) -> TDDCycleValidation:
        project = Path(project_path).expanduser()
        try:
            if git_history is not None:
                commits = list(git_history)
            else:
                # git log lists newest first
                commits = list(reversed(self.recent_commits(project, time_window)))
            state = self.current_state(project)
            violations, score = score_adherence(analyze_commit_patterns(commits))
        except (OSError, ValueError) as exc:
            log_error_with_context(exc, {"operation": "validate_tdd_cycle", "project": str(project)})
            raise RuntimeError(f"TDD cycle validation failed: {exc}") from exc

        return TDDCycleValidation(
            is_valid=not violations,
            current_state=state,
            violations=violations,
            suggestions=suggestions_for(state, violations),
            score=score,
        )

    def recent_commits(self, project: Path, time_window: str = DEFAULT_TIME_WINDOW) -> List[str]:
        """``hash|subject|author|date`` lines, or an empty list when git is unavailable."""
        try:
            completed = subprocess.run(
                ["git", "log", f"--since={time_window}", "--pretty=format:%h|%s|%an|%ad", "--date=iso"],
                cwd=str(project),
                capture_output=True,
                text=True,
                timeout=self.quick_test_timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            logger.debug(f"git log unavailable in {project}: {exc}")
            return []
        if completed.returncode != 0:
            logger.debug(f"git log failed in {project}: {completed.stderr.strip()}")
            return []
        return [line for line in completed.stdout.split("\n") if line.strip()]

    def current_state(self, project: Path) -> str:
        if not project.is_dir() or not has_test_files(project):
            return TDDStage.RED.value

        counts = self.run_quick_tests(project)
        if counts["failed"] > 0:
            return TDDStage.RED.value
        if counts["passed"] > 0:
            return TDDStage.REFACTOR.value if self.needs_refactoring(project) else TDDStage.GREEN.value
        return TDDStage.RED.value

    def run_quick_tests(self, project: Path) -> Dict[str, int]:
        for marker, command in QUICK_TEST_COMMANDS:
            if not any(project.glob(marker)):
                continue
            try:
                completed = subprocess.run(
                    command,
                    shell=True,
                    cwd=str(project),
                    capture_output=True,
                    text=True,
                    timeout=self.quick_test_timeout,
                )
            except (OSError, subprocess.TimeoutExpired) as exc:
                logger.debug(f"Quick test command failed ({command}): {exc}")
                continue
            if completed.returncode in (126, 127):
                continue
            return parse_quick_test_output((completed.stdout or "") + (completed.stderr or ""), command)
        return {"passed": 0, "failed": 0}

    def needs_refactoring(self, project: Path) -> bool:
        duplication = complexity = long_methods = 0
        for path in source_files(project):
            try:
                content = path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as exc:
                logger.debug(f"Skipping {path} in quality scan: {exc}")
                continue
            duplication += count_duplicate_lines(content)
            complexity += count_complexity_issues(content)
            long_methods += len(find_long_methods(content, detect_language(content)))
        return duplication > 0 or complexity > 0 or long_methods > 0
