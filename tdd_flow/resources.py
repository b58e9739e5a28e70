"""MCP resources: project tests, implementation files, reports and TDD guides."""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Pattern

logger = logging.getLogger("tdd_flow.resources")

TEST_FILES = "tdd://test-files"
IMPLEMENTATION_FILES = "tdd://implementation"
TEST_REPORTS = "tdd://reports/test"
COVERAGE_REPORTS = "tdd://reports/coverage"
BEST_PRACTICES = "tdd://best-practices"

BEST_PRACTICES_DIR = Path(__file__).resolve().parent / "best_practices"

SOURCE_EXTENSIONS = ("js", "ts", "py", "java", "cs", "go", "rs", "php")
IGNORED_DIRS = {"node_modules", "dist", "build", "target", ".git", "__pycache__", ".venv", "venv"}

TEST_FILE_PATTERNS = (
    [f"**/*.test.{ext}" for ext in SOURCE_EXTENSIONS]
    + [f"**/*.spec.{ext}" for ext in SOURCE_EXTENSIONS]
    + ["**/test_*.py", "**/*_test.go", "**/*_test.rs"]
    + [f"**/Test*.{ext}" for ext in ("java", "cs", "php")]
    + [f"**/*Test.{ext}" for ext in ("java", "cs")]
    + [f"**/*Tests.{ext}" for ext in ("java", "cs")]
    + [f"tests/**/*.{ext}" for ext in SOURCE_EXTENSIONS]
    + ["__tests__/**/*.js", "__tests__/**/*.ts"]
)
TEST_REPORT_PATTERNS = ("test-results/**/*.json", "junit.xml", "test-report.json", "coverage/test-report.json")
COVERAGE_REPORT_PATTERNS = ("coverage/**/*.json", "coverage.json", "coverage-summary.json")

MIME_TYPES = {
    ".js": "application/javascript",
    ".ts": "application/typescript",
    ".py": "text/x-python",
    ".java": "text/x-java-source",
    ".cs": "text/x-csharp",
    ".go": "text/x-go",
    ".rs": "text/x-rust",
    ".php": "text/x-php",
    ".json": "application/json",
    ".xml": "application/xml",
    ".md": "text/markdown",
    ".txt": "text/plain",
}


def mime_type_for(path: Path | str) -> str:
    return MIME_TYPES.get(Path(path).suffix.lower(), "text/plain")


@dataclass(slots=True)
class ResourceInfo:
    uri: str
    name: str
    description: str
    mime_type: str

    def to_dict(self) -> Dict[str, str]:
        return {"uri": self.uri, "name": self.name, "description": self.description, "mimeType": self.mime_type}


@dataclass(slots=True)
class ResourceContent:
    uri: str
    mime_type: str
    text: str

    def to_dict(self) -> Dict[str, str]:
        return {"uri": self.uri, "mimeType": self.mime_type, "text": self.text}


def _pattern_regex(pattern: str) -> Pattern[str]:
    """Compile a glob where ``**/`` spans zero or more directories and ``*`` stays within one."""
    parts = []
    i = 0
    while i < len(pattern):
        if pattern.startswith("**/", i):
            parts.append("(?:.*/)?")
            i += 3
        elif pattern[i] == "*":
            parts.append("[^/]*")
            i += 1
        elif pattern[i] == "?":
            parts.append("[^/]")
            i += 1
        else:
            parts.append(re.escape(pattern[i]))
            i += 1
    return re.compile("".join(parts))


def project_files(root: Path) -> List[str]:
    """Relative POSIX paths of every file under root, skipping ignored directories."""
    found = []
    for current, dirs, files in os.walk(root):
        dirs[:] = [d for d in dirs if d not in IGNORED_DIRS]
        base = Path(current).relative_to(root)
        found.extend((base / name).as_posix() for name in files)
    return sorted(found, key=lambda rel: rel.split("/"))


def _glob(root: Path, patterns: Iterable[str], files: Optional[List[str]] = None) -> List[Path]:
    """Unique files matching any pattern, in first-match order."""
    if files is None:
        files = project_files(root)
    seen: Dict[str, None] = {}
    for pattern in patterns:
        regex = _pattern_regex(pattern)
        for rel in files:
            if regex.fullmatch(rel):
                seen.setdefault(rel, None)
    return [root / rel for rel in seen]


def find_test_files(root: Path, files: Optional[List[str]] = None) -> List[Path]:
    return _glob(root, TEST_FILE_PATTERNS, files)


def find_implementation_files(root: Path, files: Optional[List[str]] = None) -> List[Path]:
    if files is None:
        files = project_files(root)
    tests = set(find_test_files(root, files))
    return [
        path for path in _glob(root, [f"**/*.{ext}" for ext in SOURCE_EXTENSIONS], files)
        if path not in tests and "__tests__" not in path.relative_to(root).parts
    ]


def find_test_reports(root: Path, files: Optional[List[str]] = None) -> List[Path]:
    return _glob(root, TEST_REPORT_PATTERNS, files)


def find_coverage_reports(root: Path, files: Optional[List[str]] = None) -> List[Path]:
    return _glob(root, COVERAGE_REPORT_PATTERNS, files)


class ResourceProvider:
    """List and read ``tdd://`` resources rooted at one project directory."""

    def __init__(self, project_path: Path | str, best_practices_dir: Optional[Path] = None):
        self.project_path = Path(project_path).expanduser().resolve()
        self.best_practices_dir = best_practices_dir or BEST_PRACTICES_DIR

    def list_resources(self) -> List[ResourceInfo]:
        root = self.project_path
        resources: List[ResourceInfo] = []
        if root.is_dir():
            files = project_files(root)
            for path in find_test_files(root, files):
                resources.append(ResourceInfo(
                    uri=f"{TEST_FILES}/{path.relative_to(root).as_posix()}",
                    name=f"Test: {path.name}",
                    description="Test file containing unit/integration tests",
                    mime_type=mime_type_for(path),
                ))
            for path in find_implementation_files(root, files):
                resources.append(ResourceInfo(
                    uri=f"{IMPLEMENTATION_FILES}/{path.relative_to(root).as_posix()}",
                    name=f"Implementation: {path.name}",
                    description="Implementation file containing production code",
                    mime_type=mime_type_for(path),
                ))
            for path in find_test_reports(root, files):
                resources.append(ResourceInfo(
                    uri=f"{TEST_REPORTS}/{path.relative_to(root).as_posix()}",
                    name=f"Test Report: {path.name}",
                    description="Test execution results and metrics",
                    mime_type=mime_type_for(path),
                ))
            for path in find_coverage_reports(root, files):
                resources.append(ResourceInfo(
                    uri=f"{COVERAGE_REPORTS}/{path.relative_to(root).as_posix()}",
                    name=f"Coverage Report: {path.name}",
                    description="Code coverage analysis results",
                    mime_type=mime_type_for(path),
                ))
        else:
            logger.warning(f"Project path {root} is not a directory; listing best practices only")

        if self.best_practices_dir.is_dir():
            for path in sorted(self.best_practices_dir.glob("*.md")):
                resources.append(ResourceInfo(
                    uri=f"{BEST_PRACTICES}/{path.name}",
                    name=f"Best Practice: {path.stem.replace('-', ' ')}",
                    description="TDD best practices and guidelines",
                    mime_type="text/markdown",
                ))
        return resources

    def read_resource(self, uri: str) -> ResourceContent:
        for prefix in (TEST_FILES, IMPLEMENTATION_FILES, TEST_REPORTS, COVERAGE_REPORTS):
            if uri.startswith(prefix + "/"):
                path = self._resolve(self.project_path, uri[len(prefix) + 1:], uri)
                return ResourceContent(uri=uri, mime_type=mime_type_for(path), text=self._read(path, uri))
        if uri.startswith(BEST_PRACTICES + "/"):
            path = self._resolve(self.best_practices_dir, uri[len(BEST_PRACTICES) + 1:], uri)
            return ResourceContent(uri=uri, mime_type="text/markdown", text=self._read(path, uri))
        raise ValueError(f"Unknown resource URI: {uri}")

    @staticmethod
    def _resolve(root: Path, relative: str, uri: str) -> Path:
        root = root.resolve()
        path = (root / relative).resolve()
        if path != root and root not in path.parents:
            raise ValueError(f"Resource path escapes its root: {uri}")
        return path

    @staticmethod
    def _read(path: Path, uri: str) -> str:
        if not path.is_file():
            raise ValueError(f"Resource not found: {uri}")
        try:
            return path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise ValueError(f"Failed to read resource {uri}: {exc}") from exc
