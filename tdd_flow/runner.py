"""Run a project's test suite and turn whatever it reports into TestResults."""

from __future__ import annotations

import json
import logging
import subprocess
import time
import xml.etree.ElementTree as ET
from collections import OrderedDict
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from .frameworks import TestFramework, get_framework
from .results import RunSummary, TestResult, TestResults, TestSuiteResult
from .tdd_logging import log_error_with_context, log_performance

logger = logging.getLogger("tdd_flow.runner")

DEFAULT_TIMEOUT = 300  # seconds
RESULT_FILES = ("test-results.json", "test-results.xml")
# Exit codes the shell uses when the runner binary itself is missing or unusable.
SHELL_FAILURE_CODES = {126, 127}

VERBOSE_FLAGS = {
    "jest": " --verbose",
    "mocha": " --reporter spec",
    "vitest": " --reporter=verbose",
    "pytest": " -v",
    "unittest": " -v",
    "junit5": " -Dtest.verbose=true",
    "xunit": " -verbose",
    "gotest": " -v",
    "cargo_test": " --verbose",
    "phpunit": " --verbose",
}

PARALLEL_FLAGS = {
    "jest": " --maxWorkers=auto",
    "pytest": " -n auto",
    "junit5": " -Djunit.parallel.enabled=true",
    "gotest": " -parallel",
    "cargo_test": " --jobs 0",
}

JSON_OUTPUT_FLAGS = {
    "jest": " --json --outputFile=test-results.json",
    "mocha": " --reporter json --reporter-options output=test-results.json",
    "vitest": " --reporter=json --outputFile=test-results.json",
    "pytest": " --json-report --json-report-file=test-results.json",
    "junit5": " -Djunit.platform.reporting.output.dir=test-results",
    "xunit": " -xml test-results.xml",
    "gotest": " -json > test-results.json",
    "cargo_test": " --format json > test-results.json",
    "phpunit": " --log-json test-results.json",
}


def build_test_command(
    framework: TestFramework,
    test_files: Optional[Sequence[str]] = None,
    *,
    coverage: bool = False,
    verbose: bool = False,
    parallel: bool = True,
) -> str:
    command = framework.commands.run
    if coverage and framework.commands.coverage:
        command = framework.commands.coverage
    if verbose:
        command += VERBOSE_FLAGS.get(framework.key, "")
    if parallel:
        command += PARALLEL_FLAGS.get(framework.key, "")
    if test_files:
        command += " " + " ".join(test_files)
    return command + JSON_OUTPUT_FLAGS.get(framework.key, "")


def validate_project_path(project_path: str | Path) -> Path:
    path = Path(project_path).expanduser()
    if not path.is_dir():
        raise ValueError(f"Invalid project path: {project_path}")
    return path


def error_results(framework: str, message: str) -> TestResults:
    """Results describing a run that never produced test output."""
    tests = [TestResult(name="Test Runner Error", status="failed", duration=0, error=message)]
    suite = TestSuiteResult(name="Test Execution Error", tests=tests, summary=RunSummary.of(tests, 0))
    return TestResults.from_suites(framework, [suite])


# ---------------------------------------------------------------------------
# Output parsers
# ---------------------------------------------------------------------------


def _map_status(value: Optional[str], known: Sequence[str], default: str) -> str:
    return value if value in known else default


def parse_jest_results(data: Dict[str, Any]) -> TestResults:
    suites = []
    for file_result in data.get("testResults") or []:
        tests = [
            TestResult(
                name=assertion.get("title") or assertion.get("fullName") or "unknown",
                status=_map_status(assertion.get("status"), ("passed", "failed", "skipped", "pending"), "failed"),
                duration=assertion.get("duration") or 0,
                error="\n".join(assertion.get("failureMessages") or []) or None,
            )
            for assertion in file_result.get("assertionResults") or []
        ]
        start, end = file_result.get("startTime"), file_result.get("endTime")
        duration = (end - start) if isinstance(start, (int, float)) and isinstance(end, (int, float)) else 0
        suites.append(TestSuiteResult(
            name=file_result.get("name") or "unknown",
            tests=tests,
            summary=RunSummary.of(tests, duration),
        ))

    results = TestResults.from_suites("jest", suites)
    if data.get("coverageMap"):
        results.overall.coverage = statement_coverage(data["coverageMap"])
    return results


def parse_mocha_results(data: Dict[str, Any]) -> TestResults:
    def collect(suite: Dict[str, Any]) -> List[TestResult]:
        tests = [
            TestResult(
                name=test.get("title", "unknown"),
                status=_map_status(test.get("state"), ("passed", "failed", "pending"), "skipped"),
                duration=test.get("duration") or 0,
                error=(test.get("err") or {}).get("message"),
            )
            for test in suite.get("tests") or []
        ]
        for nested in suite.get("suites") or []:
            tests.extend(collect(nested))
        return tests

    suites = []
    for suite in data.get("suites") or []:
        tests = collect(suite)
        suites.append(TestSuiteResult(
            name=suite.get("title", ""),
            tests=tests,
            summary=RunSummary.of(tests, suite.get("duration") or 0),
        ))

    # Mocha's own JSON reporter emits flat pass/fail lists instead of suites.
    if not suites and "tests" in data:
        tests = collect({"tests": data.get("tests")})
        suites.append(TestSuiteResult(name="Test Suite", tests=tests, summary=RunSummary.of(tests)))

    results = TestResults.from_suites("mocha", suites)
    results.overall.duration = (data.get("stats") or {}).get("duration") or 0
    return results


def parse_pytest_results(data: Dict[str, Any]) -> TestResults:
    """Parse a pytest-json-report document, one suite per test file."""
    by_file: "OrderedDict[str, List[TestResult]]" = OrderedDict()
    for test in data.get("tests") or []:
        node_id = test.get("nodeid") or ""
        file_name = node_id.split("::")[0] or "unknown"
        call = test.get("call") or {}
        by_file.setdefault(file_name, []).append(TestResult(
            name=node_id.split("::")[-1] or test.get("name", "unknown"),
            status=_map_status(test.get("outcome"), ("passed", "failed", "skipped"), "failed"),
            duration=call.get("duration") or 0,
            error=call.get("longrepr"),
        ))

    suites = [
        TestSuiteResult(name=file_name, tests=tests, summary=RunSummary.of(tests))
        for file_name, tests in by_file.items()
    ]
    return TestResults.from_suites("pytest", suites)


def parse_junit_xml(content: str, framework: str) -> TestResults:
    """Parse JUnit-style XML (``<testsuite>``/``<testcase>``), as most runners can emit."""
    root = ET.fromstring(content)
    suite_elements = [root] if root.tag == "testsuite" else list(root.iter("testsuite"))
    if not suite_elements:
        suite_elements = [root]

    suites = []
    for element in suite_elements:
        tests = []
        for case in element.iter("testcase"):
            status = "passed"
            error = None
            failure = case.find("failure")
            if failure is None:
                failure = case.find("error")
            if failure is not None:
                status = "failed"
                error = failure.get("message") or (failure.text or "").strip() or None
            elif case.find("skipped") is not None:
                status = "skipped"
            tests.append(TestResult(
                name=case.get("name", "Unknown Test"),
                status=status,
                duration=float(case.get("time") or 0),
                error=error,
            ))
        suites.append(TestSuiteResult(
            name=element.get("name") or "Test Suite",
            tests=tests,
            summary=RunSummary.of(tests, float(element.get("time") or 0)),
        ))
    return TestResults.from_suites(framework, suites)


def parse_text_results(stdout: str, stderr: str, framework: str, duration: float) -> TestResults:
    """Last-resort line scan for pass/fail/skip markers."""
    lines = f"{stdout}\n{stderr}".split("\n")
    passed = [line for line in lines if "✓" in line or "PASSED" in line or "OK" in line]
    failed = [line for line in lines if "✗" in line or "FAILED" in line or "ERROR" in line]
    skipped = [line for line in lines if "SKIPPED" in line or "PENDING" in line]

    tests = (
        [TestResult(name=f"Test {i + 1}", status="passed") for i in range(len(passed))]
        + [TestResult(name=f"Failed Test {i + 1}", status="failed", error=line) for i, line in enumerate(failed)]
        + [TestResult(name=f"Skipped Test {i + 1}", status="skipped") for i in range(len(skipped))]
    )
    suite = TestSuiteResult(name="Test Suite", tests=tests, summary=RunSummary.of(tests, duration))
    return TestResults.from_suites(framework, [suite])


def statement_coverage(coverage_map: Dict[str, Any]) -> float:
    """Percentage of Istanbul statements hit at least once, rounded to an integer."""
    if not isinstance(coverage_map, dict):
        return 0
    total = covered = 0
    for file_coverage in coverage_map.values():
        counts = (file_coverage or {}).get("s") or {}
        total += len(counts)
        covered += sum(1 for hits in counts.values() if hits > 0)
    return round(covered / total * 100) if total else 0


JSON_PARSERS = {
    "jest": parse_jest_results,
    "mocha": parse_mocha_results,
    "pytest": parse_pytest_results,
}


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------


class TestRunner:
    """Execute test commands in a project directory."""

    __test__ = False

    def __init__(self, timeout: float = DEFAULT_TIMEOUT):
        self.timeout = timeout

    @log_performance("run_tests")
    def run_tests(
        self,
        project_path: str | Path,
        framework: str,
        test_files: Optional[Sequence[str]] = None,
        *,
        coverage: bool = False,
        verbose: bool = False,
        parallel: bool = True,
        timeout: Optional[float] = None,
    ) -> TestResults:
        config = get_framework(framework)
        if config is None:
            raise ValueError(f"Unsupported test framework: {framework}")
        project = validate_project_path(project_path)

        command = build_test_command(config, test_files, coverage=coverage, verbose=verbose, parallel=parallel)
        logger.info(f"Running tests in {project}: {command}")

        started = time.time()
        try:
            completed = subprocess.run(
                command,
                shell=True,
                cwd=str(project),
                capture_output=True,
                text=True,
                timeout=timeout or self.timeout,
            )
        except subprocess.TimeoutExpired:
            logger.warning(f"Test command timed out after {timeout or self.timeout}s: {command}")
            return error_results(framework, f"Command timed out after {timeout or self.timeout} seconds: {command}")
        except OSError as exc:
            log_error_with_context(exc, {"operation": "run_tests", "command": command})
            return error_results(framework, str(exc))

        elapsed_ms = (time.time() - started) * 1000
        if completed.returncode in SHELL_FAILURE_CODES:
            message = (completed.stderr or completed.stdout).strip() or f"Command failed: {command}"
            return error_results(framework, message)

        return self.parse_output(project, config, completed.stdout or "", completed.stderr or "", elapsed_ms, started)

    def parse_output(
        self,
        project: Path,
        framework: TestFramework,
        stdout: str,
        stderr: str,
        duration: float,
        since: float = 0.0,
    ) -> TestResults:
        """Prefer a fresh result file written by the runner, else scan the console output."""
        for file_name in RESULT_FILES:
            candidate = project / file_name
            if not candidate.is_file() or candidate.stat().st_mtime < since - 1:
                continue
            try:
                content = candidate.read_text(encoding="utf-8")
                if file_name.endswith(".json"):
                    data = json.loads(content)
                    parser = JSON_PARSERS.get(framework.key)
                    if parser is not None and isinstance(data, dict):
                        return parser(data)
                else:
                    return parse_junit_xml(content, framework.key)
            except (OSError, ValueError, ET.ParseError) as exc:
                logger.warning(f"Could not parse {candidate}: {exc}")

        return parse_text_results(stdout, stderr, framework.name, duration)
