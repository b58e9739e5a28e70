"""Run coverage for a project and normalize the artifacts it leaves behind.

Supported artifacts: Istanbul ``coverage-final.json`` and
``coverage-summary.json``, coverage.py JSON, Cobertura XML, LCOV and plain
text summaries.
"""

from __future__ import annotations

import json
import logging
import re
import subprocess
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Any, Dict, List, Optional

from .results import CoverageFile, CoverageMetric, CoverageReport
from .runner import DEFAULT_TIMEOUT, validate_project_path
from .tdd_logging import log_error_with_context, log_performance

logger = logging.getLogger("tdd_flow.coverage")

OUTPUT_FORMATS = ("json", "html", "lcov", "text")
METRICS = ("lines", "functions", "branches", "statements")

COVERAGE_DIRS = (
    "coverage",
    "coverage/json",
    "coverage/html",
    "coverage/lcov-report",
    ".nyc_output",
    "htmlcov",
    "test-results",
)

FILE_PATTERNS = {
    "json": ("coverage-final.json", "coverage-summary.json", "coverage.json", "cobertura-coverage.xml", "coverage.xml"),
    "html": ("index.html", "coverage.html"),
    "lcov": ("lcov.info", "coverage.lcov"),
    "text": ("coverage.txt", "coverage.out"),
}

_PERCENT = re.compile(r"(\d+(?:\.\d+)?)%")


def calculate_percentage(covered: float, total: float) -> float:
    """Covered/total as a percentage rounded to two decimals; 0 when nothing is measurable."""
    if not total:
        return 0
    return round(covered / total * 100, 2)


def _metric(total: int, covered: int) -> Dict[str, int]:
    return {"total": total, "covered": covered}


def _empty_data() -> Dict[str, Any]:
    return {"files": {}, "overall": {metric: 0 for metric in METRICS}}


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def build_coverage_command(test_command: str, output_format: str = "json") -> str:
    """Wrap a plain test command so it also writes coverage in ``output_format``."""
    if "jest" in test_command:
        command = test_command.replace("jest", "jest --coverage", 1)
        reporters = {
            "json": " --coverageReporters=json-summary --coverageReporters=json",
            "html": " --coverageReporters=html",
            "lcov": " --coverageReporters=lcov",
            "text": " --coverageReporters=text",
        }
        return command + reporters.get(output_format, "")

    if "mocha" in test_command:
        command = f"nyc --reporter={output_format} {test_command}"
        if output_format == "json":
            command += " && nyc report --reporter=json-summary"
        return command

    if "vitest" in test_command:
        return f"{test_command} --coverage --coverage.reporter={output_format}"

    if "pytest" in test_command:
        command = test_command.replace("pytest", "pytest --cov=.", 1)
        reports = {
            "json": " --cov-report=json",
            "html": " --cov-report=html",
            "lcov": " --cov-report=lcov",
            "text": " --cov-report=term-missing",
        }
        return command + reports.get(output_format, "")

    if "go test" in test_command:
        command = test_command.replace("go test", "go test -coverprofile=coverage.out", 1)
        if output_format == "html":
            command += " && go tool cover -html=coverage.out -o coverage.html"
        elif output_format in ("json", "text"):
            command += " && go tool cover -func=coverage.out > coverage.txt"
        return command

    if "cargo test" in test_command:
        outputs = {"json": "json", "html": "html", "lcov": "lcov"}
        return f"cargo tarpaulin --out {outputs.get(output_format, 'xml')}"

    if "dotnet test" in test_command:
        command = f'{test_command} --collect:"XPlat Code Coverage"'
        if output_format == "html":
            command += (
                ' && reportgenerator -reports:"**/*coverage.cobertura.xml"'
                ' -targetdir:"coverage" -reporttypes:Html'
            )
        return command

    if "phpunit" in test_command:
        if output_format == "json":
            return f"{test_command} --coverage-clover coverage.xml"
        if output_format == "text":
            return f"{test_command} --coverage-text"
        return f"{test_command} --coverage-html coverage"

    return f"{test_command} --coverage"


def find_coverage_files(project: Path, output_format: str = "json") -> List[Path]:
    patterns = FILE_PATTERNS.get(output_format, FILE_PATTERNS["json"])
    found: List[Path] = []
    for directory in COVERAGE_DIRS:
        base = project / directory
        if base.is_dir():
            found.extend(base / name for name in patterns if (base / name).is_file())
    found.extend(project / name for name in patterns if (project / name).is_file())
    return found


# ---------------------------------------------------------------------------
# Parsers
# ---------------------------------------------------------------------------


def parse_lcov_coverage(content: str) -> Dict[str, Any]:
    data = _empty_data()
    totals = {"lines": [0, 0], "functions": [0, 0], "branches": [0, 0]}
    prefixes = {"LF:": ("lines", 0), "LH:": ("lines", 1), "FNF:": ("functions", 0),
                "FNH:": ("functions", 1), "BRF:": ("branches", 0), "BRH:": ("branches", 1)}

    for section in content.split("end_of_record"):
        file_name = ""
        counts = {"lines": [0, 0], "functions": [0, 0], "branches": [0, 0]}
        for line in section.splitlines():
            line = line.strip()
            if line.startswith("SF:"):
                file_name = line[3:]
                continue
            for prefix, (metric, slot) in prefixes.items():
                if line.startswith(prefix):
                    try:
                        counts[metric][slot] += int(line[len(prefix):])
                    except ValueError:
                        logger.debug(f"Ignoring malformed LCOV line: {line}")
                    break
        for metric, (total, covered) in counts.items():
            totals[metric][0] += total
            totals[metric][1] += covered
        if file_name:
            data["files"][file_name] = {metric: _metric(*counts[metric]) for metric in counts}

    for metric, (total, covered) in totals.items():
        data["overall"][metric] = calculate_percentage(covered, total)
    data["overall"]["statements"] = data["overall"]["lines"]
    return data


def parse_istanbul_final(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Istanbul's per-file hit maps: ``s`` statements, ``f`` functions, ``b`` branches."""
    data = _empty_data()
    sums = {metric: [0, 0] for metric in METRICS}
    for path, entry in raw.items():
        if not isinstance(entry, dict):
            continue
        statements = list((entry.get("s") or {}).values())
        functions = list((entry.get("f") or {}).values())
        branches = [hit for hits in (entry.get("b") or {}).values() for hit in hits]

        lines_hit: Dict[int, int] = {}
        for key, location in (entry.get("statementMap") or {}).items():
            line = ((location or {}).get("start") or {}).get("line")
            if line is not None:
                lines_hit[line] = max(lines_hit.get(line, 0), (entry.get("s") or {}).get(key, 0))

        file_counts = {
            "lines": (len(lines_hit), sum(1 for h in lines_hit.values() if h > 0)),
            "functions": (len(functions), sum(1 for h in functions if h > 0)),
            "branches": (len(branches), sum(1 for h in branches if h > 0)),
            "statements": (len(statements), sum(1 for h in statements if h > 0)),
        }
        for metric, (total, covered) in file_counts.items():
            sums[metric][0] += total
            sums[metric][1] += covered
        data["files"][entry.get("path") or path] = {
            metric: _metric(*file_counts[metric]) for metric in ("lines", "functions", "branches")
        }

    for metric, (total, covered) in sums.items():
        data["overall"][metric] = calculate_percentage(covered, total)
    return data


def parse_istanbul_summary(raw: Dict[str, Any]) -> Dict[str, Any]:
    data = _empty_data()
    for path, entry in raw.items():
        if path == "total" or not isinstance(entry, dict):
            continue
        data["files"][path] = {
            metric: _metric((entry.get(metric) or {}).get("total", 0), (entry.get(metric) or {}).get("covered", 0))
            for metric in ("lines", "functions", "branches")
        }
    total = raw.get("total") or {}
    for metric in METRICS:
        summary = total.get(metric) or {}
        pct = summary.get("pct")
        data["overall"][metric] = (
            pct if isinstance(pct, (int, float))
            else calculate_percentage(summary.get("covered", 0), summary.get("total", 0))
        )
    return data


def parse_coveragepy_json(raw: Dict[str, Any]) -> Dict[str, Any]:
    """coverage.py's ``coverage json`` report (``files`` plus ``totals``)."""
    data = _empty_data()
    for path, entry in (raw.get("files") or {}).items():
        summary = entry.get("summary") or {}
        functions = entry.get("functions") or {}
        function_covered = sum(
            1 for fn in functions.values() if (fn.get("summary") or {}).get("covered_lines", 0) > 0
        )
        data["files"][path] = {
            "lines": _metric(summary.get("num_statements", 0), summary.get("covered_lines", 0)),
            "functions": _metric(len(functions), function_covered),
            "branches": _metric(summary.get("num_branches", 0), summary.get("covered_branches", 0)),
        }

    totals = raw.get("totals") or {}
    lines = calculate_percentage(totals.get("covered_lines", 0), totals.get("num_statements", 0))
    data["overall"]["lines"] = lines
    data["overall"]["statements"] = lines
    data["overall"]["branches"] = calculate_percentage(totals.get("covered_branches", 0), totals.get("num_branches", 0))
    fn_total = sum(f["functions"]["total"] for f in data["files"].values())
    fn_covered = sum(f["functions"]["covered"] for f in data["files"].values())
    data["overall"]["functions"] = calculate_percentage(fn_covered, fn_total)
    return data


def parse_cobertura_xml(content: str) -> Dict[str, Any]:
    data = _empty_data()
    root = ET.fromstring(content)
    line_rate = root.get("line-rate")
    branch_rate = root.get("branch-rate")
    if line_rate is not None:
        data["overall"]["lines"] = round(float(line_rate) * 100, 2)
        data["overall"]["statements"] = data["overall"]["lines"]
    if branch_rate is not None:
        data["overall"]["branches"] = round(float(branch_rate) * 100, 2)

    fn_total = fn_covered = 0
    for cls in root.iter("class"):
        path = cls.get("filename") or cls.get("name") or "unknown"
        lines = cls.findall("./lines/line")
        methods = cls.findall("./methods/method")
        covered_methods = sum(
            1 for m in methods if any(int(hit.get("hits", "0")) > 0 for hit in m.findall("./lines/line"))
        )
        branch_total = branch_covered = 0
        for line in lines:
            match = re.match(r"\d+% \((\d+)/(\d+)\)", line.get("condition-coverage", ""))
            if match:
                branch_covered += int(match.group(1))
                branch_total += int(match.group(2))
        entry = data["files"].setdefault(path, {
            "lines": _metric(0, 0), "functions": _metric(0, 0), "branches": _metric(0, 0),
        })
        entry["lines"]["total"] += len(lines)
        entry["lines"]["covered"] += sum(1 for line in lines if int(line.get("hits", "0")) > 0)
        entry["functions"]["total"] += len(methods)
        entry["functions"]["covered"] += covered_methods
        entry["branches"]["total"] += branch_total
        entry["branches"]["covered"] += branch_covered
        fn_total += len(methods)
        fn_covered += covered_methods

    data["overall"]["functions"] = calculate_percentage(fn_covered, fn_total)
    return data


def parse_text_coverage(content: str) -> Dict[str, Any]:
    """Use the ``total`` row's percentage when there is one, else the first percentage."""
    data = _empty_data()
    percentage: Optional[float] = None
    for line in content.splitlines():
        if line.strip().lower().startswith(("total", "all files")):
            found = _PERCENT.findall(line)
            if found:
                percentage = float(found[-1])
                break
    if percentage is None:
        found = _PERCENT.findall(content)
        if found:
            percentage = float(found[0])
    if percentage is not None:
        data["overall"] = {metric: percentage for metric in METRICS}
    return data


def parse_json_coverage(raw: Any) -> Dict[str, Any]:
    if not isinstance(raw, dict):
        raise ValueError("coverage JSON must be an object")
    if "totals" in raw and "files" in raw:
        return parse_coveragepy_json(raw)
    if "total" in raw:
        return parse_istanbul_summary(raw)
    return parse_istanbul_final(raw)


def parse_coverage_file(path: Path) -> Dict[str, Any]:
    content = path.read_text(encoding="utf-8")
    name = path.name
    try:
        if name.endswith(".json"):
            return parse_json_coverage(json.loads(content))
        if name.endswith(".xml"):
            return parse_cobertura_xml(content)
        if name.endswith((".info", ".lcov")):
            return parse_lcov_coverage(content)
        return parse_text_coverage(content)
    except (ValueError, ET.ParseError, KeyError, TypeError, AttributeError) as exc:
        raise ValueError(f"Failed to parse coverage file {path}: {exc}") from exc


def build_report(data: Dict[str, Any], thresholds: Optional[Dict[str, float]] = None) -> CoverageReport:
    files = [
        CoverageFile(
            path=path,
            lines=_to_metric(entry.get("lines")),
            functions=_to_metric(entry.get("functions")),
            branches=_to_metric(entry.get("branches")),
        )
        for path, entry in (data.get("files") or {}).items()
    ]
    overall = data.get("overall") or {}
    threshold = {k: v for k, v in (thresholds or {}).items() if k in METRICS and v is not None}
    return CoverageReport(
        files=files,
        lines=overall.get("lines") or 0,
        functions=overall.get("functions") or 0,
        branches=overall.get("branches") or 0,
        statements=overall.get("statements") or overall.get("lines") or 0,
        threshold=threshold or None,
    )


def _to_metric(values: Optional[Dict[str, Any]]) -> CoverageMetric:
    total = (values or {}).get("total", 0) or 0
    covered = (values or {}).get("covered", 0) or 0
    return CoverageMetric(total=total, covered=covered, percentage=calculate_percentage(covered, total))


def threshold_failures(report: CoverageReport) -> List[str]:
    """Metrics that fall below their configured threshold."""
    if not report.threshold:
        return []
    actual = {"lines": report.lines, "functions": report.functions,
              "branches": report.branches, "statements": report.statements}
    return [
        f"{metric} coverage {actual[metric]}% is below threshold {limit}%"
        for metric, limit in report.threshold.items()
        if actual[metric] < limit
    ]


class CoverageAnalyzer:
    """Run a project's tests with coverage and summarize the result."""

    def __init__(self, timeout: float = DEFAULT_TIMEOUT):
        self.timeout = timeout

    @log_performance("analyze_coverage")
    def analyze_coverage(
        self,
        project_path: str | Path,
        test_command: str,
        thresholds: Optional[Dict[str, float]] = None,
        output_format: str = "json",
    ) -> CoverageReport:
        project = validate_project_path(project_path)
        if output_format not in OUTPUT_FORMATS:
            raise ValueError(f"Invalid output format: {output_format}")

        command = build_coverage_command(test_command, output_format)
        try:
            logger.info(f"Running coverage in {project}: {command}")
            completed = subprocess.run(
                command,
                shell=True,
                cwd=str(project),
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
            if completed.returncode != 0:
                logger.warning(f"Coverage command exited with {completed.returncode}; looking for artifacts anyway")

            files = find_coverage_files(project, output_format)
            if not files:
                raise RuntimeError("No coverage files found after test execution")
            report = build_report(parse_coverage_file(files[0]), thresholds)
        except (subprocess.TimeoutExpired, OSError, ValueError, RuntimeError) as exc:
            log_error_with_context(exc, {"operation": "analyze_coverage", "project": str(project)})
            raise RuntimeError(f"Coverage analysis failed: {exc}") from exc

        for failure in threshold_failures(report):
            logger.warning(failure)
        return report
