"""Service wiring and result envelopes shared by both tool surfaces."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Mapping, Optional

from .codegen import CodeGenerator
from .config import ServerConfig
from .coverage_analyzer import CoverageAnalyzer
from .cycle_validator import CycleValidator
from .features import FeatureManager
from .refactoring import RefactoringAnalyzer
from .runner import TestRunner
from .storage import StorageService
from .testgen import TestGenerator

ToolResult = Dict[str, Any]


@dataclass(slots=True)
class Services:
    """Every backend a tool call can reach, built once per server."""

    storage: StorageService
    features: FeatureManager
    test_generator: TestGenerator
    code_generator: CodeGenerator
    test_runner: TestRunner
    coverage_analyzer: CoverageAnalyzer
    refactoring: RefactoringAnalyzer
    cycle_validator: CycleValidator

    @classmethod
    def from_config(cls, config: ServerConfig) -> "Services":
        storage = StorageService(config.storage_home)
        return cls(
            storage=storage,
            features=FeatureManager(storage, base_path=config.project_path),
            test_generator=TestGenerator(),
            code_generator=CodeGenerator(),
            test_runner=TestRunner(),
            coverage_analyzer=CoverageAnalyzer(),
            refactoring=RefactoringAnalyzer(),
            cycle_validator=CycleValidator(),
        )


def to_json(payload: Any) -> str:
    """Pretty-print a result, calling ``to_dict`` on records where needed."""
    return json.dumps(_plain(payload), indent=2, ensure_ascii=False)


def _plain(value: Any) -> Any:
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, Mapping):
        return {key: _plain(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(item) for item in value]
    return value


def text_result(text: str, is_error: bool = False) -> ToolResult:
    return {"content": [{"type": "text", "text": text}], "isError": is_error}


def error_result(text: str) -> ToolResult:
    return text_result(text, is_error=True)


def json_result(payload: Any, heading: Optional[str] = None) -> ToolResult:
    body = to_json(payload)
    return text_result(f"{heading}\n\n{body}" if heading else body)


def result_text(result: ToolResult) -> str:
    return "\n".join(item.get("text", "") for item in result.get("content", []))


def missing_fields(args: Mapping[str, Any], names: Iterable[str]) -> list[str]:
    """Names whose value is absent, None or a blank string."""
    missing = []
    for name in names:
        value = args.get(name)
        if value is None or (isinstance(value, str) and not value.strip()):
            missing.append(name)
    return missing
