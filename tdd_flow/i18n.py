"""Localized strings for tool descriptions and user-facing messages.

The locale is always passed in by the caller; nothing in this module keeps a
"current" locale.
"""

from __future__ import annotations

import re
from typing import Dict, Optional

SUPPORTED_LOCALES = ("zh", "en")
DEFAULT_LOCALE = "en"

TDD_COMMANDS = ("generate", "implement", "test", "coverage", "refactor", "validate")

ERROR_CODES = {
    "INVALID_PARAMS": -31002,
    "TOOL_EXECUTION_ERROR": -31001,
    "RESOURCE_NOT_FOUND": -31003,
}

MESSAGES: Dict[str, Dict[str, str]] = {
    "zh": {
        "tdd.title": "TDD开发工具",
        "tdd.description": "测试驱动开发的核心工作流工具",
        "tdd.command.generate.hint": "根据需求描述生成全面的测试用例，支持多种测试框架",
        "tdd.command.implement.hint": "基于测试代码生成最小化实现，遵循TDD原则",
        "tdd.command.test.hint": "执行项目测试并返回详细结果和错误信息",
        "tdd.command.coverage.hint": "分析测试覆盖率，识别未测试的代码区域",
        "tdd.command.refactor.hint": "提供代码重构建议，保持测试通过的前提下改进代码",
        "tdd.command.validate.hint": "检查是否正确遵循红绿重构的TDD循环",

        "feature.title": "功能管理",
        "feature.description": "项目功能的全生命周期管理",

        "tracking.title": "测试跟踪",
        "tracking.description": "测试方法级别的执行跟踪管理",

        "error.validation_failed": "字段验证失败: {{field}}",
        "error.invalid_params": "输入参数验证失败",
        "error.tool_execution_failed": "工具执行失败",
        "error.resource_not_found": "资源不存在",

        "param.tdd.command": "子命令（可选，默认执行完整流程）",
        "param.requirements": "功能需求描述",
        "param.language": "编程语言",
        "param.framework": "测试框架",
        "param.testType": "测试类型",
        "param.testCode": "测试代码",
        "param.implementationStyle": "实现风格",
        "param.projectPath": "项目路径",
        "param.sourceCode": "源代码",
        "param.sessionId": "TDD会话ID（可选，默认由项目和功能推导）",
        "param.feature.command": "功能管理操作",
        "param.name": "功能名称",
        "param.description": "功能描述",
        "param.query": "搜索查询",
        "param.featureId": "功能ID",
        "param.acceptanceCriteria": "验收标准列表",
        "param.status": "状态",
        "param.filePaths": "要关联的文件路径",
        "param.fileType": "文件类型",
        "param.tracking.command": "跟踪操作",
        "param.testName": "测试方法名",
        "param.filePath": "测试文件路径",
        "param.methodId": "测试方法ID",
        "param.result": "测试执行结果",
        "param.projectId": "项目ID（可选，默认 auto-project）",
        "param.refactorType": "重构类型",
        "param.testFiles": "要运行的测试文件",
        "param.testCommand": "覆盖率分析使用的测试命令",
        "param.developer": "开发者",
        "param.notes": "备注",

        "workflow.completed": "完整TDD流程执行完成:",
        "workflow.step.generate": "生成测试用例",
        "workflow.step.implement": "生成最小实现",
        "workflow.step.test": "运行测试",
        "workflow.step.coverage": "分析覆盖率",
        "workflow.step.refactor": "提供重构建议",
        "workflow.skipped_no_project": "未提供 projectPath，已跳过",
        "workflow.failed": "失败: {{reason}}",
    },
    "en": {
        "tdd.title": "TDD Development Tool",
        "tdd.description": "Core workflow tool for Test-Driven Development",
        "tdd.command.generate.hint": "Generate comprehensive test cases from requirements, supporting multiple testing frameworks",
        "tdd.command.implement.hint": "Generate minimal implementation from test code, following TDD principles",
        "tdd.command.test.hint": "Execute project tests and return detailed results and error information",
        "tdd.command.coverage.hint": "Analyze test coverage and identify untested code areas",
        "tdd.command.refactor.hint": "Provide code refactoring suggestions while keeping tests passing",
        "tdd.command.validate.hint": "Check if the red-green-refactor TDD cycle is being followed correctly",

        "feature.title": "Feature Management",
        "feature.description": "Full lifecycle management of project features",

        "tracking.title": "Test Tracking",
        "tracking.description": "Execution tracking management at test method level",

        "error.validation_failed": "Validation failed for field: {{field}}",
        "error.invalid_params": "Input parameter validation failed",
        "error.tool_execution_failed": "Tool execution failed",
        "error.resource_not_found": "Resource not found",

        "param.tdd.command": "Subcommand (optional, default full workflow)",
        "param.requirements": "Feature requirements description",
        "param.language": "Programming language",
        "param.framework": "Testing framework",
        "param.testType": "Test type",
        "param.testCode": "Test code",
        "param.implementationStyle": "Implementation style",
        "param.projectPath": "Project path",
        "param.sourceCode": "Source code",
        "param.sessionId": "TDD session id (optional, derived from project and feature by default)",
        "param.feature.command": "Feature management operation",
        "param.name": "Feature name",
        "param.description": "Feature description",
        "param.query": "Search query",
        "param.featureId": "Feature ID",
        "param.acceptanceCriteria": "List of acceptance criteria",
        "param.status": "Status",
        "param.filePaths": "File paths to link",
        "param.fileType": "File type",
        "param.tracking.command": "Tracking operation",
        "param.testName": "Test method name",
        "param.filePath": "Test file path",
        "param.methodId": "Test method ID",
        "param.result": "Test execution result",
        "param.projectId": "Project ID (optional, defaults to auto-project)",
        "param.refactorType": "Refactoring type",
        "param.testFiles": "Test files to run",
        "param.testCommand": "Test command used for coverage analysis",
        "param.developer": "Developer",
        "param.notes": "Notes",

        "workflow.completed": "Full TDD workflow completed:",
        "workflow.step.generate": "Generate test cases",
        "workflow.step.implement": "Generate minimal implementation",
        "workflow.step.test": "Run tests",
        "workflow.step.coverage": "Analyze coverage",
        "workflow.step.refactor": "Provide refactoring suggestions",
        "workflow.skipped_no_project": "skipped, no projectPath provided",
        "workflow.failed": "failed: {{reason}}",
    },
}

_PLACEHOLDER = re.compile(r"\{\{(\w+)\}\}")


def normalize_locale(locale: str) -> str:
    """Return the canonical locale code or raise for unsupported values."""
    value = (locale or "").strip().lower()
    if value not in SUPPORTED_LOCALES:
        raise ValueError(f"Unsupported locale: {locale}")
    return value


def resolve_locale(locale: Optional[str]) -> str:
    """Like normalize_locale, but falls back to the default locale."""
    try:
        return normalize_locale(locale or DEFAULT_LOCALE)
    except ValueError:
        return DEFAULT_LOCALE


def _lookup(key: str, locale: str) -> str:
    return MESSAGES.get(locale, {}).get(key) or MESSAGES[DEFAULT_LOCALE].get(key) or key


def translate(key: str, locale: str = DEFAULT_LOCALE, **params: object) -> str:
    """Translate ``key`` and substitute ``{{name}}`` placeholders from params."""
    message = _lookup(key, locale)
    if not params:
        return message
    return _PLACEHOLDER.sub(
        lambda match: str(params[match.group(1)]) if match.group(1) in params else match.group(0),
        message,
    )


def tool_description(tool: str, locale: str = DEFAULT_LOCALE) -> Dict[str, str]:
    return {
        "title": _lookup(f"{tool}.title", locale),
        "description": _lookup(f"{tool}.description", locale),
    }


def command_hints(tool: str, locale: str = DEFAULT_LOCALE) -> Dict[str, str]:
    """Collect the sub-command hints that have a translation."""
    hints: Dict[str, str] = {}
    for command in TDD_COMMANDS:
        key = f"{tool}.command.{command}.hint"
        hint = _lookup(key, locale)
        if hint != key:
            hints[command] = hint
    return hints


def localized_error(error_type: str, locale: str = DEFAULT_LOCALE, data: object = None) -> Dict[str, object]:
    """Build a ``{code, message}`` error payload for a known error type."""
    if error_type not in ERROR_CODES:
        raise ValueError(f"Unknown error type: {error_type}")
    error: Dict[str, object] = {
        "code": ERROR_CODES[error_type],
        "message": _lookup(f"error.{error_type.lower()}", locale),
    }
    if data is not None:
        error["data"] = data
    return error
