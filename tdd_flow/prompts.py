"""Guidance prompts rendered from the markdown templates shipped with the package."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Tuple

logger = logging.getLogger("tdd_flow.prompts")

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"

_PLACEHOLDER = re.compile(r"\{\{(\w+)\}\}")


@dataclass(frozen=True, slots=True)
class PromptArgument:
    name: str
    description: str
    required: bool = False
    default: str = ""

    @property
    def placeholder(self) -> str:
        return self.name.upper()

    def to_dict(self) -> Dict[str, object]:
        return {"name": self.name, "description": self.description, "required": self.required}


@dataclass(frozen=True, slots=True)
class PromptDefinition:
    name: str
    description: str
    template: str
    summary: str
    arguments: Tuple[PromptArgument, ...] = field(default_factory=tuple)

    def to_dict(self) -> Dict[str, object]:
        return {
            "name": self.name,
            "description": self.description,
            "arguments": [argument.to_dict() for argument in self.arguments],
        }


@dataclass(slots=True)
class RenderedPrompt:
    description: str
    text: str

    def to_dict(self) -> Dict[str, object]:
        return {
            "description": self.description,
            "messages": [{"role": "user", "content": {"type": "text", "text": self.text}}],
        }


PROMPTS: Tuple[PromptDefinition, ...] = (
    PromptDefinition(
        name="tdd_workflow",
        description="Complete TDD workflow guidance from requirements to implementation",
        template="tdd-workflow.md",
        summary="Complete TDD workflow for implementing: {{FEATURE_DESCRIPTION}}",
        arguments=(
            PromptArgument("feature_description", "Description of the feature to implement using TDD", True,
                           "[Feature Description]"),
            PromptArgument("language", "Programming language (typescript, python, java, etc.)", True, "[Language]"),
            PromptArgument("test_framework", "Testing framework to use (jest, pytest, junit5, etc.)", True,
                           "[Test Framework]"),
            PromptArgument("complexity_level", "Complexity level: simple, moderate, or complex", False, "moderate"),
        ),
    ),
    PromptDefinition(
        name="test_generation",
        description="Generate comprehensive test cases following TDD best practices",
        template="test-generation.md",
        summary="Test generation guidance for: {{REQUIREMENTS}}",
        arguments=(
            PromptArgument("requirements", "Detailed requirements for the feature to be tested", True,
                           "[Requirements]"),
            PromptArgument("existing_code", "Existing code context (optional)", False,
                           "[No existing code provided]"),
            PromptArgument("test_style", "Testing style: behavior_driven, data_driven, or property_based", False,
                           "behavior_driven"),
            PromptArgument("coverage_goals", "Specific coverage goals or edge cases to test", False,
                           "comprehensive coverage with edge cases"),
        ),
    ),
    PromptDefinition(
        name="implementation_guide",
        description="Guide for implementing code that passes given tests",
        template="implementation-guide.md",
        summary="Implementation guidance based on test requirements",
        arguments=(
            PromptArgument("test_code", "Test code that needs to pass", True, "[Test Code]"),
            PromptArgument("architectural_constraints", "Architectural patterns or constraints to follow", False,
                           "[No specific constraints]"),
            PromptArgument("performance_requirements", "Performance requirements or optimizations needed", False,
                           "[No specific performance requirements]"),
            PromptArgument("implementation_style",
                           "Implementation style: minimal, comprehensive, or production_ready", False, "minimal"),
        ),
    ),
    PromptDefinition(
        name="refactoring_guide",
        description="Guide for refactoring code while maintaining test compatibility",
        template="refactoring-guide.md",
        summary="Refactoring guidance while preserving test compatibility",
        arguments=(
            PromptArgument("current_code", "Current code that needs refactoring", True, "[Current Code]"),
            PromptArgument("code_smells", "Identified code smells or issues to address", False,
                           "[No specific code smells identified]"),
            PromptArgument("refactoring_goals",
                           "Specific refactoring goals (readability, performance, maintainability)", False,
                           "improve readability and maintainability"),
            PromptArgument("preserve_behavior", "Whether to strictly preserve existing behavior (true/false)", False,
                           "true"),
        ),
    ),
    PromptDefinition(
        name="red_green_refactor",
        description="Step-by-step guidance through a single red-green-refactor cycle",
        template="red-green-refactor.md",
        summary="TDD cycle guidance - Current state: {{CURRENT_STATE}}",
        arguments=(
            PromptArgument("current_state", "Current state of the TDD cycle: red, green, or refactor", True,
                           "[Current State]"),
            PromptArgument("feature_increment", "The next small increment of functionality to add", True,
                           "[Feature Increment]"),
            PromptArgument("existing_tests", "Currently existing tests (if any)", False, "[No existing tests]"),
            PromptArgument("existing_implementation", "Currently existing implementation (if any)", False,
                           "[No existing implementation]"),
        ),
    ),
    PromptDefinition(
        name="debug_failing_tests",
        description="Guide for debugging and fixing failing tests",
        template="debug-failing-tests.md",
        summary="Debug and fix failing tests",
        arguments=(
            PromptArgument("failing_tests", "Details of the failing tests and error messages", True,
                           "[Failing Tests]"),
            PromptArgument("implementation_code", "Current implementation code", True, "[Implementation Code]"),
            PromptArgument("expected_behavior", "Expected behavior description", False, "[Expected Behavior]"),
        ),
    ),
)

_BY_NAME = {prompt.name: prompt for prompt in PROMPTS}


def fill_placeholders(template: str, values: Mapping[str, str]) -> str:
    """Replace every ``{{KEY}}``; unknown keys are left as they are."""
    return _PLACEHOLDER.sub(lambda match: values.get(match.group(1), match.group(0)), template)


def load_template(file_name: str, templates_dir: Optional[Path] = None) -> str:
    path = (templates_dir or TEMPLATES_DIR) / file_name
    try:
        return path.read_text(encoding="utf-8")
    except OSError as exc:
        logger.warning(f"Prompt template {path} unavailable: {exc}")
        return f"# {file_name}\n\nTemplate content not found."


def list_prompts() -> List[PromptDefinition]:
    return list(PROMPTS)


def get_prompt(
    name: str,
    arguments: Optional[Mapping[str, str]] = None,
    templates_dir: Optional[Path] = None,
) -> RenderedPrompt:
    prompt = _BY_NAME.get(name)
    if prompt is None:
        raise ValueError(f"Unknown prompt: {name}")

    args = arguments or {}
    values = {argument.placeholder: args.get(argument.name) or argument.default for argument in prompt.arguments}
    text = fill_placeholders(load_template(prompt.template, templates_dir), values)
    return RenderedPrompt(description=fill_placeholders(prompt.summary, values), text=text)
