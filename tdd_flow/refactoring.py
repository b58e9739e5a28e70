"""Heuristic code-smell detection and refactoring suggestions.

Everything here works on raw source text: brace counting for C-like
languages, indentation for Python, and line equality for duplication.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional

from .results import REFACTORING_TYPES, RefactoredCode, Refactoring
from .tdd_logging import log_performance

logger = logging.getLogger("tdd_flow.refactoring")

MIN_DUPLICATE_BLOCK = 3
LONG_METHOD_LINES = 20
LARGE_CLASS_LINES = 100
LARGE_CLASS_METHODS = 10
MIN_EXTRACTABLE_BLOCK = 5

CONTROL_KEYWORDS = {"if", "for", "while", "switch", "catch", "function", "return", "elif", "with", "else", "do"}
# Never reported as poor names: loop counters, string prefixes and short keywords.
NAMING_EXCLUDES = {
    "i", "j", "k", "f", "r", "b", "u",
    "if", "for", "in", "is", "as", "or", "and", "not", "def", "let", "var", "int", "new",
}

NAMING_SUGGESTIONS = {
    "data": "userData",
    "info": "userInfo",
    "item": "listItem",
    "thing": "object",
    "stuff": "items",
    "temp": "temporary",
    "tmp": "temporary",
}

DECISION_PATTERNS = [
    re.compile(p)
    for p in (r"if\s*\(", r"else\s+if", r"while\s*\(", r"for\s*\(", r"switch\s*\(",
              r"case\s+", r"catch\s*\(", r"&&", r"\|\|", r"\?", r"\belif\b", r"\bexcept\b")
]

BAD_NAME_PATTERNS = [
    re.compile(r"\b[a-z]\b"),
    re.compile(r"\b(data|info|item|thing|stuff|temp|tmp)\d*\b"),
    re.compile(r"\b[A-Z]{2,}\b"),
]

COMPLEX_IF = re.compile(r"if\s*\([^)]*(?:&&|\|\|)[^)]*(?:&&|\|\|)[^)]*\)")

METHOD_PATTERNS = {
    "javascript": re.compile(
        r"function\s+(\w+)\s*\([^)]*\)\s*\{|(\w+)\s*\([^)]*\)\s*\{|(\w+)\s*=\s*\([^)]*\)\s*=>\s*\{"
    ),
    "python": re.compile(r"def\s+(\w+)\s*\([^)]*\)[^:\n]*:"),
    "java": re.compile(r"(?:public|private|protected)?\s*(?:static\s+)?\w+(?:<[^>]*>)?\s+(\w+)\s*\([^)]*\)\s*\{"),
}
METHOD_PATTERNS["typescript"] = METHOD_PATTERNS["javascript"]
METHOD_PATTERNS["csharp"] = METHOD_PATTERNS["java"]

CLASS_PATTERNS = {
    "javascript": re.compile(r"class\s+(\w+)(?:\s+extends\s+\w+)?\s*\{"),
    "python": re.compile(r"class\s+(\w+)(?:\([^)]*\))?\s*:"),
    "java": re.compile(
        r"(?:public|private|protected)?\s*class\s+(\w+)(?:\s+extends\s+\w+)?(?:\s+implements\s+[\w,\s]+)?\s*\{"
    ),
}
CLASS_PATTERNS["typescript"] = CLASS_PATTERNS["javascript"]
CLASS_PATTERNS["csharp"] = re.compile(r"(?:public|private|protected|internal)?\s*class\s+(\w+)(?:\s*:\s*[\w,\s]+)?\s*\{")


@dataclass(slots=True)
class Duplication:
    start1: int
    end1: int
    start2: int
    end2: int
    size: int
    content: str

    def overlaps(self, other: "Duplication") -> bool:
        return (self.start1 <= other.end1 and self.end1 >= other.start1) or (
            self.start2 <= other.end2 and self.end2 >= other.start2
        )


@dataclass(slots=True)
class MethodInfo:
    name: str
    start_line: int
    end_line: int
    length: int
    complexity: int


@dataclass(slots=True)
class ClassInfo:
    name: str
    start_line: int
    end_line: int
    length: int
    method_count: int


@dataclass(slots=True)
class NamingIssue:
    name: str
    line: int
    suggestion: str


@dataclass(slots=True)
class ConditionalInfo:
    line: int
    condition: str
    complexity: int


@dataclass(slots=True)
class CodeAnalysis:
    language: str
    complexity: int
    duplications: List[Duplication] = field(default_factory=list)
    long_methods: List[MethodInfo] = field(default_factory=list)
    large_classes: List[ClassInfo] = field(default_factory=list)
    bad_naming: List[NamingIssue] = field(default_factory=list)
    complex_conditionals: List[ConditionalInfo] = field(default_factory=list)

    @property
    def needs_refactoring(self) -> bool:
        return bool(self.duplications or self.long_methods or self.large_classes or self.complex_conditionals)


# ---------------------------------------------------------------------------
# Detection
# ---------------------------------------------------------------------------


def detect_language(source: str) -> str:
    if "function " in source or "const " in source or "let " in source:
        if ": " in source and "interface " in source:
            return "typescript"
        return "javascript"
    if "def " in source or ("class " in source and "self" in source):
        return "python"
    if "using " in source and ("namespace " in source or "public class " in source):
        return "csharp"
    if "public class " in source or "private " in source or "public " in source:
        return "java"
    if "func " in source or "package " in source:
        return "go"
    if "fn " in source or "impl " in source or "struct " in source:
        return "rust"
    return "unknown"


def calculate_complexity(source: str) -> int:
    """Cyclomatic-style count: 1 plus every decision point found."""
    return 1 + sum(len(pattern.findall(source)) for pattern in DECISION_PATTERNS)


def _line_of(source: str, index: int) -> int:
    return source.count("\n", 0, index) + 1


def _block_end(source: str, start: int, language: str) -> int:
    """Index just past the block that starts at ``start``."""
    if language == "python":
        line_start = source.rfind("\n", 0, start) + 1
        header_indent = len(source[line_start:start]) - len(source[line_start:start].lstrip())
        offset = source.find("\n", start)
        if offset == -1:
            return len(source)
        last_body_end = offset
        for line in source[offset + 1:].split("\n"):
            line_len = len(line) + 1
            if line.strip():
                indent = len(line) - len(line.lstrip())
                if indent <= header_indent:
                    return last_body_end
                last_body_end = offset + line_len
            offset += line_len
        return len(source)

    depth = 0
    quote: Optional[str] = None
    for index in range(start, len(source)):
        char = source[index]
        if quote:
            if char == quote and source[index - 1] != "\\":
                quote = None
            continue
        if char in "\"'`":
            quote = char
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return index + 1
    return len(source)


def find_methods(source: str, language: str) -> List[MethodInfo]:
    pattern = METHOD_PATTERNS.get(language, re.compile(r"function\s+(\w+)"))
    methods = []
    for match in pattern.finditer(source):
        name = next((g for g in match.groups() if g), "unknown")
        if name in CONTROL_KEYWORDS:
            continue
        start = match.start() + (len(match.group(0)) - len(match.group(0).lstrip()))
        end = _block_end(source, start, language)
        start_line, end_line = _line_of(source, start), _line_of(source, max(end - 1, start))
        methods.append(MethodInfo(
            name=name,
            start_line=start_line,
            end_line=end_line,
            length=end_line - start_line + 1,
            complexity=calculate_complexity(source[start:end]),
        ))
    return methods


def find_long_methods(source: str, language: str) -> List[MethodInfo]:
    return [m for m in find_methods(source, language) if m.length > LONG_METHOD_LINES]


def find_large_classes(source: str, language: str) -> List[ClassInfo]:
    pattern = CLASS_PATTERNS.get(language, re.compile(r"class\s+(\w+)"))
    classes = []
    for match in pattern.finditer(source):
        start = match.start() + (len(match.group(0)) - len(match.group(0).lstrip()))
        end = _block_end(source, start, language)
        start_line, end_line = _line_of(source, start), _line_of(source, max(end - 1, start))
        length = end_line - start_line + 1
        method_count = len(find_methods(source[start:end], language))
        if length > LARGE_CLASS_LINES or method_count > LARGE_CLASS_METHODS:
            classes.append(ClassInfo(match.group(1), start_line, end_line, length, method_count))
    return classes


def _matching_block(lines: List[str], first: int, second: int) -> int:
    size = 0
    while (
        second + size < len(lines)
        and lines[first + size].strip() == lines[second + size].strip()
        and lines[first + size].strip() != ""
        and first + size < second
    ):
        size += 1
    return size


def find_duplications(source: str) -> List[Duplication]:
    lines = source.split("\n")
    found = []
    for i in range(len(lines) - MIN_DUPLICATE_BLOCK):
        for j in range(i + MIN_DUPLICATE_BLOCK, len(lines) - MIN_DUPLICATE_BLOCK + 1):
            size = _matching_block(lines, i, j)
            if size >= MIN_DUPLICATE_BLOCK:
                found.append(Duplication(i + 1, i + size, j + 1, j + size, size, "\n".join(lines[i:i + size])))

    kept: List[Duplication] = []
    for dup in sorted(found, key=lambda d: d.size, reverse=True):
        if not any(dup.overlaps(existing) for existing in kept):
            kept.append(dup)
    return kept


def suggest_name(name: str, language: str) -> str:
    base = re.sub(r"\d+$", "", name).lower()
    if base in NAMING_SUGGESTIONS:
        suggestion = NAMING_SUGGESTIONS[base]
    else:
        suggestion = f"{name}Data"
    if language == "python":
        suggestion = re.sub(r"(?<!^)([A-Z])", r"_\1", suggestion).lower()
    return suggestion


def find_bad_naming(source: str, language: str) -> List[NamingIssue]:
    issues: List[NamingIssue] = []
    seen = set()
    for pattern in BAD_NAME_PATTERNS:
        for match in pattern.finditer(source):
            name = match.group(0)
            if name in seen or name in NAMING_EXCLUDES:
                continue
            seen.add(name)
            issues.append(NamingIssue(name=name, line=_line_of(source, match.start()),
                                      suggestion=suggest_name(name, language)))
    return issues


def find_complex_conditionals(source: str) -> List[ConditionalInfo]:
    return [
        ConditionalInfo(
            line=_line_of(source, match.start()),
            condition=match.group(0),
            complexity=len(re.findall(r"&&|\|\|", match.group(0))) + 1,
        )
        for match in COMPLEX_IF.finditer(source)
    ]


def analyze_code(source: str, language: Optional[str] = None) -> CodeAnalysis:
    language = language or detect_language(source)
    return CodeAnalysis(
        language=language,
        complexity=calculate_complexity(source),
        duplications=find_duplications(source),
        long_methods=find_long_methods(source, language),
        large_classes=find_large_classes(source, language),
        bad_naming=find_bad_naming(source, language),
        complex_conditionals=find_complex_conditionals(source),
    )


def public_methods(source: str, language: Optional[str] = None) -> List[str]:
    language = language or detect_language(source)
    names = []
    for method in find_methods(source, language):
        if method.name.startswith("_") and method.name != "__init__":
            continue
        if method.name not in names:
            names.append(method.name)
    return names


# ---------------------------------------------------------------------------
# Suggestions
# ---------------------------------------------------------------------------


def extracted_method(block: str, language: str, name: str = "extractedMethod") -> str:
    if language in ("javascript", "typescript"):
        return f"private {name}() {{\n{block}\n}}\n\n// Replace original block with:\n{name}();"
    if language == "python":
        snake = re.sub(r"(?<!^)([A-Z])", r"_\1", name).lower()
        body = block.replace("\n", "\n    ")
        return f"def {snake}(self):\n    {body}\n\n# Replace original block with:\nself.{snake}()"
    if language in ("java", "csharp"):
        return f"private void {name}() {{\n{block}\n}}\n\n// Replace original block with:\n{name}();"
    return f"// Extract this block into a separate method:\n{block}"


def extractable_blocks(method_code: str) -> List[tuple[int, int, str]]:
    """Runs of at least five consecutive non-blank, non-comment lines."""
    lines = method_code.split("\n")
    blocks = []
    start = -1
    for index, raw in enumerate(lines + [""]):
        line = raw.strip()
        if line and not line.startswith(("//", "*", "#")):
            if start == -1:
                start = index
            continue
        if start != -1 and index - start >= MIN_EXTRACTABLE_BLOCK:
            blocks.append((start, index - 1, "\n".join(lines[start:index])))
        start = -1
    return blocks


def simplify_condition(condition: str, language: str = "javascript") -> str:
    inner = condition[condition.find("(") + 1:condition.rfind(")")] if "(" in condition else condition
    parts = [p.strip() for p in re.split(r"&&|\|\|", inner) if p.strip()]
    operators = re.findall(r"&&|\|\|", inner)
    declare = "" if language == "python" else "const "
    names = [f"isCondition{i + 1}" for i in range(len(parts))]

    lines = ["// Extract conditions:"]
    lines += [f"{declare}{name} = {part};" for name, part in zip(names, parts)]
    combined = names[0]
    for operator, name in zip(operators, names[1:]):
        combined += f" {operator} {name}"
    lines += ["", f"if ({combined}) {{"]
    return "\n".join(lines)


def build_refactorings(source: str, refactor_type: str, analysis: CodeAnalysis) -> List[Refactoring]:
    lines = source.split("\n")
    language = analysis.language

    if refactor_type == "extract_method":
        suggestions = []
        for method in analysis.long_methods:
            method_code = "\n".join(lines[method.start_line - 1:method.end_line])
            for start, end, block in extractable_blocks(method_code):
                suggestions.append(Refactoring(
                    type="extract_method",
                    description=f"Extract method from lines {method.start_line + start} to {method.start_line + end}",
                    before=block,
                    after=extracted_method(block, language),
                    rationale="Reduce method length and improve readability",
                    impact="medium",
                ))
        return suggestions

    if refactor_type == "remove_duplication":
        return [
            Refactoring(
                type="remove_duplication",
                description=(
                    f"Remove code duplication between lines {d.start1}-{d.end1} and {d.start2}-{d.end2}"
                ),
                before=d.content,
                after="// Extract duplicated code into:\n" + extracted_method(d.content, language, "sharedMethod"),
                rationale="Eliminate code duplication and improve maintainability",
                impact="high",
            )
            for d in analysis.duplications
        ]

    if refactor_type == "improve_naming":
        return [
            Refactoring(
                type="improve_naming",
                description=f'Improve naming: "{issue.name}" → "{issue.suggestion}"',
                before=issue.name,
                after=issue.suggestion,
                rationale=f'Consider using a more descriptive name instead of "{issue.name}"',
                impact="low",
            )
            for issue in analysis.bad_naming
        ]

    if refactor_type == "simplify_conditional":
        return [
            Refactoring(
                type="simplify_conditional",
                description=f"Simplify complex conditional at line {c.line}",
                before=c.condition,
                after=simplify_condition(c.condition, language),
                rationale="Consider extracting conditions into separate boolean variables",
                impact="medium",
            )
            for c in analysis.complex_conditionals
        ]

    if refactor_type == "extract_class":
        return [
            Refactoring(
                type="extract_class",
                description=(
                    f'Extract class from large class "{c.name}" ({c.length} lines, {c.method_count} methods)'
                ),
                before=f"Class {c.name} with {c.method_count} methods",
                after=f"Split into {c.name} and {c.name}Helper classes",
                rationale="Reduce class size and improve single responsibility principle",
                impact="high",
            )
            for c in analysis.large_classes
        ]

    # move_method needs cross-class usage data that a single snippet cannot give.
    return []


def apply_refactorings(source: str, refactorings: List[Refactoring]) -> str:
    """Apply the mechanical ones (renames); the rest stay as suggestions."""
    result = source
    for refactoring in refactorings:
        if refactoring.type == "improve_naming":
            result = re.sub(rf"\b{re.escape(refactoring.before)}\b", refactoring.after, result)
    return result


class RefactoringAnalyzer:
    """Suggest and apply refactorings for one source snippet."""

    @log_performance("refactor_code")
    def refactor_code(
        self,
        source_code: str,
        refactor_type: str,
        preserve_tests: bool = True,
        refactoring_goals: Optional[List[str]] = None,
    ) -> RefactoredCode:
        if refactor_type not in REFACTORING_TYPES:
            raise ValueError(f"Invalid refactor type: {refactor_type}. Expected one of {', '.join(REFACTORING_TYPES)}")

        analysis = analyze_code(source_code)
        refactorings = build_refactorings(source_code, refactor_type, analysis)
        refactored = apply_refactorings(source_code, refactorings)

        if preserve_tests:
            remaining = set(public_methods(refactored, analysis.language))
            for method in public_methods(source_code, analysis.language):
                if method not in remaining:
                    raise ValueError(f"Refactoring would break tests: method {method} is no longer available")

        logger.info(f"Produced {len(refactorings)} {refactor_type} suggestions for {analysis.language} code")
        return RefactoredCode(
            original_code=source_code,
            refactored_code=refactored,
            refactorings=refactorings,
            preserves_tests=preserve_tests,
            refactoring_goals=list(refactoring_goals or []),
        )
