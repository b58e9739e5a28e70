"""Generate implementation skeletons from test code.

Tests are parsed with regular expressions, one parser per language family.
Each parsed test yields the class under test, the methods it calls, the
assertions it makes and whether it expects an error.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Callable, Dict, List

from .results import GeneratedImplementation
from .tdd_logging import log_performance

logger = logging.getLogger("tdd_flow.codegen")

IMPLEMENTATION_STYLES = ("minimal", "comprehensive", "production-ready")
DEFAULT_CLASS_NAME = "TestSubject"

_METHOD_CALL = re.compile(r"\.(\w+)\(")
_QUOTED = r"['\"`]([^'\"`]+)['\"`]"

# Assertion and matcher helpers show up as ".name(" calls but are not part of
# the class under test.
_MATCHER = re.compile(r"^(to[A-Z]\w*|not|resolves|rejects|raises|assert\w*|Assert\w*|Throws\w*|NotNull|Null|Equal|True|False|That)$")
_ASSERTION_OWNERS = re.compile(r"\b(?:Assert|Assertions|pytest|self|expect\([^)]*\))\.(\w+)\(")


@dataclass(slots=True)
class TestRequirement:
    """What a single parsed test expects from the code under test."""

    __test__ = False

    class_name: str
    test_name: str
    method_calls: List[str] = field(default_factory=list)
    expectations: List[str] = field(default_factory=list)
    should_throw: bool = False


def extract_method_calls(block: str) -> List[str]:
    """Method names invoked in ``block``, minus assertion and matcher helpers."""
    helpers = set(_ASSERTION_OWNERS.findall(block))
    return [
        name for name in _METHOD_CALL.findall(block)
        if name not in helpers and not _MATCHER.match(name)
    ]


def _first_constructor(test_code: str, pattern: str) -> str:
    match = re.search(pattern, test_code)
    return match.group(1) if match else DEFAULT_CLASS_NAME


# ---------------------------------------------------------------------------
# Parsers
# ---------------------------------------------------------------------------


def parse_javascript_tests(test_code: str) -> List[TestRequirement]:
    describe = re.search(r"describe\(" + _QUOTED, test_code)
    class_name = describe.group(1) if describe else DEFAULT_CLASS_NAME

    requirements = []
    for block in re.finditer(r"it\(" + _QUOTED + r".*?\}\);?", test_code, re.DOTALL):
        text = block.group(0)
        requirements.append(TestRequirement(
            class_name=class_name,
            test_name=block.group(1),
            method_calls=extract_method_calls(text),
            expectations=re.findall(r"expect\([^)]*\)\.([^(]+)", text),
            should_throw="toThrow" in text or "throws" in text or "to.throw" in text,
        ))
    return requirements


def parse_python_tests(test_code: str) -> List[TestRequirement]:
    class_name = _first_constructor(test_code, r"([A-Z][a-zA-Z0-9]*)\(\)")

    requirements = []
    for block in re.finditer(r"def (test_[^(]+)\([^)]*\):.*?(?=def test_|\Z)", test_code, re.DOTALL):
        text = block.group(0)
        requirements.append(TestRequirement(
            class_name=class_name,
            test_name=block.group(1),
            method_calls=extract_method_calls(text),
            expectations=[e.strip() for e in re.findall(r"assert\s+([^#\n]+)", text)],
            should_throw="pytest.raises" in text or "assertRaises" in text,
        ))
    return requirements


def _parse_brace_tests(test_code: str, marker: str, throws: str, assertion: str) -> List[TestRequirement]:
    class_name = _first_constructor(test_code, r"new ([A-Z][a-zA-Z0-9]*)\(\)")

    requirements = []
    for block in re.finditer(marker + r".*?public void ([^(]+)[^}]+\}", test_code, re.DOTALL):
        text = block.group(0)
        requirements.append(TestRequirement(
            class_name=class_name,
            test_name=block.group(1).strip(),
            method_calls=extract_method_calls(text),
            expectations=re.findall(assertion, text),
            should_throw=throws in text,
        ))
    return requirements


def parse_java_tests(test_code: str) -> List[TestRequirement]:
    return _parse_brace_tests(test_code, r"@Test", "assertThrows", r"assert\w*\([^)]+\)")


def parse_csharp_tests(test_code: str) -> List[TestRequirement]:
    return _parse_brace_tests(test_code, r"\[(?:Test|Fact)\]", "Assert.Throws", r"Assert\.\w+\([^)]+\)")


PARSERS: Dict[str, Callable[[str], List[TestRequirement]]] = {
    "typescript": parse_javascript_tests,
    "javascript": parse_javascript_tests,
    "python": parse_python_tests,
    "java": parse_java_tests,
    "csharp": parse_csharp_tests,
}


def extract_test_names(test_code: str) -> List[str]:
    names = re.findall(r"it\(" + _QUOTED, test_code)
    names += re.findall(r"def (test_[^(]+)", test_code)
    names += re.findall(r"public void ([^(\s]+)\s*\(", test_code)
    return [name for name in names if name]


# ---------------------------------------------------------------------------
# Generator
# ---------------------------------------------------------------------------


class CodeGenerator:
    """Build the smallest class that satisfies a set of tests."""

    @log_performance("generate_implementation")
    def generate_implementation(
        self,
        test_code: str,
        language: str,
        implementation_style: str = "minimal",
    ) -> GeneratedImplementation:
        if implementation_style not in IMPLEMENTATION_STYLES:
            raise ValueError(
                f"Invalid implementation style: {implementation_style}. "
                f"Expected one of {', '.join(IMPLEMENTATION_STYLES)}"
            )
        parser = PARSERS.get(language)
        if parser is None:
            raise NotImplementedError(f"Test parsing not implemented for language: {language}")

        requirements = parser(test_code or "")
        if not requirements:
            raise ValueError("No requirements could be parsed from test code")

        class_name = requirements[0].class_name
        methods = _unique_methods(requirements)
        code = self._render_class(class_name, methods, requirements, language, implementation_style)

        logger.info(f"Generated {implementation_style} {language} implementation of {class_name} "
                    f"with {len(methods)} methods")
        return GeneratedImplementation(
            language=language,
            code=code,
            imports=_imports(requirements, language),
            exports=[class_name],
            dependencies=[],
            based_on_tests=extract_test_names(test_code),
            implementation_style=implementation_style,
        )

    def _render_class(
        self,
        class_name: str,
        methods: List[str],
        requirements: List[TestRequirement],
        language: str,
        style: str,
    ) -> str:
        rendered = []
        for method in methods:
            throws = any(req.should_throw for req in requirements if method in req.method_calls)
            rendered.append(_METHOD_RENDERERS[language](method, throws, style))

        if language == "python":
            body = "\n\n".join(rendered) if rendered else "    pass"
            return f'class {class_name}:\n    """{class_name} implementation generated from tests."""\n\n{body}\n'
        if language == "typescript":
            return f"export class {class_name} {{\n" + "\n\n".join(rendered) + "\n}\n"
        if language == "javascript":
            return f"class {class_name} {{\n" + "\n\n".join(rendered) + f"\n}}\n\nmodule.exports = {class_name};\n"
        if language == "java":
            return f"public class {class_name} {{\n" + "\n\n".join(rendered) + "\n}\n"
        return f"public class {class_name}\n{{\n" + "\n\n".join(rendered) + "\n}\n"


def _unique_methods(requirements: List[TestRequirement]) -> List[str]:
    seen: Dict[str, None] = {}
    for req in requirements:
        for call in req.method_calls:
            seen.setdefault(call, None)
    return list(seen)


def _imports(requirements: List[TestRequirement], language: str) -> List[str]:
    if language == "python":
        return ["from typing import Any, Optional"] if any(r.should_throw for r in requirements) else []
    if language == "java":
        return ["import java.util.*;"]
    if language == "csharp":
        return ["using System;"]
    return []


def _python_method(name: str, throws: bool, style: str) -> str:
    if style == "minimal":
        if throws:
            return f"    def {name}(self, *args, **kwargs):\n        raise NotImplementedError('Not implemented')"
        return f"    def {name}(self, *args, **kwargs):\n        return None"

    lines = [
        f"    def {name}(self, data=None):",
        f'        """{name} implementation based on tests."""',
    ]
    if style == "production-ready" or throws:
        lines += [
            "        if data is None:",
            f"            raise ValueError('{name} requires input data')",
        ]
    lines.append("        return data")
    return "\n".join(lines)


def _javascript_method(name: str, throws: bool, style: str) -> str:
    if style == "minimal":
        if throws:
            return f"  {name}() {{\n    throw new Error('Not implemented');\n  }}"
        return f"  {name}() {{\n    return null;\n  }}"

    lines = [f"  {name}(data = null) {{"]
    if style == "production-ready" or throws:
        lines += [
            "    if (data === null || data === undefined) {",
            f"      throw new Error('{name} requires input data');",
            "    }",
        ]
    lines += ["    return data;", "  }"]
    return "\n".join(lines)


def _java_method(name: str, throws: bool, style: str) -> str:
    signature = f"    public Object {name}(Object data) {{"
    if style == "minimal":
        if throws:
            return f'{signature}\n        throw new UnsupportedOperationException("Not implemented");\n    }}'
        return f"{signature}\n        return null;\n    }}"

    lines = [signature]
    if style == "production-ready" or throws:
        lines += [
            "        if (data == null) {",
            f'            throw new IllegalArgumentException("{name} requires input data");',
            "        }",
        ]
    lines += ["        return data;", "    }"]
    return "\n".join(lines)


def _csharp_method(name: str, throws: bool, style: str) -> str:
    signature = f"    public object {name}(object data = null)\n    {{"
    if style == "minimal":
        if throws:
            return f'{signature}\n        throw new NotImplementedException("Not implemented");\n    }}'
        return f"{signature}\n        return default;\n    }}"

    lines = [signature]
    if style == "production-ready" or throws:
        lines += [
            "        if (data == null)",
            "        {",
            f'            throw new ArgumentNullException(nameof(data), "{name} requires input data");',
            "        }",
        ]
    lines += ["        return data;", "    }"]
    return "\n".join(lines)


_METHOD_RENDERERS: Dict[str, Callable[[str, bool, str], str]] = {
    "python": _python_method,
    "typescript": _javascript_method,
    "javascript": _javascript_method,
    "java": _java_method,
    "csharp": _csharp_method,
}
