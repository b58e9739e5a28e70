"""Registry of the test frameworks the generators and runners understand."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

SUPPORTED_LANGUAGES = ("typescript", "javascript", "python", "java", "csharp", "go", "rust", "php")


@dataclass(frozen=True, slots=True)
class FrameworkCommands:
    install: str
    run: str
    watch: Optional[str] = None
    coverage: Optional[str] = None
    init: Optional[str] = None


@dataclass(frozen=True, slots=True)
class TestFramework:
    """Static description of a test framework."""

    __test__ = False

    key: str
    name: str
    language: str
    supported_test_types: tuple
    config_files: tuple
    test_file_patterns: tuple
    commands: FrameworkCommands
    dependencies: tuple = field(default_factory=tuple)
    dev_dependencies: tuple = field(default_factory=tuple)

    def supports_language(self, language: str) -> bool:
        language = (language or "").lower()
        if language == self.language:
            return True
        # JS and TS share the same runners.
        return self.language == "typescript" and language == "javascript"

    def to_dict(self) -> Dict[str, object]:
        return {
            "key": self.key,
            "name": self.name,
            "language": self.language,
            "supportedTestTypes": list(self.supported_test_types),
            "configFiles": list(self.config_files),
            "testFilePatterns": list(self.test_file_patterns),
            "commands": {k: v for k, v in {
                "install": self.commands.install,
                "run": self.commands.run,
                "watch": self.commands.watch,
                "coverage": self.commands.coverage,
                "init": self.commands.init,
            }.items() if v is not None},
            "dependencies": list(self.dependencies),
            "devDependencies": list(self.dev_dependencies),
        }


SUPPORTED_FRAMEWORKS: Dict[str, TestFramework] = {
    "jest": TestFramework(
        key="jest",
        name="Jest",
        language="typescript",
        supported_test_types=("unit", "integration"),
        config_files=("jest.config.js", "jest.config.ts", "jest.config.json"),
        test_file_patterns=("**/*.test.{js,ts}", "**/*.spec.{js,ts}", "**/__tests__/**/*.{js,ts}"),
        commands=FrameworkCommands(
            install="npm install --save-dev jest @types/jest ts-jest",
            run="jest",
            watch="jest --watch",
            coverage="jest --coverage",
            init="jest --init",
        ),
        dev_dependencies=("jest", "@types/jest", "ts-jest"),
    ),
    "mocha": TestFramework(
        key="mocha",
        name="Mocha",
        language="typescript",
        supported_test_types=("unit", "integration", "e2e"),
        config_files=(".mocharc.json", ".mocharc.js", ".mocharc.yaml"),
        test_file_patterns=("test/**/*.{js,ts}", "tests/**/*.{js,ts}", "**/*.test.{js,ts}"),
        commands=FrameworkCommands(
            install="npm install --save-dev mocha @types/mocha chai @types/chai ts-node",
            run="mocha",
            watch="mocha --watch",
            coverage="nyc mocha",
        ),
        dev_dependencies=("mocha", "@types/mocha", "chai", "@types/chai", "nyc"),
    ),
    "vitest": TestFramework(
        key="vitest",
        name="Vitest",
        language="typescript",
        supported_test_types=("unit", "integration"),
        config_files=("vitest.config.ts", "vitest.config.js", "vite.config.ts"),
        test_file_patterns=("**/*.test.{js,ts}", "**/*.spec.{js,ts}"),
        commands=FrameworkCommands(
            install="npm install --save-dev vitest",
            run="vitest run",
            watch="vitest",
            coverage="vitest run --coverage",
        ),
        dev_dependencies=("vitest",),
    ),
    "pytest": TestFramework(
        key="pytest",
        name="pytest",
        language="python",
        supported_test_types=("unit", "integration", "e2e"),
        config_files=("pytest.ini", "pyproject.toml", "setup.cfg"),
        test_file_patterns=("test_*.py", "*_test.py", "tests/**/*.py"),
        commands=FrameworkCommands(
            install="pip install pytest pytest-cov",
            run="pytest",
            watch="pytest-watch",
            coverage="pytest --cov",
        ),
        dependencies=("pytest",),
        dev_dependencies=("pytest-cov", "pytest-watch"),
    ),
    "unittest": TestFramework(
        key="unittest",
        name="unittest",
        language="python",
        supported_test_types=("unit", "integration"),
        config_files=(),
        test_file_patterns=("test_*.py", "*_test.py", "tests/**/*.py"),
        commands=FrameworkCommands(
            install="",
            run="python -m unittest discover",
            coverage="coverage run -m unittest discover && coverage report",
        ),
        dev_dependencies=("coverage",),
    ),
    "junit5": TestFramework(
        key="junit5",
        name="JUnit 5",
        language="java",
        supported_test_types=("unit", "integration"),
        config_files=("junit-platform.properties",),
        test_file_patterns=("**/*Test.java", "**/*Tests.java"),
        commands=FrameworkCommands(install="", run="mvn test", coverage="mvn test jacoco:report"),
        dependencies=("org.junit.jupiter:junit-jupiter",),
    ),
    "xunit": TestFramework(
        key="xunit",
        name="xUnit",
        language="csharp",
        supported_test_types=("unit", "integration"),
        config_files=(),
        test_file_patterns=("**/*Test.cs", "**/*Tests.cs"),
        commands=FrameworkCommands(
            install="dotnet add package xunit dotnet add package xunit.runner.visualstudio",
            run="dotnet test",
            coverage='dotnet test --collect:"XPlat Code Coverage"',
        ),
        dependencies=("xunit", "xunit.runner.visualstudio"),
    ),
    "gotest": TestFramework(
        key="gotest",
        name="Go Test",
        language="go",
        supported_test_types=("unit", "integration", "performance"),
        config_files=(),
        test_file_patterns=("*_test.go",),
        commands=FrameworkCommands(install="", run="go test ./...", coverage="go test -cover ./..."),
    ),
    "cargo_test": TestFramework(
        key="cargo_test",
        name="Cargo Test",
        language="rust",
        supported_test_types=("unit", "integration"),
        config_files=("Cargo.toml",),
        test_file_patterns=("src/**/*.rs", "tests/**/*.rs"),
        commands=FrameworkCommands(install="", run="cargo test", coverage="cargo tarpaulin"),
        dev_dependencies=("tarpaulin",),
    ),
    "phpunit": TestFramework(
        key="phpunit",
        name="PHPUnit",
        language="php",
        supported_test_types=("unit", "integration"),
        config_files=("phpunit.xml", "phpunit.xml.dist"),
        test_file_patterns=("**/*Test.php", "**/Test*.php"),
        commands=FrameworkCommands(
            install="composer require --dev phpunit/phpunit",
            run="./vendor/bin/phpunit",
            coverage="./vendor/bin/phpunit --coverage-html coverage",
        ),
        dev_dependencies=("phpunit/phpunit",),
    ),
}


def get_framework(name: str) -> Optional[TestFramework]:
    """Look a framework up by registry key or by display name, case-insensitively."""
    if not name:
        return None
    wanted = name.strip().lower()
    if wanted in SUPPORTED_FRAMEWORKS:
        return SUPPORTED_FRAMEWORKS[wanted]
    for framework in SUPPORTED_FRAMEWORKS.values():
        if framework.name.lower() == wanted:
            return framework
    return None


def frameworks_for_language(language: str) -> List[TestFramework]:
    return [f for f in SUPPORTED_FRAMEWORKS.values() if f.supports_language(language)]


def is_framework_supported(framework: str, language: str) -> bool:
    found = get_framework(framework)
    return found is not None and found.supports_language(language)
