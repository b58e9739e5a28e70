"""The one-tool-per-operation surface (15 tools)."""

from __future__ import annotations

import copy
import logging
import uuid
from typing import Any, Callable, Dict, List, Optional

from .config import ServerConfig
from .features import DEFAULT_PROJECT_ID
from .models import TDDSession, TDDStage, TestExecutionResult, TestMethod, utc_now
from .services import Services, ToolResult, error_result, json_result, missing_fields
from .tdd_logging import log_error_with_context, log_stage_change, log_test_result

logger = logging.getLogger("tdd_flow.tools")

LANGUAGES = ["typescript", "javascript", "python", "java", "csharp", "go", "rust", "php"]
TEST_TYPES = ["unit", "integration", "e2e", "performance"]
REFACTOR_TYPES = [
    "extract_method",
    "remove_duplication",
    "improve_naming",
    "simplify_conditional",
    "extract_class",
    "move_method",
]
STRING_LIST = {"type": "array", "items": {"type": "string"}}
PERCENT = {"type": "number", "minimum": 0, "maximum": 100}


def _prop(type_: str, description: Optional[str] = None, **extra: Any) -> Dict[str, Any]:
    prop: Dict[str, Any] = {"type": type_}
    if description:
        prop["description"] = description
    prop.update(extra)
    return prop


def _list(description: str) -> Dict[str, Any]:
    return {**STRING_LIST, "description": description}


def _tool(name: str, description: str, properties: Dict[str, Any], required: List[str]) -> Dict[str, Any]:
    return {
        "name": name,
        "description": description,
        "inputSchema": {"type": "object", "properties": properties, "required": required},
    }


TOOLS: List[Dict[str, Any]] = [
    _tool(
        "generate_test_cases",
        "Generate comprehensive test cases from requirements using TDD best practices",
        {
            "requirements": _prop("string", "Detailed requirements for the feature to be tested"),
            "language": _prop("string", "Programming language for the tests", enum=LANGUAGES),
            "framework": _prop("string", "Testing framework to use (e.g., jest, pytest, junit5)"),
            "testType": _prop("string", "Type of tests to generate", enum=TEST_TYPES),
            "existingCode": _prop("string", "Existing code to base tests on (optional)"),
        },
        ["requirements", "language", "framework", "testType"],
    ),
    _tool(
        "implement_from_tests",
        "Generate implementation code that passes the given tests",
        {
            "testCode": _prop("string", "Test code that the implementation should satisfy"),
            "language": _prop("string", "Programming language for the implementation", enum=LANGUAGES),
            "implementationStyle": _prop(
                "string",
                "Style of implementation to generate",
                enum=["minimal", "comprehensive", "production-ready"],
                default="minimal",
            ),
            "architecturalConstraints": _prop(
                "string", "Architectural constraints or patterns to follow (optional)"
            ),
        },
        ["testCode", "language"],
    ),
    _tool(
        "run_tests",
        "Execute tests and return detailed results",
        {
            "projectPath": _prop("string", "Path to the project containing tests"),
            "testFiles": _list("Specific test files to run (optional, runs all if not specified)"),
            "testFramework": _prop("string", "Testing framework being used"),
            "options": _prop(
                "object",
                properties={
                    "verbose": {"type": "boolean", "default": False},
                    "coverage": {"type": "boolean", "default": False},
                    "watch": {"type": "boolean", "default": False},
                    "parallel": {"type": "boolean", "default": True},
                },
            ),
        },
        ["projectPath", "testFramework"],
    ),
    _tool(
        "analyze_coverage",
        "Analyze code coverage and generate detailed reports",
        {
            "projectPath": _prop("string", "Path to the project to analyze"),
            "testCommand": _prop("string", "Command to run tests with coverage"),
            "thresholds": _prop(
                "object",
                properties={
                    "lines": PERCENT,
                    "functions": PERCENT,
                    "branches": PERCENT,
                    "statements": PERCENT,
                },
            ),
            "outputFormat": _prop("string", enum=["json", "html", "lcov", "text"], default="json"),
        },
        ["projectPath", "testCommand"],
    ),
    _tool(
        "refactor_code",
        "Provide code refactoring suggestions and implementations",
        {
            "sourceCode": _prop("string", "Source code to refactor"),
            "refactorType": _prop(
                "string",
                "Type of refactoring to perform",
                enum=REFACTOR_TYPES,
            ),
            "preserveTests": _prop("boolean", "Ensure refactoring preserves test compatibility", default=True),
            "refactoringGoals": _list("Specific refactoring goals or objectives"),
        },
        ["sourceCode", "refactorType"],
    ),
    _tool(
        "validate_tdd_cycle",
        "Validate adherence to TDD red-green-refactor cycle",
        {
            "projectPath": _prop("string", "Path to the project to validate"),
            "gitHistory": _list("Git commit history to analyze (optional)"),
            "timeWindow": _prop("string", 'Time window to analyze (e.g., "1 hour", "1 day")', default="1 hour"),
        },
        ["projectPath"],
    ),
    _tool(
        "createFeature",
        "Create a new feature with TDD requirements and acceptance criteria",
        {
            "name": _prop("string", "Name of the feature"),
            "description": _prop("string", "Detailed description of the feature"),
            "acceptanceCriteria": _list("List of acceptance criteria for the feature"),
            "priority": _prop(
                "string",
                "Priority level of the feature",
                enum=["low", "medium", "high", "critical"],
                default="medium",
            ),
            "projectId": _prop("string", "Project ID (optional, uses current project if not specified)"),
            "tags": _list("Tags for categorizing the feature"),
            "estimatedHours": _prop("number", "Estimated development hours"),
            "assignee": _prop("string", "Developer assigned to this feature"),
        },
        ["name", "description", "acceptanceCriteria"],
    ),
    _tool(
        "updateFeatureStatus",
        "Update the status and progress of a feature",
        {
            "featureId": _prop("string", "Unique identifier of the feature"),
            "status": _prop(
                "string",
                "New status of the feature",
                enum=["planning", "in_progress", "completed", "on_hold", "cancelled"],
            ),
            "progress": _prop(
                "object",
                "Progress information for the feature",
                properties={
                    "testsWritten": {"type": "number"},
                    "testsPass": {"type": "number"},
                    "implementationFiles": STRING_LIST,
                    "coveragePercentage": PERCENT,
                },
            ),
            "notes": _prop("string", "Additional notes about the status update"),
        },
        ["featureId", "status"],
    ),
    _tool(
        "linkFeatureFiles",
        "Associate files with a feature for tracking purposes",
        {
            "featureId": _prop("string", "Unique identifier of the feature"),
            "filePaths": _list("List of file paths to associate with the feature"),
            "fileType": _prop(
                "string",
                "Type of files being associated",
                enum=["test", "implementation", "config", "documentation"],
            ),
        },
        ["featureId", "filePaths", "fileType"],
    ),
    _tool(
        "findSimilarFeatures",
        "Find features similar to a given description or query",
        {
            "query": _prop("string", "Search query or description to find similar features"),
            "projectId": _prop("string", "Project ID to search within (optional)"),
            "maxResults": _prop("number", "Maximum number of results to return", default=10),
            "minSimilarity": _prop("number", "Minimum similarity threshold (0-1)", default=0.3),
        },
        ["query"],
    ),
    _tool(
        "createTDDSession",
        "Start a new TDD development session for a feature",
        {
            "featureId": _prop("string", "Feature ID this TDD session is for"),
            "developer": _prop("string", "Name or identifier of the developer"),
            "projectId": _prop("string", "Project ID (optional)"),
            "initialNotes": _prop("string", "Initial notes for the session"),
        },
        ["featureId", "developer"],
    ),
    _tool(
        "updateTDDStage",
        "Update the current stage of a TDD session (RED/GREEN/REFACTOR)",
        {
            "sessionId": _prop("string", "TDD session identifier"),
            "stage": _prop("string", "Current TDD cycle stage", enum=["red", "green", "refactor"]),
            "notes": _prop("string", "Notes about the stage transition"),
            "testFiles": _list("Test files involved in this stage"),
            "implementationFiles": _list("Implementation files involved in this stage"),
        },
        ["sessionId", "stage"],
    ),
    _tool(
        "registerTestMethod",
        "Register a test method with the system for tracking",
        {
            "featureId": _prop("string", "Feature ID this test belongs to"),
            "name": _prop("string", "Name of the test method"),
            "filePath": _prop("string", "Path to the test file"),
            "framework": _prop("string", "Testing framework being used"),
            "testType": _prop("string", "Type of test", enum=TEST_TYPES, default="unit"),
            "projectId": _prop("string", "Project ID (optional)"),
        },
        ["featureId", "name", "filePath", "framework"],
    ),
    _tool(
        "updateTestExecutionResult",
        "Update the execution result of a test method",
        {
            "methodId": _prop("string", "Test method identifier"),
            "result": _prop(
                "object",
                "Test execution result details",
                properties={
                    "duration": _prop("number", "Test execution duration in milliseconds"),
                    "passed": _prop("boolean", "Whether the test passed"),
                    "output": _prop("string", "Test output"),
                    "error": _prop("string", "Error message if test failed"),
                    "coverage": _prop("number", "Code coverage percentage"),
                },
                required=["duration", "passed"],
            ),
        },
        ["methodId", "result"],
    ),
    _tool(
        "updateTestMethodStatus",
        "Update the status of a test method",
        {
            "methodId": _prop("string", "Test method identifier"),
            "status": _prop(
                "string",
                "New status of the test method",
                enum=["passed", "failed", "skipped", "pending"],
            ),
        },
        ["methodId", "status"],
    ),
]

_SCHEMAS = {tool["name"]: tool["inputSchema"] for tool in TOOLS}


class LegacyToolsHandler:
    """Dispatch each legacy tool name to its service call.

    Every handler returns the service result as pretty-printed JSON. Any
    exception is reported as ``Error executing tool <name>: <message>``.
    """

    def __init__(self, config: ServerConfig, services: Optional[Services] = None):
        self.config = config
        self.services = services or Services.from_config(config)
        self._handlers: Dict[str, Callable[[Dict[str, Any]], ToolResult]] = {
            "generate_test_cases": self._generate_test_cases,
            "implement_from_tests": self._implement_from_tests,
            "run_tests": self._run_tests,
            "analyze_coverage": self._analyze_coverage,
            "refactor_code": self._refactor_code,
            "validate_tdd_cycle": self._validate_tdd_cycle,
            "createFeature": self._create_feature,
            "updateFeatureStatus": self._update_feature_status,
            "linkFeatureFiles": self._link_feature_files,
            "findSimilarFeatures": self._find_similar_features,
            "createTDDSession": self._create_tdd_session,
            "updateTDDStage": self._update_tdd_stage,
            "registerTestMethod": self._register_test_method,
            "updateTestExecutionResult": self._update_test_execution_result,
            "updateTestMethodStatus": self._update_test_method_status,
        }

    def list_tools(self, locale: Optional[str] = None) -> List[Dict[str, Any]]:
        # Legacy descriptions are English only.
        return copy.deepcopy(TOOLS)

    def call_tool(self, name: str, arguments: Optional[Dict[str, Any]] = None, locale: Optional[str] = None) -> ToolResult:
        args = arguments or {}
        try:
            handler = self._handlers.get(name)
            if handler is None:
                raise ValueError(f"Unknown tool: {name}")
            missing = missing_fields(args, _SCHEMAS[name]["required"])
            if missing:
                raise ValueError(f"Missing required parameter: {', '.join(missing)}")
            return handler(args)
        except Exception as exc:
            log_error_with_context(exc, {"operation": "call_tool", "tool": name})
            return error_result(f"Error executing tool {name}: {exc}")

    # ------------------------------------------------------------------
    # TDD operations
    # ------------------------------------------------------------------

    def _generate_test_cases(self, args: Dict[str, Any]) -> ToolResult:
        result = self.services.test_generator.generate_tests(
            args["requirements"], args["language"], args["framework"], args.get("testType") or "unit"
        )
        return json_result(result)

    def _implement_from_tests(self, args: Dict[str, Any]) -> ToolResult:
        result = self.services.code_generator.generate_implementation(
            args["testCode"], args["language"], args.get("implementationStyle") or "minimal"
        )
        return json_result(result)

    def _run_tests(self, args: Dict[str, Any]) -> ToolResult:
        options = args.get("options") or {}
        if options.get("watch"):
            logger.info("Watch mode is not supported over MCP; running tests once")
        result = self.services.test_runner.run_tests(
            args["projectPath"],
            args["testFramework"],
            args.get("testFiles"),
            coverage=bool(options.get("coverage", False)),
            verbose=bool(options.get("verbose", False)),
            parallel=bool(options.get("parallel", True)),
        )
        return json_result(result)

    def _analyze_coverage(self, args: Dict[str, Any]) -> ToolResult:
        thresholds = args.get("thresholds") or {"lines": self.config.coverage_threshold}
        result = self.services.coverage_analyzer.analyze_coverage(
            args["projectPath"], args["testCommand"], thresholds, args.get("outputFormat") or "json"
        )
        return json_result(result)

    def _refactor_code(self, args: Dict[str, Any]) -> ToolResult:
        result = self.services.refactoring.refactor_code(
            args["sourceCode"],
            args["refactorType"],
            preserve_tests=args.get("preserveTests") is not False,
            refactoring_goals=args.get("refactoringGoals") or [],
        )
        return json_result(result)

    def _validate_tdd_cycle(self, args: Dict[str, Any]) -> ToolResult:
        result = self.services.cycle_validator.validate_cycle(
            args["projectPath"], args.get("gitHistory"), args.get("timeWindow") or "1 hour"
        )
        return json_result(result)

    # ------------------------------------------------------------------
    # Feature management
    # ------------------------------------------------------------------

    def _create_feature(self, args: Dict[str, Any]) -> ToolResult:
        feature = self.services.features.create_feature(
            args["name"],
            args.get("description") or "",
            args.get("acceptanceCriteria") or [],
            priority=args.get("priority"),
            project_id=args.get("projectId"),
            tags=args.get("tags"),
            estimated_hours=args.get("estimatedHours"),
            assignee=args.get("assignee"),
        )
        return json_result(feature)

    def _update_feature_status(self, args: Dict[str, Any]) -> ToolResult:
        feature = self.services.features.update_feature_status(
            args["featureId"], args["status"], progress=args.get("progress"), notes=args.get("notes")
        )
        return json_result(feature)

    def _link_feature_files(self, args: Dict[str, Any]) -> ToolResult:
        associations = self.services.features.link_feature_files(
            args["featureId"], args.get("filePaths") or [], args["fileType"]
        )
        return json_result(associations)

    def _find_similar_features(self, args: Dict[str, Any]) -> ToolResult:
        project_id = args.get("projectId") or self.services.features.get_current_project()
        if not project_id:
            raise ValueError("Project ID is required. Please provide projectId or set current project.")
        matches = self.services.features.find_similar_features(
            args["query"],
            project_id,
            int(args.get("maxResults") or 10),
            float(args["minSimilarity"]) if args.get("minSimilarity") is not None else 0.3,
        )
        return json_result(matches)

    # ------------------------------------------------------------------
    # TDD sessions and test tracking
    # ------------------------------------------------------------------

    def _project_id(self, args: Dict[str, Any]) -> str:
        return args.get("projectId") or self.services.features.get_current_project() or DEFAULT_PROJECT_ID

    def _create_tdd_session(self, args: Dict[str, Any]) -> ToolResult:
        now = utc_now()
        session = TDDSession(
            id=str(uuid.uuid4()),
            feature_id=args["featureId"],
            project_id=self._project_id(args),
            developer=args["developer"],
            stage=TDDStage.RED.value,
            started_at=now,
            updated_at=now,
            notes=args.get("initialNotes"),
        )
        self.services.storage.save_tdd_session(session)
        log_stage_change(session.id, session.stage, feature_id=session.feature_id)
        return json_result(session)

    def _update_tdd_stage(self, args: Dict[str, Any]) -> ToolResult:
        session_id = args["sessionId"]
        if self.services.storage.load_tdd_session(session_id) is None:
            raise ValueError(f"TDD session not found: {session_id}")
        updated = self.services.storage.update_tdd_session_stage(
            session_id,
            args["stage"],
            notes=args.get("notes"),
            test_files=args.get("testFiles"),
            implementation_files=args.get("implementationFiles"),
        )
        if updated is None:
            raise ValueError(f"Failed to update TDD session stage: {session_id}")
        log_stage_change(updated.id, updated.stage, feature_id=updated.feature_id)
        return json_result(updated)

    def _register_test_method(self, args: Dict[str, Any]) -> ToolResult:
        method = TestMethod(
            id=str(uuid.uuid4()),
            feature_id=args["featureId"],
            project_id=self._project_id(args),
            name=args["name"],
            file_path=args["filePath"],
            framework=args["framework"],
            status="pending",
            created_at=utc_now(),
            test_type=args.get("testType") or "unit",
        )
        self.services.storage.register_test_method(method)
        return json_result(method)

    def _update_test_execution_result(self, args: Dict[str, Any]) -> ToolResult:
        method_id = args["methodId"]
        result = TestExecutionResult.from_dict(args["result"])
        updated = self.services.storage.update_test_execution_result(method_id, result)
        if updated is None:
            raise ValueError(f"Failed to update test execution result: {method_id}")
        log_test_result(method_id, result.passed, feature_id=updated.feature_id)
        return json_result(updated)

    def _update_test_method_status(self, args: Dict[str, Any]) -> ToolResult:
        method_id = args["methodId"]
        updated = self.services.storage.update_test_method_status(method_id, args["status"])
        if updated is None:
            raise ValueError(f"Failed to update test method status: {method_id}")
        return json_result(updated)
