"""Unit tests for the one-tool-per-operation surface."""

import json

import pytest

from tdd_flow.legacy_tools import LegacyToolsHandler
from tdd_flow.results import CoverageReport
from tdd_flow.services import result_text

LEGACY_TOOLS = [
    "generate_test_cases",
    "implement_from_tests",
    "run_tests",
    "analyze_coverage",
    "refactor_code",
    "validate_tdd_cycle",
    "createFeature",
    "updateFeatureStatus",
    "linkFeatureFiles",
    "findSimilarFeatures",
    "createTDDSession",
    "updateTDDStage",
    "registerTestMethod",
    "updateTestExecutionResult",
    "updateTestMethodStatus",
]


@pytest.fixture
def handler(config, services):
    return LegacyToolsHandler(config, services)


def payload(result):
    assert result["isError"] is False, result_text(result)
    return json.loads(result_text(result))


class TestListTools:
    """Test cases for the legacy tool catalogue."""

    def test_fifteen_tools(self, handler):
        """Test tool names and order."""
        assert [tool["name"] for tool in handler.list_tools()] == LEGACY_TOOLS

    def test_required_fields(self, handler):
        """Test a few required lists."""
        schemas = {tool["name"]: tool["inputSchema"] for tool in handler.list_tools()}
        assert schemas["createFeature"]["required"] == ["name", "description", "acceptanceCriteria"]
        assert schemas["run_tests"]["required"] == ["projectPath", "testFramework"]

    def test_list_is_a_copy(self, handler):
        """Test that callers cannot mutate the catalogue."""
        handler.list_tools()[0]["name"] = "changed"
        assert handler.list_tools()[0]["name"] == "generate_test_cases"


class TestDispatch:
    """Test cases for call_tool error handling."""

    def test_unknown_tool(self, handler):
        """Test names outside the catalogue."""
        result = handler.call_tool("tdd", {})
        assert result["isError"] is True
        assert result_text(result) == "Error executing tool tdd: Unknown tool: tdd"

    def test_missing_required(self, handler):
        """Test that every missing field is named."""
        result = handler.call_tool("generate_test_cases", {"requirements": "x"})
        assert result_text(result) == (
            "Error executing tool generate_test_cases: Missing required parameter: language, framework, testType"
        )

    def test_blank_string_counts_as_missing(self, handler):
        """Test whitespace-only values."""
        result = handler.call_tool("updateTDDStage", {"sessionId": "  ", "stage": "green"})
        assert result_text(result) == "Error executing tool updateTDDStage: Missing required parameter: sessionId"


class TestTddOperations:
    """Test cases for the generation and analysis tools."""

    def test_generate_test_cases(self, handler):
        """Test that results come back as plain JSON."""
        data = payload(handler.call_tool("generate_test_cases", {
            "requirements": "should add numbers", "language": "python", "framework": "pytest", "testType": "unit",
        }))
        assert data["framework"] == "pytest"
        assert data["tests"]

    def test_implement_from_tests(self, handler):
        """Test implementation generation."""
        data = payload(handler.call_tool("implement_from_tests", {
            "testCode": "def test_add():\n    calc = Calculator()\n    assert calc.add(1, 2) == 3\n",
            "language": "python",
        }))
        assert data["metadata"]["implementationStyle"] == "minimal"

    def test_refactor_code(self, handler):
        """Test that preserveTests=false is honored."""
        data = payload(handler.call_tool("refactor_code", {
            "sourceCode": "function data() { return 1; }", "refactorType": "improve_naming", "preserveTests": False,
        }))
        assert data["refactoredCode"] == "function userData() { return 1; }"

    def test_refactor_code_error(self, handler):
        """Test that service errors are wrapped."""
        result = handler.call_tool("refactor_code", {"sourceCode": "x", "refactorType": "inline"})
        assert result_text(result).startswith("Error executing tool refactor_code: Invalid refactor type: inline")

    def test_analyze_coverage_uses_configured_threshold(self, handler, services, monkeypatch):
        """Test the default lines threshold."""
        calls = []

        def analyze(project_path, test_command, thresholds=None, output_format="json"):
            calls.append((test_command, thresholds, output_format))
            return CoverageReport(files=[], lines=90, functions=90, branches=90, statements=90, threshold=thresholds)

        monkeypatch.setattr(services.coverage_analyzer, "analyze_coverage", analyze)

        data = payload(handler.call_tool("analyze_coverage", {"projectPath": "/p", "testCommand": "jest"}))

        assert calls == [("jest", {"lines": 80.0}, "json")]
        assert data["threshold"] == {"lines": 80.0}

    def test_run_tests_ignores_watch(self, handler, services, monkeypatch):
        """Test that watch mode runs once with the other options."""
        calls = []

        def run_tests(project_path, framework, test_files=None, **kwargs):
            calls.append(kwargs)
            raise ValueError(f"Invalid project path: {project_path}")

        monkeypatch.setattr(services.test_runner, "run_tests", run_tests)

        result = handler.call_tool("run_tests", {
            "projectPath": "/nowhere", "testFramework": "jest", "options": {"watch": True, "verbose": True},
        })

        assert calls == [{"coverage": False, "verbose": True, "parallel": True}]
        assert result_text(result) == "Error executing tool run_tests: Invalid project path: /nowhere"

    def test_validate_tdd_cycle_with_history(self, handler, tmp_path):
        """Test validation from supplied commits."""
        data = payload(handler.call_tool("validate_tdd_cycle", {
            "projectPath": str(tmp_path),
            "gitHistory": ["a|update docs|x|d", "b|implement login|x|d"],
        }))
        assert data["score"] == 45
        assert data["isValid"] is False


class TestFeatureOperations:
    """Test cases for the feature tools."""

    def create(self, handler, name="User login", project_id="p1"):
        return payload(handler.call_tool("createFeature", {
            "name": name,
            "description": f"{name} flow",
            "acceptanceCriteria": ["works"],
            "projectId": project_id,
            "tags": ["auth"],
        }))

    def test_create_feature(self, handler):
        """Test feature creation."""
        data = self.create(handler)
        assert data["status"] == "planning"
        assert data["priority"] == "medium"
        assert data["tags"] == ["auth"]

    def test_create_feature_needs_criteria(self, handler):
        """Test that an empty criteria list is rejected."""
        result = handler.call_tool("createFeature", {"name": "x", "description": "y", "acceptanceCriteria": []})
        assert result_text(result) == (
            "Error executing tool createFeature: Feature must have at least one acceptance criteria"
        )

    def test_update_feature_status_with_progress(self, handler):
        """Test status and progress updates."""
        feature_id = self.create(handler)["id"]

        data = payload(handler.call_tool("updateFeatureStatus", {
            "featureId": feature_id, "status": "in_progress", "progress": {"testsWritten": 3},
        }))

        assert data["status"] == "in_progress"
        assert data["progress"]["testsWritten"] == 3

    def test_link_feature_files(self, handler):
        """Test file associations."""
        feature_id = self.create(handler)["id"]

        data = payload(handler.call_tool("linkFeatureFiles", {
            "featureId": feature_id, "filePaths": ["src/login.ts", "src/session.ts"], "fileType": "implementation",
        }))

        assert [item["filePath"] for item in data] == ["src/login.ts", "src/session.ts"]

    def test_find_similar_features(self, handler):
        """Test similarity search."""
        self.create(handler, "User login")
        self.create(handler, "Reports")

        data = payload(handler.call_tool("findSimilarFeatures", {"query": "login", "projectId": "p1"}))

        assert [match["feature"]["name"] for match in data] == ["User login"]

    def test_find_similar_features_needs_project(self, handler):
        """Test the missing project message."""
        result = handler.call_tool("findSimilarFeatures", {"query": "login"})
        assert result_text(result) == (
            "Error executing tool findSimilarFeatures: "
            "Project ID is required. Please provide projectId or set current project."
        )


class TestSessionAndTracking:
    """Test cases for TDD sessions and test tracking."""

    def test_session_lifecycle(self, handler, services):
        """Test creating a session and moving it through stages."""
        session = payload(handler.call_tool("createTDDSession", {"featureId": "f1", "developer": "dev"}))
        assert session["stage"] == "red"
        assert session["projectId"] == "default-project"

        updated = payload(handler.call_tool("updateTDDStage", {
            "sessionId": session["id"], "stage": "green", "testFiles": ["a.test.ts"],
        }))

        assert updated["stage"] == "green"
        assert updated["testFiles"] == ["a.test.ts"]
        assert services.storage.load_tdd_session(session["id"]).stage == "green"

    def test_update_missing_session(self, handler):
        """Test stage updates for unknown sessions."""
        result = handler.call_tool("updateTDDStage", {"sessionId": "nope", "stage": "green"})
        assert result_text(result) == "Error executing tool updateTDDStage: TDD session not found: nope"

    def test_invalid_stage(self, handler):
        """Test that only red, green and refactor are accepted."""
        session = payload(handler.call_tool("createTDDSession", {"featureId": "f1", "developer": "dev"}))
        result = handler.call_tool("updateTDDStage", {"sessionId": session["id"], "stage": "blue"})
        assert result_text(result) == "Error executing tool updateTDDStage: Invalid TDD stage: blue"

    def test_test_method_tracking(self, handler):
        """Test registering a method and recording results."""
        method = payload(handler.call_tool("registerTestMethod", {
            "featureId": "f1", "name": "adds", "filePath": "calc.test.ts", "framework": "jest",
        }))
        assert method["status"] == "pending"
        assert method["testType"] == "unit"

        updated = payload(handler.call_tool("updateTestExecutionResult", {
            "methodId": method["id"], "result": {"duration": 5, "passed": False, "error": "boom"},
        }))
        assert updated["status"] == "failed"
        assert updated["executionResults"]["error"] == "boom"

        skipped = payload(handler.call_tool("updateTestMethodStatus", {"methodId": method["id"], "status": "skipped"}))
        assert skipped["status"] == "skipped"

    def test_execution_result_needs_passed(self, handler):
        """Test result validation."""
        result = handler.call_tool("updateTestExecutionResult", {"methodId": "m1", "result": {"duration": 5}})
        assert result_text(result) == (
            "Error executing tool updateTestExecutionResult: "
            "Test execution result requires 'duration' and 'passed'"
        )

    def test_unknown_method(self, handler):
        """Test status updates for unknown methods."""
        result = handler.call_tool("updateTestMethodStatus", {"methodId": "nope", "status": "passed"})
        assert result_text(result) == "Error executing tool updateTestMethodStatus: Failed to update test method status: nope"
