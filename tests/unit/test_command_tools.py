"""Unit tests for the tdd/feature/tracking command tools."""

import json

import pytest

from tdd_flow import cycle_validator
from tdd_flow.command_tools import CommandToolsHandler, derive_session_id
from tdd_flow.results import RunSummary, TestResult, TestResults, TestSuiteResult
from tdd_flow.services import result_text

PYTHON_TESTS = """
def test_add():
    calc = Calculator()
    assert calc.add(1, 2) == 3
"""

STEP_LABELS = [
    "Generate test cases",
    "Generate minimal implementation",
    "Run tests",
    "Analyze coverage",
    "Provide refactoring suggestions",
]


@pytest.fixture
def handler(config, services):
    return CommandToolsHandler(config, services)


def details_of(result):
    """The JSON payload that follows the heading."""
    return json.loads(result_text(result).split("\n\n", 1)[1])


def auto_session(services):
    return services.storage.load_tdd_session(derive_session_id("auto-project", "auto-feature"))


class TestListTools:
    """Test cases for tool listing."""

    def test_three_tools(self, handler):
        """Test tool names."""
        assert [tool["name"] for tool in handler.list_tools()] == ["tdd", "feature", "tracking"]

    def test_tdd_description_lists_commands(self, handler):
        """Test that the tdd description carries one hint per command."""
        description = handler.list_tools()[0]["description"]
        for command in ("generate", "implement", "test", "coverage", "refactor", "validate"):
            assert f"\n- {command}: " in description

    def test_schemas_have_no_required_fields(self, handler):
        """Test that validation is left to the handler."""
        for tool in handler.list_tools():
            assert "required" not in tool["inputSchema"]

    def test_localized_descriptions(self, handler):
        """Test Chinese descriptions."""
        tools = handler.list_tools("zh")
        assert tools[0]["description"].startswith("测试驱动开发的核心工作流工具")
        assert tools[0]["inputSchema"]["properties"]["requirements"]["description"] != "Feature requirements description"

    def test_schemas_declare_every_read_argument(self, handler):
        """Test that optional arguments the handlers read are discoverable."""
        tdd, feature, tracking = (tool["inputSchema"]["properties"] for tool in handler.list_tools())

        for name in ("refactorType", "testFiles", "testCommand", "projectId", "developer"):
            assert name in tdd
        assert "improve_naming" in tdd["refactorType"]["enum"]
        assert "projectId" in feature
        assert "projectId" in tracking
        assert handler.list_tools("zh")[1]["inputSchema"]["properties"]["projectId"]["description"].startswith("项目ID")

    def test_unknown_locale_falls_back(self, handler):
        """Test that unsupported locales use English."""
        assert handler.list_tools("fr")[0]["description"].startswith("Core workflow tool")


class TestSessions:
    """Test cases for session identity."""

    def test_derived_id_is_stable(self):
        """Test that the same project and feature give the same session."""
        assert derive_session_id("p", "f") == derive_session_id("p", "f")
        assert derive_session_id("p", "f") != derive_session_id("p", "g")
        assert derive_session_id("p", "f").startswith("session-")
        assert len(derive_session_id("p", "f")) == len("session-") + 12

    def test_explicit_session_id_wins(self, handler, services):
        """Test that sessionId is used as given."""
        assert handler.ensure_session({"sessionId": "mine"}) == "mine"
        session = services.storage.load_tdd_session("mine")
        assert session.stage == "red"
        assert session.feature_id == "auto-feature"

    def test_existing_session_is_reused(self, handler, services):
        """Test that a second call does not reset the session."""
        session_id = handler.ensure_session({"projectId": "p", "featureId": "f"})
        services.storage.update_tdd_session_stage(session_id, "green")

        assert handler.ensure_session({"projectId": "p", "featureId": "f"}) == session_id
        assert services.storage.load_tdd_session(session_id).stage == "green"


class TestTddValidation:
    """Test cases for tdd argument validation."""

    def test_nothing_to_do(self, handler):
        """Test a call with neither command nor requirements."""
        result = handler.call_tool("tdd", {})
        assert result["isError"] is True
        assert result_text(result) == "Input parameter validation failed"

    def test_localized_validation_error(self, handler):
        """Test the Chinese validation message."""
        assert result_text(handler.call_tool("tdd", {}, locale="zh")) == "输入参数验证失败"

    @pytest.mark.parametrize(
        "args,message",
        [
            ({"command": "deploy", "requirements": "x"}, "Invalid command: deploy"),
            ({"command": "generate"}, "requirements is required for generate command"),
            ({"command": "implement"}, "testCode is required for implement command"),
            ({"command": "refactor"}, "sourceCode is required for refactor command"),
        ],
    )
    def test_command_errors(self, handler, args, message):
        """Test per-command required arguments."""
        result = handler.call_tool("tdd", args)
        assert result["isError"] is True
        assert result_text(result) == message

    def test_unknown_tool(self, handler):
        """Test names outside the three tools."""
        assert result_text(handler.call_tool("createFeature", {})) == "Unknown tool: createFeature"


class TestTddCommands:
    """Test cases for individual tdd commands."""

    def test_generate_moves_session_to_red(self, handler, services):
        """Test the generate command."""
        result = handler.call_tool("tdd", {
            "command": "generate", "requirements": "should add numbers", "language": "python", "framework": "pytest",
        })

        assert result["isError"] is False
        assert result_text(result).startswith("Test cases generated successfully\n\n")
        assert details_of(result)["framework"] == "pytest"
        assert auto_session(services).stage == "red"

    def test_generate_uses_configured_defaults(self, handler):
        """Test that language and framework fall back to the config."""
        data = details_of(handler.call_tool("tdd", {"command": "generate", "requirements": "should add numbers"}))
        assert data["language"] == "typescript"
        assert data["framework"] == "jest"

    def test_implement_moves_session_to_green(self, handler, services):
        """Test the implement command."""
        result = handler.call_tool("tdd", {"command": "implement", "testCode": PYTHON_TESTS, "language": "python"})

        assert result_text(result).startswith("Implementation code generated successfully")
        assert details_of(result)["code"].startswith("class Calculator:")
        assert auto_session(services).stage == "green"

    def test_refactor_moves_session_to_refactor(self, handler, services):
        """Test the refactor command."""
        result = handler.call_tool("tdd", {"command": "refactor", "sourceCode": "const data = load();"})

        assert result_text(result).startswith("Refactoring suggestions provided")
        assert details_of(result)["refactoredCode"] == "const userData = load();"
        assert auto_session(services).stage == "refactor"

    def test_test_command_uses_runner(self, handler, services, monkeypatch, config):
        """Test that the test command runs in the given project."""
        calls = []

        def run_tests(project_path, framework, test_files=None, **kwargs):
            calls.append((project_path, framework))
            tests = [TestResult(name="adds", status="passed")]
            suite = TestSuiteResult(name="calc", tests=tests, summary=RunSummary.of(tests))
            return TestResults.from_suites(framework, [suite])

        monkeypatch.setattr(services.test_runner, "run_tests", run_tests)

        result = handler.call_tool("tdd", {"command": "test"})

        assert result_text(result).startswith("Tests executed successfully")
        assert details_of(result)["overall"]["passed"] == 1
        assert calls == [(str(config.project_path), "jest")]

    def test_validate_command(self, handler, monkeypatch, tmp_path):
        """Test the validate command on a project without git."""
        def run(command, **kwargs):
            raise FileNotFoundError("git")

        monkeypatch.setattr(cycle_validator.subprocess, "run", run)

        result = handler.call_tool("tdd", {"command": "validate", "projectPath": str(tmp_path / "project")})

        assert result_text(result).startswith("TDD cycle validation completed")
        assert details_of(result)["currentState"] == "red"

    def test_service_errors_become_error_results(self, handler):
        """Test that a failing service is reported, not raised."""
        result = handler.call_tool("tdd", {
            "command": "generate", "requirements": "x", "language": "python", "framework": "jest",
        })
        assert result["isError"] is True
        assert result_text(result) == "Framework jest is not supported for language python"


class TestFullWorkflow:
    """Test cases for running tdd without a command."""

    def test_runs_every_step_in_order(self, handler):
        """Test that all five steps are reported in order."""
        result = handler.call_tool("tdd", {"requirements": "should add numbers"})
        text = result_text(result)
        summary = text.split("\n\n", 1)[0].split("\n")

        assert result["isError"] is False
        assert summary[0] == "Full TDD workflow completed:"
        assert len(summary) == 6
        for line, label in zip(summary[1:], STEP_LABELS):
            assert label in line

    def test_without_project_path_skips_test_and_coverage(self, handler):
        """Test the skip markers."""
        text = result_text(handler.call_tool("tdd", {"requirements": "should add numbers"}))

        assert "✅ Generate test cases" in text
        assert "⏭️ Run tests (skipped, no projectPath provided)" in text
        assert "⏭️ Analyze coverage (skipped, no projectPath provided)" in text

    def test_failed_steps_do_not_stop_the_workflow(self, handler, tmp_path):
        """Test that an invalid project path only fails its own steps."""
        result = handler.call_tool("tdd", {
            "requirements": "should add numbers",
            "projectPath": str(tmp_path / "missing"),
            "sourceCode": "const data = 1;",
        })
        text = result_text(result)

        assert result["isError"] is False
        assert "⚠️ Run tests (failed: Invalid project path" in text
        assert "⚠️ Analyze coverage (failed: Invalid project path" in text
        assert "✅ Provide refactoring suggestions" in text

    def test_details_and_session(self, handler, services):
        """Test the JSON details and the final session stage."""
        result = handler.call_tool("tdd", {"requirements": "should add numbers", "sourceCode": "const data = 1;"})
        details = details_of(result)

        assert details["sessionId"] == derive_session_id("auto-project", "auto-feature")
        assert details["generate"]["framework"] == "jest"
        assert details["refactor"]["refactoredCode"] == "const userData = 1;"
        assert auto_session(services).stage == "refactor"

    def test_second_run_counts_a_cycle(self, handler, services):
        """Test that returning to red after refactor completes a cycle."""
        handler.call_tool("tdd", {"requirements": "should add numbers", "sourceCode": "const data = 1;"})
        handler.call_tool("tdd", {"requirements": "should add numbers", "sourceCode": "const data = 1;"})

        assert auto_session(services).cycle_count == 1

    def test_localized_summary(self, handler):
        """Test Chinese step labels."""
        text = result_text(handler.call_tool("tdd", {"requirements": "should add numbers"}, locale="zh"))
        assert text.startswith("完整TDD流程执行完成:")
        assert "生成测试用例" in text


class TestFeatureCommands:
    """Test cases for the feature tool."""

    def test_nothing_to_do(self, handler):
        """Test a call without name, query or featureId."""
        assert result_text(handler.call_tool("feature", {})) == "Input parameter validation failed"

    def test_create_defaults_criteria_to_description(self, handler):
        """Test that a bare create still has one acceptance criterion."""
        result = handler.call_tool("feature", {"name": "Login", "description": "Users sign in", "projectId": "p1"})

        assert result_text(result).startswith("Feature created successfully")
        data = details_of(result)
        assert data["acceptanceCriteria"] == ["Users sign in"]
        assert data["projectId"] == "p1"

    def test_create_defaults_criteria_to_name(self, handler):
        """Test the fallback when there is no description either."""
        data = details_of(handler.call_tool("feature", {"name": "Login"}))
        assert data["acceptanceCriteria"] == ["Login"]

    def test_update(self, handler):
        """Test the update command."""
        feature_id = details_of(handler.call_tool("feature", {"name": "Login", "projectId": "p1"}))["id"]

        result = handler.call_tool("feature", {"command": "update", "featureId": feature_id, "status": "in_progress"})

        assert result_text(result).startswith("Feature updated successfully")
        assert details_of(result)["status"] == "in_progress"

    def test_update_requires_status(self, handler):
        """Test the field-level validation message."""
        result = handler.call_tool("feature", {"command": "update", "featureId": "f1"})
        assert result_text(result) == "Input parameter validation failed: Validation failed for field: status"

    def test_update_missing_feature(self, handler):
        """Test updating a feature that does not exist."""
        result = handler.call_tool("feature", {"command": "update", "featureId": "ghost", "status": "completed"})
        assert result["isError"] is True
        assert result_text(result) == "Feature not found: ghost"

    def test_link(self, handler):
        """Test linking files with the default file type."""
        feature_id = details_of(handler.call_tool("feature", {"name": "Login", "projectId": "p1"}))["id"]

        result = handler.call_tool("feature", {"command": "link", "featureId": feature_id, "filePaths": ["src/a.ts"]})

        assert result_text(result).startswith("Files linked to feature successfully")
        assert details_of(result)[0]["fileType"] == "implementation"

    def test_find(self, handler):
        """Test similarity search within a project."""
        handler.call_tool("feature", {"name": "User login", "projectId": "p1"})
        handler.call_tool("feature", {"name": "Reports", "projectId": "p1"})

        result = handler.call_tool("feature", {"command": "find", "query": "login", "projectId": "p1"})

        assert result_text(result).startswith("Similar features found")
        assert [match["feature"]["name"] for match in details_of(result)] == ["User login"]

    def test_find_without_project_sees_created_feature(self, handler):
        """Test that create and find share the fallback project."""
        created = details_of(handler.call_tool("feature", {"name": "User login"}))
        assert created["projectId"] == "auto-project"

        result = handler.call_tool("feature", {"command": "find", "query": "login"})

        assert [match["feature"]["name"] for match in details_of(result)] == ["User login"]

    def test_invalid_command(self, handler):
        """Test unknown feature commands."""
        assert result_text(handler.call_tool("feature", {"command": "archive", "name": "x"})) == "Invalid command: archive"


class TestTrackingCommands:
    """Test cases for the tracking tool."""

    def register(self, handler):
        result = handler.call_tool("tracking", {
            "featureId": "f1", "name": "adds numbers", "filePath": "calc.test.ts", "framework": "jest",
        })
        return details_of(result)["id"]

    def test_register_requires_fields(self, handler):
        """Test the register validation message."""
        result = handler.call_tool("tracking", {"featureId": "f1"})
        assert result_text(result) == "featureId, name, filePath, and framework are required"

    def test_register(self, handler, services):
        """Test registering a test method."""
        method_id = self.register(handler)

        method = services.storage.load_test_method(method_id)
        assert method.status == "pending"
        assert method.project_id == "auto-project"

    def test_result(self, handler, services):
        """Test recording an execution result."""
        method_id = self.register(handler)

        result = handler.call_tool("tracking", {
            "command": "result", "methodId": method_id, "result": {"duration": 12, "passed": True},
        })

        assert result_text(result).startswith("Test execution result updated")
        assert services.storage.load_test_method(method_id).status == "passed"

    def test_result_for_unknown_method(self, handler):
        """Test results for a method that was never registered."""
        result = handler.call_tool("tracking", {
            "command": "result", "methodId": "nope", "result": {"duration": 1, "passed": False},
        })
        assert result_text(result) == "Test method not found: nope"

    def test_result_requires_result(self, handler):
        """Test the field-level validation message."""
        result = handler.call_tool("tracking", {"command": "result", "methodId": "m1"})
        assert result_text(result) == "Input parameter validation failed: Validation failed for field: result"

    def test_status(self, handler, services):
        """Test setting a method status."""
        method_id = self.register(handler)

        result = handler.call_tool("tracking", {"command": "status", "methodId": method_id, "status": "skipped"})

        assert result_text(result).startswith("Test method status updated")
        assert services.storage.load_test_method(method_id).status == "skipped"

    def test_status_for_unknown_method(self, handler):
        """Test status updates for a method that was never registered."""
        result = handler.call_tool("tracking", {"command": "status", "methodId": "nope", "status": "failed"})
        assert result_text(result) == "Test method not found: nope"

    def test_invalid_command(self, handler):
        """Test unknown tracking commands."""
        assert result_text(handler.call_tool("tracking", {"command": "purge"})) == "Invalid command: purge"
