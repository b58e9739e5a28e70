"""The simplified three-tool surface: ``tdd``, ``feature`` and ``tracking``.

Each tool takes a ``command`` argument that selects an operation. Without a
command, ``tdd`` runs the whole generate/implement/test/coverage/refactor
workflow and ``feature``/``tracking`` fall back to create/register.

Session identity is never kept on the handler. A call either names its
session with ``sessionId`` or gets the one derived from its project and
feature ids, so two calls about the same feature always share a session.
"""

from __future__ import annotations

import hashlib
import logging
import uuid
from typing import Any, Callable, Dict, List, Optional, Tuple

from .config import ServerConfig
from .frameworks import get_framework
from .i18n import command_hints, localized_error, resolve_locale, tool_description, translate
from .legacy_tools import LANGUAGES, REFACTOR_TYPES, TEST_TYPES
from .models import FILE_TYPES, TDDSession, TDDStage, TestExecutionResult, TestMethod, utc_now
from .services import Services, ToolResult, error_result, json_result, missing_fields
from .tdd_logging import log_error_with_context, log_operation, log_stage_change, log_test_result

logger = logging.getLogger("tdd_flow.commands")

TDD_COMMANDS = ("generate", "implement", "test", "coverage", "refactor", "validate")
FEATURE_COMMANDS = ("create", "update", "link", "find")
TRACKING_COMMANDS = ("register", "result", "status")

AUTO_PROJECT_ID = "auto-project"
AUTO_FEATURE_ID = "auto-feature"
DEFAULT_REFACTOR_TYPE = "improve_naming"

DONE, SKIPPED, FAILED = "✅", "⏭️", "⚠️"


def derive_session_id(project_id: str, feature_id: str) -> str:
    digest = hashlib.sha1(f"{project_id}:{feature_id}".encode("utf-8")).hexdigest()
    return f"session-{digest[:12]}"


def _param(locale: str, key: str, type_: str = "string", **extra: Any) -> Dict[str, Any]:
    return {"type": type_, "description": translate(f"param.{key}", locale), **extra}


class CommandToolsHandler:
    """Serve ``tdd``, ``feature`` and ``tracking`` over the shared services."""

    def __init__(self, config: ServerConfig, services: Optional[Services] = None):
        self.config = config
        self.services = services or Services.from_config(config)

    # ------------------------------------------------------------------
    # Tool listing
    # ------------------------------------------------------------------

    def list_tools(self, locale: Optional[str] = None) -> List[Dict[str, Any]]:
        lang = resolve_locale(locale or self.config.locale)
        return [self._tdd_tool(lang), self._feature_tool(lang), self._tracking_tool(lang)]

    def _tdd_tool(self, locale: str) -> Dict[str, Any]:
        hints = command_hints("tdd", locale)
        description = tool_description("tdd", locale)["description"]
        description += "".join(f"\n- {command}: {hint}" for command, hint in hints.items())
        return {
            "name": "tdd",
            "description": description,
            "inputSchema": {
                "type": "object",
                "properties": {
                    "command": _param(locale, "tdd.command", enum=list(TDD_COMMANDS)),
                    "requirements": _param(locale, "requirements"),
                    "language": _param(locale, "language", enum=LANGUAGES),
                    "framework": _param(locale, "framework"),
                    "testType": _param(locale, "testType", enum=TEST_TYPES),
                    "testCode": _param(locale, "testCode"),
                    "implementationStyle": _param(
                        locale, "implementationStyle", enum=["minimal", "comprehensive", "production-ready"]
                    ),
                    "projectPath": _param(locale, "projectPath"),
                    "testFiles": _param(locale, "testFiles", "array", items={"type": "string"}),
                    "testCommand": _param(locale, "testCommand"),
                    "sourceCode": _param(locale, "sourceCode"),
                    "refactorType": _param(locale, "refactorType", enum=list(REFACTOR_TYPES)),
                    "sessionId": _param(locale, "sessionId"),
                    "projectId": _param(locale, "projectId"),
                    "featureId": _param(locale, "featureId"),
                    "developer": _param(locale, "developer"),
                },
            },
        }

    def _feature_tool(self, locale: str) -> Dict[str, Any]:
        return {
            "name": "feature",
            "description": tool_description("feature", locale)["description"],
            "inputSchema": {
                "type": "object",
                "properties": {
                    "command": _param(locale, "feature.command", enum=list(FEATURE_COMMANDS)),
                    "name": _param(locale, "name"),
                    "description": _param(locale, "description"),
                    "query": _param(locale, "query"),
                    "projectId": _param(locale, "projectId"),
                    "featureId": _param(locale, "featureId"),
                    "acceptanceCriteria": _param(locale, "acceptanceCriteria", "array", items={"type": "string"}),
                    "status": _param(
                        locale,
                        "status",
                        enum=["planning", "in_progress", "completed", "on_hold", "cancelled"],
                    ),
                    "filePaths": _param(locale, "filePaths", "array", items={"type": "string"}),
                    "fileType": _param(locale, "fileType", enum=list(FILE_TYPES)),
                    "notes": _param(locale, "notes"),
                },
            },
        }

    def _tracking_tool(self, locale: str) -> Dict[str, Any]:
        return {
            "name": "tracking",
            "description": tool_description("tracking", locale)["description"],
            "inputSchema": {
                "type": "object",
                "properties": {
                    "command": _param(locale, "tracking.command", enum=list(TRACKING_COMMANDS)),
                    "projectId": _param(locale, "projectId"),
                    "featureId": _param(locale, "featureId"),
                    "name": _param(locale, "testName"),
                    "filePath": _param(locale, "filePath"),
                    "framework": _param(locale, "framework"),
                    "testType": _param(locale, "testType", enum=TEST_TYPES),
                    "methodId": _param(locale, "methodId"),
                    "result": _param(locale, "result", "object"),
                    "status": _param(locale, "status", enum=["passed", "failed", "skipped", "pending"]),
                },
            },
        }

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def call_tool(self, name: str, arguments: Optional[Dict[str, Any]] = None, locale: Optional[str] = None) -> ToolResult:
        args = arguments or {}
        lang = resolve_locale(locale or self.config.locale)
        handlers: Dict[str, Callable[[Dict[str, Any], str], ToolResult]] = {
            "tdd": self._handle_tdd,
            "feature": self._handle_feature,
            "tracking": self._handle_tracking,
        }
        handler = handlers.get(name)
        if handler is None:
            return error_result(f"Unknown tool: {name}")
        try:
            return handler(args, lang)
        except Exception as exc:
            log_error_with_context(exc, {"operation": "call_tool", "tool": name, "command": args.get("command")})
            return error_result(str(exc))

    def _invalid_params(self, locale: str, field: Optional[str] = None) -> ToolResult:
        message = str(localized_error("INVALID_PARAMS", locale)["message"])
        if field:
            message = f"{message}: {translate('error.validation_failed', locale, field=field)}"
        return error_result(message)

    # ------------------------------------------------------------------
    # tdd
    # ------------------------------------------------------------------

    def _handle_tdd(self, args: Dict[str, Any], locale: str) -> ToolResult:
        command = args.get("command")
        if not command and not args.get("requirements"):
            return self._invalid_params(locale)
        if command and command not in TDD_COMMANDS:
            return error_result(f"Invalid command: {command}")
        if command == "generate" and not args.get("requirements"):
            return error_result("requirements is required for generate command")
        if command == "implement" and not args.get("testCode"):
            return error_result("testCode is required for implement command")
        if command == "refactor" and not args.get("sourceCode"):
            return error_result("sourceCode is required for refactor command")

        session_id = self.ensure_session(args)
        if not command:
            return self.run_full_workflow(args, locale, session_id)

        with log_operation("tdd_command", command=command, session_id=session_id):
            if command == "generate":
                result = self._generate(args)
                self._move_session(session_id, TDDStage.RED)
                return json_result(result, "Test cases generated successfully")
            if command == "implement":
                result = self._implement(args, args["testCode"])
                self._move_session(session_id, TDDStage.GREEN)
                return json_result(result, "Implementation code generated successfully")
            if command == "test":
                return json_result(self._run_tests(args), "Tests executed successfully")
            if command == "coverage":
                return json_result(self._coverage(args), "Coverage analysis completed")
            if command == "refactor":
                result = self._refactor(args, args["sourceCode"])
                self._move_session(session_id, TDDStage.REFACTOR)
                return json_result(result, "Refactoring suggestions provided")
            result = self.services.cycle_validator.validate_cycle(self._project_path(args))
            return json_result(result, "TDD cycle validation completed")

    def run_full_workflow(self, args: Dict[str, Any], locale: str, session_id: str) -> ToolResult:
        """Run every step in order; a failing step is reported without stopping the rest."""
        lines: List[str] = []
        details: Dict[str, Any] = {"sessionId": session_id}
        generated = implementation = None

        def record(step: str, outcome: Tuple[str, Optional[str]]) -> None:
            marker, note = outcome
            label = translate(f"workflow.step.{step}", locale)
            lines.append(f"{marker} {label}" + (f" ({note})" if note else ""))

        def attempt(step: str, action: Callable[[], Any]) -> Any:
            try:
                value = action()
            except Exception as exc:
                log_error_with_context(exc, {"operation": "tdd_workflow", "step": step})
                record(step, (FAILED, translate("workflow.failed", locale, reason=exc)))
                return None
            record(step, (DONE, None))
            details[step] = value
            return value

        with log_operation("tdd_workflow", session_id=session_id):
            generated = attempt("generate", lambda: self._generate(args))
            self._move_session(session_id, TDDStage.RED)

            if generated is not None:
                test_code = "\n\n".join(test.code for test in generated.tests)
                implementation = attempt("implement", lambda: self._implement(args, test_code))
            else:
                record("implement", (SKIPPED, None))
            self._move_session(session_id, TDDStage.GREEN)

            if args.get("projectPath"):
                attempt("test", lambda: self._run_tests(args))
                attempt("coverage", lambda: self._coverage(args))
            else:
                for step in ("test", "coverage"):
                    record(step, (SKIPPED, translate("workflow.skipped_no_project", locale)))

            source = args.get("sourceCode") or (implementation.code if implementation is not None else None)
            if source:
                attempt("refactor", lambda: self._refactor(args, source))
            else:
                record("refactor", (SKIPPED, None))
            self._move_session(session_id, TDDStage.REFACTOR)

        summary = translate("workflow.completed", locale) + "\n" + "\n".join(lines)
        return json_result(details, summary)

    def _generate(self, args: Dict[str, Any]):
        language = args.get("language") or self.config.default_language
        framework = args.get("framework") or self.config.default_test_framework
        return self.services.test_generator.generate_tests(
            args["requirements"], language, framework, args.get("testType") or "unit"
        )

    def _implement(self, args: Dict[str, Any], test_code: str):
        return self.services.code_generator.generate_implementation(
            test_code,
            args.get("language") or self.config.default_language,
            args.get("implementationStyle") or "minimal",
        )

    def _project_path(self, args: Dict[str, Any]) -> str:
        return args.get("projectPath") or str(self.config.project_path)

    def _run_tests(self, args: Dict[str, Any]):
        framework = args.get("framework") or self.config.default_test_framework
        return self.services.test_runner.run_tests(self._project_path(args), framework, args.get("testFiles"))

    def _coverage(self, args: Dict[str, Any]):
        command = args.get("testCommand")
        if not command:
            framework = get_framework(args.get("framework") or self.config.default_test_framework)
            if framework is None:
                raise ValueError(f"Unsupported test framework: {args.get('framework')}")
            command = framework.commands.run
        return self.services.coverage_analyzer.analyze_coverage(
            self._project_path(args), command, {"lines": self.config.coverage_threshold}
        )

    def _refactor(self, args: Dict[str, Any], source: str):
        return self.services.refactoring.refactor_code(source, args.get("refactorType") or DEFAULT_REFACTOR_TYPE)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def ensure_session(self, args: Dict[str, Any]) -> str:
        """Return the session for this call, creating it in the red stage if needed."""
        project_id = args.get("projectId") or AUTO_PROJECT_ID
        feature_id = args.get("featureId") or AUTO_FEATURE_ID
        session_id = args.get("sessionId") or derive_session_id(project_id, feature_id)

        storage = self.services.storage
        if storage.load_tdd_session(session_id) is None:
            now = utc_now()
            storage.save_tdd_session(TDDSession(
                id=session_id,
                feature_id=feature_id,
                project_id=project_id,
                developer=args.get("developer") or "unknown",
                stage=TDDStage.RED.value,
                started_at=now,
                updated_at=now,
                notes="Auto-created session",
            ))
            logger.info(f"Created TDD session {session_id} for {project_id}/{feature_id}")
        return session_id

    def _move_session(self, session_id: str, stage: TDDStage) -> None:
        session = self.services.storage.update_tdd_session_stage(session_id, stage.value)
        if session is not None:
            log_stage_change(session_id, stage.value, feature_id=session.feature_id)

    # ------------------------------------------------------------------
    # feature
    # ------------------------------------------------------------------

    def _handle_feature(self, args: Dict[str, Any], locale: str) -> ToolResult:
        if not args.get("name") and not args.get("query") and not args.get("featureId"):
            return self._invalid_params(locale)

        command = args.get("command") or "create"
        required = {
            "create": ("name",),
            "update": ("featureId", "status"),
            "link": ("featureId", "filePaths"),
            "find": (),
        }.get(command)
        if required is None:
            return error_result(f"Invalid command: {command}")
        missing = missing_fields(args, required)
        if missing:
            return self._invalid_params(locale, missing[0])

        features = self.services.features
        if command == "create":
            name = args["name"]
            criteria = args.get("acceptanceCriteria") or [args.get("description") or name]
            feature = features.create_feature(
                name, args.get("description") or "", criteria, project_id=args.get("projectId") or AUTO_PROJECT_ID
            )
            return json_result(feature, "Feature created successfully")
        if command == "update":
            feature = features.update_feature_status(args["featureId"], args["status"], notes=args.get("notes"))
            return json_result(feature, "Feature updated successfully")
        if command == "link":
            associations = features.link_feature_files(
                args["featureId"], args["filePaths"], args.get("fileType") or "implementation"
            )
            return json_result(associations, "Files linked to feature successfully")

        query = args.get("query") or args.get("name")
        if not query:
            return self._invalid_params(locale, "query")
        matches = features.find_similar_features(query, args.get("projectId") or AUTO_PROJECT_ID)
        return json_result(matches, "Similar features found")

    # ------------------------------------------------------------------
    # tracking
    # ------------------------------------------------------------------

    def _handle_tracking(self, args: Dict[str, Any], locale: str) -> ToolResult:
        command = args.get("command") or "register"
        storage = self.services.storage

        if command == "register":
            if missing_fields(args, ("featureId", "name", "filePath", "framework")):
                return error_result("featureId, name, filePath, and framework are required")
            method = TestMethod(
                id=str(uuid.uuid4()),
                feature_id=args["featureId"],
                project_id=args.get("projectId") or AUTO_PROJECT_ID,
                name=args["name"],
                file_path=args["filePath"],
                framework=args["framework"],
                created_at=utc_now(),
                test_type=args.get("testType") or "unit",
            )
            storage.register_test_method(method)
            return json_result(method, "Test method registered successfully")

        if command == "result":
            missing = missing_fields(args, ("methodId", "result"))
            if missing:
                return self._invalid_params(locale, missing[0])
            result = TestExecutionResult.from_dict(args["result"])
            updated = storage.update_test_execution_result(args["methodId"], result)
            if updated is None:
                return error_result(f"Test method not found: {args['methodId']}")
            log_test_result(updated.id, result.passed, feature_id=updated.feature_id)
            return json_result(updated, "Test execution result updated")

        if command == "status":
            missing = missing_fields(args, ("methodId", "status"))
            if missing:
                return self._invalid_params(locale, missing[0])
            updated = storage.update_test_method_status(args["methodId"], args["status"])
            if updated is None:
                return error_result(f"Test method not found: {args['methodId']}")
            return json_result(updated, "Test method status updated")

        return error_result(f"Invalid command: {command}")
