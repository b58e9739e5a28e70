"""Unit tests for TDD Flow logging and observability.

This module tests the logging infrastructure, performance monitoring,
and observability hooks.
"""

import json
import logging
import sys
from unittest.mock import MagicMock, patch

import pytest

from tdd_flow.tdd_logging import (
    JsonFormatter,
    ObservabilityHooks,
    PerformanceMonitor,
    log_error_with_context,
    log_feature_created,
    log_operation,
    log_performance,
    log_stage_change,
    log_test_result,
    observability_hooks,
    performance_monitor,
    setup_logging,
)


@pytest.fixture
def restore_root_logger():
    """Undo setup_logging so other tests see a plain logger."""
    yield
    logger = logging.getLogger("tdd_flow")
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


class TestJsonFormatter:
    """Test cases for JsonFormatter."""

    def test_json_formatter_basic(self):
        """Test basic JSON formatting."""
        formatter = JsonFormatter()

        logger = logging.getLogger("test")
        record = logger.makeRecord("test", logging.INFO, __file__, 10, "Test message", (), None)

        data = json.loads(formatter.format(record))

        assert data["level"] == "INFO"
        assert data["logger"] == "test"
        assert data["message"] == "Test message"
        assert data["line"] == 10
        assert "timestamp" in data
        assert "module" in data
        assert "function" in data

    def test_json_formatter_with_exception(self):
        """Test JSON formatting with exception info."""
        formatter = JsonFormatter()

        logger = logging.getLogger("test")
        try:
            raise ValueError("Test exception")
        except ValueError:
            record = logger.makeRecord("test", logging.ERROR, __file__, 10, "Test message", (), sys.exc_info())

        data = json.loads(formatter.format(record))

        assert data["level"] == "ERROR"
        assert "ValueError" in data["exception"]

    def test_json_formatter_with_extra_fields(self):
        """Test JSON formatting with extra fields."""
        formatter = JsonFormatter()

        logger = logging.getLogger("test")
        record = logger.makeRecord("test", logging.INFO, __file__, 10, "Test message", (), None)
        record.extra_fields = {"session_id": "session-1"}

        data = json.loads(formatter.format(record))

        assert data["session_id"] == "session-1"


class TestPerformanceMonitor:
    """Test cases for PerformanceMonitor."""

    def test_record_metric(self):
        """Test recording a performance metric."""
        monitor = PerformanceMonitor()

        monitor.record_metric("run_tests_duration", 0.5, {"status": "success"})

        metrics = monitor.get_metrics("run_tests_duration")
        assert metrics["run_tests_duration"][0]["value"] == 0.5
        assert metrics["run_tests_duration"][0]["tags"] == {"status": "success"}
        assert "timestamp" in metrics["run_tests_duration"][0]

    def test_get_all_metrics(self):
        """Test getting all metrics."""
        monitor = PerformanceMonitor()

        monitor.record_metric("metric1", 1)
        monitor.record_metric("metric2", 2)
        monitor.record_metric("metric1", 3)

        all_metrics = monitor.get_metrics()

        assert [m["value"] for m in all_metrics["metric1"]] == [1, 3]
        assert len(all_metrics["metric2"]) == 1

    def test_unknown_metric_is_empty(self):
        """Test asking for a metric that was never recorded."""
        assert PerformanceMonitor().get_metrics("missing") == {"missing": []}

    def test_keeps_only_recent_samples(self):
        """Test that each metric is capped at max_samples."""
        monitor = PerformanceMonitor(max_samples=3)

        for value in range(10):
            monitor.record_metric("metric1", value)

        assert [m["value"] for m in monitor.get_metrics("metric1")["metric1"]] == [7, 8, 9]

    def test_clear(self):
        """Test clearing recorded metrics."""
        monitor = PerformanceMonitor()
        monitor.record_metric("metric1", 1)
        monitor.clear()
        assert monitor.get_metrics() == {}


class TestLogPerformance:
    """Test cases for log_performance decorator."""

    def test_log_performance_decorator(self):
        """Test the log_performance decorator."""
        @log_performance("generate_tests")
        def generate():
            return "generated"

        assert generate() == "generated"

        metrics = performance_monitor.get_metrics("generate_tests_duration")["generate_tests_duration"]
        assert len(metrics) == 1
        assert metrics[0]["value"] >= 0
        assert metrics[0]["tags"]["status"] == "success"

    def test_log_performance_decorator_with_exception(self):
        """Test the log_performance decorator with exception."""
        @log_performance("generate_tests")
        def generate():
            raise ValueError("Requirements cannot be empty")

        with pytest.raises(ValueError):
            generate()

        metrics = performance_monitor.get_metrics("generate_tests_duration")["generate_tests_duration"]
        assert metrics[0]["tags"] == {"status": "error", "error_type": "ValueError"}

    def test_decorator_preserves_name(self):
        """Test that functools.wraps keeps the wrapped name."""
        @log_performance("op")
        def refactor_code():
            return None

        assert refactor_code.__name__ == "refactor_code"


class TestLogOperation:
    """Test cases for log_operation context manager."""

    def test_log_operation_success(self):
        """Test successful operation logging."""
        with patch("tdd_flow.tdd_logging.std_logging.getLogger") as mock_logger:
            mock_logger_instance = MagicMock()
            mock_logger.return_value = mock_logger_instance

            with log_operation("full_workflow", session_id="session-1"):
                pass

            assert mock_logger_instance.info.call_count == 2
            assert mock_logger_instance.error.called is False
            extra = mock_logger_instance.info.call_args[1]["extra"]["extra_fields"]
            assert extra["status"] == "completed"
            assert extra["session_id"] == "session-1"

    def test_log_operation_with_exception(self):
        """Test operation logging with exception."""
        with patch("tdd_flow.tdd_logging.std_logging.getLogger") as mock_logger:
            mock_logger_instance = MagicMock()
            mock_logger.return_value = mock_logger_instance

            with pytest.raises(ValueError):
                with log_operation("full_workflow"):
                    raise ValueError("Test error")

            assert mock_logger_instance.error.called
            assert "Test error" in str(mock_logger_instance.error.call_args)


class TestObservabilityHooks:
    """Test cases for ObservabilityHooks."""

    def test_register_and_trigger_hooks(self):
        """Test registering and triggering hooks."""
        hooks = ObservabilityHooks()
        received = []

        hooks.register_hook("tdd_stage_changed", lambda **data: received.append(data))
        hooks.trigger_hooks("tdd_stage_changed", stage="green")

        assert received == [{"stage": "green"}]

    def test_unregister_hook(self):
        """Test that removed hooks are no longer called."""
        hooks = ObservabilityHooks()
        received = []

        def callback(**data):
            received.append(data)

        hooks.register_hook("feature_created", callback)
        hooks.unregister_hook("feature_created", callback)
        hooks.trigger_hooks("feature_created", feature_id="f1")

        assert received == []

    def test_log_event_passes_feature_id(self):
        """Test that log_event hands event data to hooks."""
        hooks = ObservabilityHooks()
        received = []
        hooks.register_hook("feature_created", lambda **data: received.append(data))

        hooks.log_event("feature_created", feature_id="f1", project_id="p1")

        assert received[0]["feature_id"] == "f1"
        assert received[0]["project_id"] == "p1"
        assert "timestamp" in received[0]
        assert "event_type" not in received[0]

    def test_hook_failure_handling(self):
        """Test that hook failures don't crash the system."""
        hooks = ObservabilityHooks()
        received = []

        def failing_callback(**data):
            raise ValueError("Hook failed")

        hooks.register_hook("test_event", failing_callback)
        hooks.register_hook("test_event", lambda **data: received.append(data))

        hooks.trigger_hooks("test_event", param="value")

        assert received == [{"param": "value"}]


class TestLoggingFunctions:
    """Test cases for logging convenience functions."""

    def test_log_stage_change(self):
        """Test the stage change event."""
        received = []
        observability_hooks.register_hook("tdd_stage_changed", lambda **data: received.append(data))

        log_stage_change("session-1", "refactor", feature_id="f1")

        assert received[0]["session_id"] == "session-1"
        assert received[0]["stage"] == "refactor"
        assert received[0]["feature_id"] == "f1"

    def test_log_test_result(self):
        """Test the test result event."""
        received = []
        observability_hooks.register_hook("test_result_recorded", lambda **data: received.append(data))

        log_test_result("method-1", False)

        assert received[0]["method_id"] == "method-1"
        assert received[0]["passed"] is False

    def test_log_feature_created(self):
        """Test the feature created event."""
        with patch("tdd_flow.tdd_logging.observability_hooks") as mock_hooks:
            log_feature_created("f1", "p1")

            mock_hooks.log_event.assert_called_once_with("feature_created", feature_id="f1", project_id="p1")

    def test_log_error_with_context(self):
        """Test log_error_with_context function."""
        with patch("tdd_flow.tdd_logging.std_logging.getLogger") as mock_logger:
            error = ValueError("Test error")
            context = {"operation": "run_tests", "command": "jest"}

            log_error_with_context(error, context, extra_param="extra_value")

            call_args = mock_logger.return_value.error.call_args
            assert call_args[0][0] == "Error in run_tests: Test error"
            extra_fields = call_args[1]["extra"]["extra_fields"]
            assert extra_fields["context"] == context
            assert extra_fields["extra_param"] == "extra_value"
            assert extra_fields["error_type"] == "ValueError"
            assert call_args[1]["exc_info"] is error


class TestLoggingIntegration:
    """Integration tests for logging functionality."""

    def test_setup_logging(self, tmp_path, restore_root_logger):
        """Test setting up logging configuration."""
        log_file = tmp_path / "logs" / "tdd.log"

        logger = setup_logging(log_level=logging.DEBUG, log_file=log_file)
        logging.getLogger("tdd_flow.test").info("Test message")

        assert logger.name == "tdd_flow"
        assert logger.propagate is False
        assert len(logger.handlers) == 2
        content = log_file.read_text(encoding="utf-8")
        assert "Test message" in content
        for line in content.strip().split("\n"):
            json.loads(line)

    def test_console_handler_writes_to_stderr(self, restore_root_logger):
        """Test that stdout stays free for the protocol stream."""
        logger = setup_logging(log_level="INFO")

        assert len(logger.handlers) == 1
        assert logger.handlers[0].stream is sys.stderr

    def test_end_to_end_logging_flow(self, tmp_path, restore_root_logger):
        """Test end-to-end logging flow."""
        log_file = tmp_path / "tdd.log"
        setup_logging(log_level=logging.DEBUG, log_file=log_file)

        log_stage_change("session-1", "green")
        performance_monitor.record_metric("test_metric", 42)

        content = log_file.read_text(encoding="utf-8")
        assert "Event: tdd_stage_changed" in content
        assert "Metric recorded: test_metric=42" in content
