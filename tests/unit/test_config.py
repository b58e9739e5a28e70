"""Unit tests for environment-driven server configuration."""

from pathlib import Path

import pytest

from tdd_flow.config import ServerConfig


class TestServerConfigFromEnv:
    """Test cases for ServerConfig.from_env."""

    def test_defaults(self, tmp_path, monkeypatch):
        """Test the configuration produced by an empty environment."""
        monkeypatch.chdir(tmp_path)
        config = ServerConfig.from_env({})

        assert config.use_new_tools is False
        assert config.locale == "en"
        assert config.project_path == tmp_path.resolve()
        assert config.default_language == "typescript"
        assert config.default_test_framework == "jest"
        assert config.coverage_threshold == 80.0
        assert config.storage_home is None
        assert config.log_level == "INFO"

    def test_reads_all_variables(self, tmp_path):
        """Test that every supported variable is honored."""
        config = ServerConfig.from_env({
            "USE_NEW_TOOLS": "true",
            "DEFAULT_LOCALE": "zh",
            "PROJECT_PATH": str(tmp_path),
            "DEFAULT_LANGUAGE": "Python",
            "DEFAULT_TEST_FRAMEWORK": "pytest",
            "COVERAGE_THRESHOLD": "90",
            "TDD_FLOW_HOME": str(tmp_path / "home"),
            "TDD_FLOW_LOG_LEVEL": "debug",
            "TDD_FLOW_LOG_FILE": str(tmp_path / "logs" / "server.log"),
        })

        assert config.use_new_tools is True
        assert config.locale == "zh"
        assert config.project_path == tmp_path.resolve()
        assert config.default_language == "python"
        assert config.default_test_framework == "pytest"
        assert config.coverage_threshold == 90.0
        assert config.storage_home == tmp_path / "home"
        assert config.log_level == "DEBUG"
        assert config.log_file == tmp_path / "logs" / "server.log"

    @pytest.mark.parametrize("value", ["false", "0", "", "no"])
    def test_use_new_tools_false_values(self, value, tmp_path):
        """Test values that keep the legacy surface."""
        config = ServerConfig.from_env({"USE_NEW_TOOLS": value, "PROJECT_PATH": str(tmp_path)})
        assert config.use_new_tools is False

    def test_unsupported_locale_falls_back(self, tmp_path):
        """Test that an unknown locale falls back to English."""
        config = ServerConfig.from_env({"DEFAULT_LOCALE": "fr", "PROJECT_PATH": str(tmp_path)})
        assert config.locale == "en"

    @pytest.mark.parametrize("value", ["abc", "150", "-1"])
    def test_invalid_threshold(self, value, tmp_path):
        """Test that a malformed or out-of-range threshold is rejected."""
        with pytest.raises(ValueError, match="COVERAGE_THRESHOLD"):
            ServerConfig.from_env({"COVERAGE_THRESHOLD": value, "PROJECT_PATH": str(tmp_path)})


class TestServerConfigImmutability:
    """Test cases for the frozen dataclass."""

    def test_with_locale_returns_copy(self):
        """Test that with_locale leaves the original untouched."""
        config = ServerConfig(project_path=Path("."))
        chinese = config.with_locale("zh")

        assert chinese.locale == "zh"
        assert config.locale == "en"

    def test_cannot_mutate(self):
        """Test that fields cannot be reassigned."""
        config = ServerConfig()
        with pytest.raises(AttributeError):
            config.locale = "zh"
