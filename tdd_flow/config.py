"""Environment-driven configuration for the TDD Flow server."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Mapping, Optional

from .i18n import DEFAULT_LOCALE, SUPPORTED_LOCALES

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _parse_bool(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in _TRUE_VALUES


def _parse_float(name: str, value: Optional[str], default: float) -> float:
    if value is None or not value.strip():
        return default
    try:
        parsed = float(value)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be a number, got '{value}'") from exc
    if not 0 <= parsed <= 100:
        raise ValueError(f"Environment variable {name} must be between 0 and 100, got '{value}'")
    return parsed


@dataclass(frozen=True, slots=True)
class ServerConfig:
    """Immutable settings shared by every handler of one server instance."""

    use_new_tools: bool = False
    locale: str = DEFAULT_LOCALE
    project_path: Path = Path(".")
    default_language: str = "typescript"
    default_test_framework: str = "jest"
    coverage_threshold: float = 80.0
    storage_home: Optional[Path] = None
    log_level: str = "INFO"
    log_file: Optional[Path] = None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ServerConfig":
        env = os.environ if environ is None else environ
        logger = logging.getLogger("tdd_flow.config")

        locale = (env.get("DEFAULT_LOCALE") or DEFAULT_LOCALE).strip().lower()
        if locale not in SUPPORTED_LOCALES:
            logger.warning(f"Unsupported DEFAULT_LOCALE '{locale}', falling back to '{DEFAULT_LOCALE}'")
            locale = DEFAULT_LOCALE

        project_path = Path(env.get("PROJECT_PATH") or os.getcwd()).expanduser().resolve()
        storage_home = env.get("TDD_FLOW_HOME")
        log_file = env.get("TDD_FLOW_LOG_FILE")

        return cls(
            use_new_tools=_parse_bool(env.get("USE_NEW_TOOLS")),
            locale=locale,
            project_path=project_path,
            default_language=(env.get("DEFAULT_LANGUAGE") or "typescript").strip().lower(),
            default_test_framework=(env.get("DEFAULT_TEST_FRAMEWORK") or "jest").strip(),
            coverage_threshold=_parse_float("COVERAGE_THRESHOLD", env.get("COVERAGE_THRESHOLD"), 80.0),
            storage_home=Path(storage_home).expanduser() if storage_home else None,
            log_level=(env.get("TDD_FLOW_LOG_LEVEL") or "INFO").upper(),
            log_file=Path(log_file).expanduser() if log_file else None,
        )

    def with_locale(self, locale: str) -> "ServerConfig":
        return replace(self, locale=locale)
