"""Shared fixtures for the TDD Flow test suite."""

import pytest

from tdd_flow.config import ServerConfig
from tdd_flow.features import FeatureManager
from tdd_flow.services import Services
from tdd_flow.storage import StorageService
from tdd_flow.tdd_logging import observability_hooks, performance_monitor


@pytest.fixture
def storage(tmp_path):
    return StorageService(tmp_path / "home")


@pytest.fixture
def manager(storage, tmp_path):
    return FeatureManager(storage, base_path=tmp_path)


@pytest.fixture
def config(tmp_path):
    project = tmp_path / "project"
    project.mkdir()
    return ServerConfig(storage_home=tmp_path / "home", project_path=project)


@pytest.fixture
def services(config):
    return Services.from_config(config)


@pytest.fixture(autouse=True)
def reset_observability():
    """Keep global hooks and metrics from leaking between tests."""
    yield
    observability_hooks.hooks.clear()
    performance_monitor.clear()
