"""
Pytest configuration for docker-ops-manager tests.
"""

import logging
import os
import sys

import pytest

# Add the src and tests directories to the Python path
src_path = os.path.join(os.path.dirname(__file__), '..', 'src')
sys.path.insert(0, os.path.abspath(src_path))
sys.path.insert(0, os.path.abspath(os.path.dirname(__file__)))

# Import test fixtures
from fixtures.runtime_fixtures import *  # noqa: E402,F401,F403
from docker_ops_manager.utils.logger import logger  # noqa: E402


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path, monkeypatch):
    """Keep every test away from the real config directory."""
    monkeypatch.setenv("DOCKER_OPS_CONFIG_DIR", str(tmp_path / "config"))
    for var in (
        "DOCKER_OPS_STATE_FILE",
        "DOCKER_OPS_CONFIG_FILE",
        "DOCKER_OPS_LOG_DIR",
        "DOCKER_OPS_LOG_FILE",
        "DOCKER_OPS_READINESS_TIMEOUT",
        "DOCKER_OPS_MAX_WORKERS",
    ):
        monkeypatch.delenv(var, raising=False)
    yield
    for handler in list(logger.handlers):
        if isinstance(handler, logging.FileHandler):
            logger.removeHandler(handler)
            handler.close()


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "slow: marks tests as slow running"
    )
    config.addinivalue_line(
        "markers", "requires_docker: marks tests that require Docker to be running"
    )
