"""
Pytest configuration file

Shared fixtures: a fake engine and fast-polling configurations.
"""

import pytest

from ..config import OrchestratorConfig
from .fakes import FakeDockerManager


@pytest.fixture
def docker():
    return FakeDockerManager(images={"busybox:latest"})


@pytest.fixture
def config():
    return OrchestratorConfig(health_check_interval=0.01, default_health_check_timeout=1.0)


@pytest.fixture
def sequential_config():
    return OrchestratorConfig(
        parallel=False,
        health_check_interval=0.01,
        default_health_check_timeout=1.0
    )
