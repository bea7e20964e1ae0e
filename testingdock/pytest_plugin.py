"""
pytest integration

Provides:
- --testingdock-sequential / --testingdock-verbose switches
- testingdock_registry fixture
- Closing of every registered suite at the end of the session
"""

import asyncio
import logging

import pytest

from .config import OrchestratorConfig
from .suite import SuiteRegistry, configure_registry, get_registry


logger = logging.getLogger("testingdock")


def pytest_addoption(parser):
    group = parser.getgroup("testingdock")
    group.addoption(
        "--testingdock-sequential",
        action="store_true",
        default=False,
        help="start and close sibling containers one after another"
    )
    group.addoption(
        "--testingdock-verbose",
        action="store_true",
        default=False,
        help="follow container stdout/stderr in the log"
    )
    group.addoption(
        "--testingdock-skip-unavailable",
        action="store_true",
        default=False,
        help="skip tests using testingdock_registry when Docker is not reachable"
    )


def pytest_configure(config):
    env = OrchestratorConfig.from_env()
    configure_registry(OrchestratorConfig(
        parallel=env.parallel and not config.getoption("testingdock_sequential"),
        verbose=env.verbose or config.getoption("testingdock_verbose"),
        max_parallel=env.max_parallel
    ))


def pytest_sessionfinish(session, exitstatus):
    registry = get_registry()
    if len(registry) == 0:
        return
    failures = asyncio.run(registry.unregister_all())
    for name, error in failures.items():
        logger.error(f"Suite {name} was not cleaned up: {error}")


def session_registry(config) -> SuiteRegistry:
    """Default registry, skipping the test if Docker is required but unreachable"""
    registry = get_registry()
    if config.getoption("testingdock_skip_unavailable") and not registry.docker.available:
        pytest.skip(f"docker unavailable: {registry.docker.error_message}")
    return registry


@pytest.fixture(scope="session")
def testingdock_registry(request) -> SuiteRegistry:
    """The session's suite registry"""
    return session_registry(request.config)
