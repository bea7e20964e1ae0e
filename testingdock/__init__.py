"""
testingdock - Docker networks and containers for integration tests

Provides:
- Named suites holding one network and a tree of dependent containers
- Health-gated, dependency-ordered start, reset and teardown
- Cleanup of stale resources that never touches foreign ones
"""

from .config import OrchestratorConfig, setup_logging

from .docker_manager import (
    DockerManager,
    ContainerInfo,
    NetworkInfo,
    check_docker_available,
    get_docker_client
)

from .exceptions import (
    DockError,
    DockerNotAvailableError,
    EngineCallError,
    OwnershipViolationError,
    MissingAttachmentError,
    HealthCheckTimeoutError,
    ResetError,
    TopologyError
)

from .health import health_check_http, health_check_tcp
from .reset import reset_restart, reset_custom
from .container import Container, ContainerOpts, NodeState
from .network import Network, NetworkOpts
from .teardown import Lifecycle
from .suite import (
    Suite,
    SuiteRegistry,
    get_registry,
    configure_registry,
    get_or_create_suite,
    unregister_all
)
from .helpers import random_port

__all__ = [
    "OrchestratorConfig",
    "setup_logging",
    "DockerManager",
    "ContainerInfo",
    "NetworkInfo",
    "check_docker_available",
    "get_docker_client",
    "DockError",
    "DockerNotAvailableError",
    "EngineCallError",
    "OwnershipViolationError",
    "MissingAttachmentError",
    "HealthCheckTimeoutError",
    "ResetError",
    "TopologyError",
    "health_check_http",
    "health_check_tcp",
    "reset_restart",
    "reset_custom",
    "Container",
    "ContainerOpts",
    "NodeState",
    "Network",
    "NetworkOpts",
    "Lifecycle",
    "Suite",
    "SuiteRegistry",
    "get_registry",
    "configure_registry",
    "get_or_create_suite",
    "unregister_all",
    "random_port"
]
