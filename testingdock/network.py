"""
Network nodes

A Network is the root of a container dependency tree. Starting it creates
the Docker network and then its root containers; closing it removes the
whole container tree before the network itself.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .config import OrchestratorConfig
from .container import Container, NodeState, validate_edge
from .docker_manager import DockerManager
from .exceptions import DockError, EngineCallError
from .ownership import cleanup_networks, create_testing_labels
from .scheduler import fan_out
from .teardown import Lifecycle, TeardownKind, TeardownRecord, execute_teardown


@dataclass
class NetworkOpts:
    """Options for creating a network configuration"""

    name: str
    driver: str = "bridge"
    labels: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        if not self.name:
            raise ValueError("network name is required")


class Network:
    """
    Docker network configuration owning a tree of containers
    """

    def __init__(
        self,
        docker: DockerManager,
        opts: NetworkOpts,
        config: Optional[OrchestratorConfig] = None
    ):
        """
        Initialize network configuration

        Args:
            docker: Docker manager used for every engine call
            opts: Network options
            config: Run configuration (scheduling, verbosity, polling)
        """
        self.logger = logging.getLogger("Network")
        self.docker = docker
        self.config = config or OrchestratorConfig()

        self.id: Optional[str] = None
        self.name = opts.name
        self.driver = opts.driver
        self.labels = create_testing_labels(opts.labels)
        self.gateway: Optional[str] = None

        self.children: List[Container] = []
        self.state = NodeState.UNCONFIGURED
        self.lifecycle = Lifecycle.ACTIVE
        self.teardown: Optional[TeardownRecord] = None

    def __repr__(self) -> str:
        return f"Network(name={self.name!r}, state={self.state.value})"

    @property
    def started(self) -> bool:
        """Whether start() has been invoked"""
        return self.state != NodeState.UNCONFIGURED

    def after(self, container: Container) -> Container:
        """
        Add a root container to the network

        Returns:
            The container, so edges can be chained
        """
        validate_edge(self, container)
        container.parent = self
        self.children.append(container)
        container._attach_network(self)
        return container

    async def start(self) -> None:
        """
        Remove stale networks of the same name, create the network and start
        the root containers
        """
        if self.lifecycle != Lifecycle.ACTIVE:
            raise DockError(f"network {self.name} is closed")
        if self.started:
            raise DockError(f"network {self.name} was already started")

        await cleanup_networks(self.docker, self.name)
        self.state = NodeState.CLEANED

        self.id = await asyncio.to_thread(
            self.docker.create_network, self.name, self.labels, self.driver
        )
        self.teardown = TeardownRecord(
            kind=TeardownKind.NETWORK,
            resource_id=self.id,
            name=self.name
        )
        self.state = NodeState.CREATED
        self.logger.info(f"(setup ) {self.name:<25} ({self.id}) - network created")

        try:
            info = await asyncio.to_thread(self.docker.inspect_network, self.id)
        except EngineCallError:
            await execute_teardown(self.docker, self.teardown)
            self.lifecycle = Lifecycle.CLOSED
            raise

        self.gateway = info.gateway
        self.state = NodeState.RUNNING
        self.logger.info(f"(setup ) {self.name:<25} ({self.id}) - network got gateway ip: {self.gateway}")

        await fan_out(self.children, lambda c: c.start(), self.config)
        self.state = NodeState.HEALTHY

    async def reset(self) -> None:
        """Reset root containers one after another"""
        for container in self.children:
            await container.reset()

    async def close(self) -> None:
        """
        Close every container in the tree, then remove the network

        Only the first successful call has any effect. After a failure the
        network stays active so a later close can retry.
        """
        if self.lifecycle != Lifecycle.ACTIVE:
            return
        self.lifecycle = Lifecycle.CLOSING

        try:
            await fan_out(self.children, lambda c: c.close(), self.config)

            if self.teardown is not None:
                await execute_teardown(self.docker, self.teardown)
                self.teardown = None
        except BaseException:
            self.lifecycle = Lifecycle.ACTIVE
            raise

        self.lifecycle = Lifecycle.CLOSED
        self.state = NodeState.CLOSED

    def walk(self) -> List[Container]:
        """All containers in the tree, parents before children"""
        result = []
        stack = list(reversed(self.children))
        while stack:
            container = stack.pop()
            result.append(container)
            stack.extend(reversed(container.children))
        return result

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "driver": self.driver,
            "gateway": self.gateway,
            "state": self.state.value,
            "lifecycle": self.lifecycle.value,
            "containers": [c.to_dict() for c in self.children]
        }
