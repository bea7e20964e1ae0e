"""
Container nodes

A Container is a configuration for a Docker container, not necessarily a
running one. Containers form a tree below a Network: children are
dependencies started after their parent is healthy, reset after their
parent was reset, and removed before their parent is removed.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Union

from .config import OrchestratorConfig
from .docker_manager import DockerManager
from .exceptions import DockError, EngineCallError, MissingAttachmentError, TopologyError
from .health import HealthCheckFunc, wait_until_healthy
from .ownership import cleanup_containers, create_testing_labels
from .reset import ResetFunc, reset_restart, run_reset_action
from .scheduler import fan_out
from .teardown import Lifecycle, TeardownKind, TeardownRecord, execute_teardown

if TYPE_CHECKING:
    from .network import Network


# create options managed by the orchestrator itself
RESERVED_OPTIONS = ("name", "network", "network_mode", "labels", "auto_remove", "detach")


class NodeState(Enum):
    """Start progress of a network or container"""
    UNCONFIGURED = "unconfigured"
    CLEANED = "cleaned"
    CREATED = "created"
    RUNNING = "running"
    HEALTHY = "healthy"
    CLOSED = "closed"


@dataclass
class ContainerOpts:
    """Options for creating a container configuration"""

    name: str
    image: str
    # keyword arguments for docker's containers.create (command, environment, ...)
    config: Dict[str, Any] = field(default_factory=dict)
    # host level options (ports, volumes, ...); auto_remove is always on
    host_config: Dict[str, Any] = field(default_factory=dict)
    labels: Dict[str, str] = field(default_factory=dict)
    # called on start and reset until it passes; default: container is running
    health_check: Optional[HealthCheckFunc] = None
    # seconds, default from OrchestratorConfig (30s)
    health_check_timeout: Optional[float] = None
    # called on reset; default: restart the container
    reset: Optional[ResetFunc] = None
    force_pull: bool = False
    # follow container stdout/stderr; None uses OrchestratorConfig.verbose
    verbose: Optional[bool] = None

    def __post_init__(self):
        if not self.name:
            raise ValueError("container name is required")
        if not self.image:
            raise ValueError("container image is required")
        if self.health_check_timeout is not None and self.health_check_timeout <= 0:
            raise ValueError("health_check_timeout must be positive")


def validate_edge(parent: Union["Network", "Container"], child: "Container") -> None:
    """
    Check that attaching `child` below `parent` keeps the tree a forest

    Raises:
        TopologyError: On self-attachment, double attachment, cycles or
            edges added after start
    """
    if not isinstance(child, Container):
        raise TypeError(f"expected Container, got {type(child).__name__}")
    if child is parent:
        raise TopologyError(f"container {child.name} cannot depend on itself")
    if child.parent is not None:
        raise TopologyError(f"container {child.name} is already attached to {child.parent.name}")

    node = parent
    while isinstance(node, Container):
        if node is child:
            raise TopologyError(f"container {child.name} is an ancestor of {parent.name}")
        node = node.parent

    root = parent.network if isinstance(parent, Container) else parent
    if parent.state != NodeState.UNCONFIGURED or (root is not None and root.started):
        raise TopologyError(f"cannot add {child.name} after {parent.name} was started")


class Container:
    """
    Docker container configuration and its dependents
    """

    def __init__(
        self,
        docker: DockerManager,
        opts: ContainerOpts,
        config: Optional[OrchestratorConfig] = None
    ):
        """
        Initialize container configuration

        Args:
            docker: Docker manager used for every engine call
            opts: Container options
            config: Run configuration (scheduling, verbosity, polling)
        """
        self.logger = logging.getLogger("Container")
        self.docker = docker
        self.config = config or OrchestratorConfig()

        self.id: Optional[str] = None
        self.name = opts.name
        self.image = opts.image
        self.labels = create_testing_labels(opts.labels)
        self.options = {
            k: v for k, v in {**opts.config, **opts.host_config}.items()
            if k not in RESERVED_OPTIONS
        }

        self.health_check = opts.health_check
        self.health_check_timeout = opts.health_check_timeout or self.config.default_health_check_timeout
        self.reset_action = opts.reset or reset_restart()
        self.force_pull = opts.force_pull
        self.verbose = self.config.verbose if opts.verbose is None else opts.verbose

        self.network: Optional["Network"] = None
        self.parent: Optional[Union["Network", "Container"]] = None
        # children are dependencies started after this container
        self.children: List[Container] = []

        self.state = NodeState.UNCONFIGURED
        self.lifecycle = Lifecycle.ACTIVE
        self.teardown: Optional[TeardownRecord] = None
        self._log_task: Optional[asyncio.Task] = None
        self._log_stream = None

    def __repr__(self) -> str:
        return f"Container(name={self.name!r}, image={self.image!r}, state={self.state.value})"

    def after(self, child: "Container") -> "Container":
        """
        Add a dependent container, started after this one is healthy

        The child joins this container's network.

        Returns:
            The child, so edges can be chained
        """
        validate_edge(self, child)
        child.parent = self
        self.children.append(child)
        child._attach_network(self.network)
        return child

    def _attach_network(self, network: Optional["Network"]) -> None:
        self.network = network
        for child in self.children:
            child._attach_network(network)

    # Start

    async def start(self) -> None:
        """
        Pull, clean up, create and start the container, wait for it to be
        healthy, then start its children
        """
        if self.network is None:
            raise MissingAttachmentError(self.name)
        if self.lifecycle != Lifecycle.ACTIVE:
            raise DockError(f"container {self.name} is closed")
        if self.state != NodeState.UNCONFIGURED:
            raise DockError(f"container {self.name} was already started")

        await self._ensure_image()

        await cleanup_containers(self.docker, self.name)
        self.state = NodeState.CLEANED

        self.id = await asyncio.to_thread(
            self.docker.create_container,
            self.name,
            self.image,
            self.network.name,
            self.labels,
            self.options
        )
        self.teardown = TeardownRecord(
            kind=TeardownKind.CONTAINER,
            resource_id=self.id,
            name=self.name,
            network_id=self.network.id
        )
        self.state = NodeState.CREATED
        self.logger.info(f"(setup ) {self.name:<25} ({self.id}) - container created")

        await asyncio.to_thread(self.docker.start_container, self.id)
        self.state = NodeState.RUNNING
        self.logger.info(f"(setup ) {self.name:<25} ({self.id}) - container started")

        if self.verbose:
            self._log_task = asyncio.create_task(self._follow_logs())

        await self._execute_health_check()
        self.state = NodeState.HEALTHY

        await fan_out(self.children, lambda c: c.start(), self.config)

    async def _ensure_image(self) -> None:
        """Pull the image if it is missing locally or force_pull is set"""
        exists = await asyncio.to_thread(self.docker.image_exists, self.image)
        if exists and not self.force_pull:
            return

        self.logger.info(f"(setup ) {self.name:<25} ({self.id}) - pulling image {self.image}")
        await asyncio.to_thread(self.docker.pull_image, self.image)
        self.logger.info(f"(setup ) {self.name:<25} ({self.id}) - image {self.image} pulled")

    def _is_running(self) -> bool:
        """Default health check: the engine reports the container running"""
        info = self.docker.inspect_container(self.id)
        if info.status != "running":
            raise RuntimeError(f"container status is {info.status}")
        return True

    async def _execute_health_check(self) -> None:
        """Block until the health check passes, the timeout elapses or the caller cancels"""
        predicate = self.health_check or self._is_running
        polls = await wait_until_healthy(
            predicate,
            self.name,
            self.id,
            timeout=self.health_check_timeout,
            interval=self.config.health_check_interval
        )
        self.logger.info(f"(setup ) {self.name:<25} ({self.id}) - container healthy after {polls} checks")

    # Logs

    async def _follow_logs(self) -> None:
        """Log container output until the stream ends or the task is cancelled"""
        try:
            stream = await asyncio.to_thread(self._open_log_stream)
            self.logger.info(f"(loggi ) {self.name:<25} ({self.id}) - container logging started")
            await asyncio.to_thread(self._consume_logs, stream)
            self.logger.info(f"(loggi ) {self.name:<25} ({self.id}) - EOF reached, stopping logging")
        except asyncio.CancelledError:
            self._close_log_stream()
            self.logger.info(f"(loggi ) {self.name:<25} ({self.id}) - logging cancelled")
            raise
        except EngineCallError as e:
            self.logger.error(f"(loggi ) {self.name:<25} ({self.id}) - container logging failure: {e}")
        except Exception as e:
            # closing the stream from close() interrupts the reader thread
            if self.lifecycle == Lifecycle.ACTIVE:
                self.logger.error(f"(loggi ) {self.name:<25} ({self.id}) - container logging failure: {e}")

    def _open_log_stream(self):
        stream = self.docker.stream_container_logs(self.id)
        self._log_stream = stream
        # close() may have run while the stream was being opened
        if self.lifecycle != Lifecycle.ACTIVE:
            self._close_log_stream()
        return stream

    def _close_log_stream(self) -> None:
        stream, self._log_stream = self._log_stream, None
        if stream is not None and hasattr(stream, "close"):
            stream.close()

    def _consume_logs(self, stream) -> None:
        pending = b""
        for chunk in stream:
            pending += chunk
            *lines, pending = pending.split(b"\n")
            for line in lines:
                self._log_line(line)
        if pending:
            self._log_line(pending)

    def _log_line(self, line: bytes) -> None:
        text = line.decode("utf-8", errors="replace").rstrip()
        if text:
            self.logger.info(f"(clogs ) {self.name:<25} ({self.id}) - {text}")

    def _stop_logs(self) -> None:
        self._close_log_stream()
        if self._log_task is not None and not self._log_task.done():
            self._log_task.cancel()

    # Reset

    async def reset(self) -> None:
        """
        Run the reset action, wait for health, then reset children one by one

        Children are never reset in parallel: each dependency is healthy
        again before its dependents reset.
        """
        if self.state != NodeState.HEALTHY:
            raise DockError(f"container {self.name} is not running ({self.state.value})")

        await run_reset_action(self.reset_action, self)
        await self._execute_health_check()
        self.logger.info(f"(reset ) {self.name:<25} ({self.id}) - container reset")

        for child in self.children:
            await child.reset()

    # Close

    async def close(self) -> None:
        """
        Close children, then remove this container

        Only the first successful call has any effect. After a failure the
        container stays active so a later close can retry.
        """
        if self.lifecycle != Lifecycle.ACTIVE:
            return
        self.lifecycle = Lifecycle.CLOSING

        try:
            await fan_out(self.children, lambda c: c.close(), self.config)

            self._stop_logs()
            if self.teardown is not None:
                await execute_teardown(self.docker, self.teardown)
                self.teardown = None
        except BaseException:
            self.lifecycle = Lifecycle.ACTIVE
            raise

        self.lifecycle = Lifecycle.CLOSED
        self.state = NodeState.CLOSED

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "image": self.image,
            "state": self.state.value,
            "lifecycle": self.lifecycle.value,
            "network": self.network.name if self.network else None,
            "health_check_timeout": self.health_check_timeout,
            "force_pull": self.force_pull,
            "verbose": self.verbose,
            "children": [c.to_dict() for c in self.children]
        }
