"""
Docker Manager for Test Orchestration

Provides the low-level Docker operations the orchestrator depends on:
- Network list, create, inspect and removal
- Container list, create, start, restart, removal, inspect and logs
- Image lookup and streamed pulls

Every Docker SDK failure is re-raised as EngineCallError.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Tuple

import docker
from docker.errors import DockerException, NotFound
from docker.utils import parse_repository_tag

from .exceptions import DockerNotAvailableError, EngineCallError


@dataclass
class ContainerInfo:
    """Container status information"""
    id: str
    name: str
    status: str  # created, running, exited, etc.
    image: str
    labels: Dict[str, str] = field(default_factory=dict)
    networks: Dict[str, str] = field(default_factory=dict)  # network name -> network id


@dataclass
class NetworkInfo:
    """Docker network information"""
    id: str
    name: str
    driver: str = "bridge"
    gateway: str = ""
    labels: Dict[str, str] = field(default_factory=dict)
    containers: List[str] = field(default_factory=list)


def check_docker_available(client=None) -> Tuple[bool, str]:
    """
    Check if Docker is available and running

    Returns:
        Tuple of (available: bool, message: str)
    """
    try:
        client = client or docker.from_env()
        client.ping()
        version = client.version()
        return True, f"Docker {version.get('Version', 'unknown')} available"
    except DockerException as e:
        return False, f"Docker not running or not accessible: {e}"


def get_docker_client():
    """
    Get Docker client instance

    Raises:
        DockerNotAvailableError: If Docker is not available
    """
    try:
        client = docker.from_env()
        client.ping()
        return client
    except DockerException as e:
        raise DockerNotAvailableError(f"Cannot connect to Docker: {e}")


@contextmanager
def _engine_call(operation: str, resource: str):
    """Translate Docker SDK errors into EngineCallError"""
    try:
        yield
    except NotFound as e:
        raise EngineCallError(operation, resource, str(e), not_found=True) from e
    except DockerException as e:
        raise EngineCallError(operation, resource, str(e)) from e


class DockerManager:
    """
    Docker operations used by networks and containers

    All methods are blocking; the orchestrator runs them in worker threads.
    """

    def __init__(self, client=None):
        """
        Initialize Docker manager

        Args:
            client: Existing docker.DockerClient, connects from the environment if None
        """
        self.logger = logging.getLogger("DockerManager")
        self._client = client
        self._available = True if client is not None else None
        self._error_message = None

    @property
    def client(self):
        """Get Docker client (lazy initialization)"""
        if self._client is None:
            self._check_availability()
            if not self._available:
                raise DockerNotAvailableError(self._error_message)
        return self._client

    @property
    def available(self) -> bool:
        """Check if Docker is available"""
        if self._available is None:
            self._check_availability()
        return self._available

    @property
    def error_message(self) -> Optional[str]:
        """Get error message if Docker is not available"""
        if self._available is None:
            self._check_availability()
        return self._error_message

    def _check_availability(self):
        """Check Docker availability and cache result"""
        available, message = check_docker_available()
        self._available = available
        if available:
            self._client = get_docker_client()
            self.logger.info(f"Docker available: {message}")
        else:
            self._error_message = message
            self.logger.warning(f"Docker not available: {message}")

    # Network Operations

    def list_networks(self, name: str) -> List[NetworkInfo]:
        """
        List networks whose name is exactly the given name

        The engine filters by substring, so results are matched again here.
        """
        with _engine_call("network listing", name):
            networks = self.client.api.networks(names=[name])
        return [
            self._network_summary_to_info(n)
            for n in networks
            if n.get("Name") == name
        ]

    def create_network(self, name: str, labels: Dict[str, str], driver: str = "bridge") -> str:
        """
        Create a Docker network

        Returns:
            ID of the created network
        """
        with _engine_call("network creation", name):
            result = self.client.api.create_network(name, driver=driver, labels=labels)
        self.logger.debug(f"Created Docker network: {name}")
        return result["Id"]

    def inspect_network(self, network_id: str) -> NetworkInfo:
        """Get network info by id"""
        with _engine_call("network inspect", network_id):
            attrs = self.client.api.inspect_network(network_id)
        return self._network_summary_to_info(attrs)

    def remove_network(self, network_id: str) -> None:
        """Remove a Docker network"""
        with _engine_call("network removal", network_id):
            self.client.api.remove_network(network_id)

    def _network_summary_to_info(self, attrs: Dict[str, Any]) -> NetworkInfo:
        """Convert a Docker network dict to NetworkInfo"""
        ipam_configs = (attrs.get("IPAM") or {}).get("Config") or []
        gateway = ipam_configs[0].get("Gateway", "") if ipam_configs else ""

        return NetworkInfo(
            id=attrs.get("Id", ""),
            name=attrs.get("Name", ""),
            driver=attrs.get("Driver", "unknown"),
            gateway=gateway or "",
            labels=attrs.get("Labels") or {},
            containers=list((attrs.get("Containers") or {}).keys())
        )

    # Container Operations

    def list_containers(
        self,
        name: Optional[str] = None,
        network_id: Optional[str] = None
    ) -> List[ContainerInfo]:
        """
        List containers, including stopped ones

        Args:
            name: Only containers with exactly this name
            network_id: Only containers attached to this network
        """
        filters = {}
        if name:
            filters["name"] = name
        if network_id:
            filters["network"] = network_id

        with _engine_call("container listing", name or network_id or "*"):
            containers = self.client.api.containers(all=True, filters=filters)

        infos = [self._container_summary_to_info(c) for c in containers]
        if name:
            infos = [c for c in infos if c.name == name]
        return infos

    def create_container(
        self,
        name: str,
        image: str,
        network: str,
        labels: Dict[str, str],
        options: Optional[Dict[str, Any]] = None
    ) -> str:
        """
        Create (but do not start) a container attached to a network

        Args:
            name: Container name
            image: Docker image
            network: Network name to connect to
            labels: Container labels
            options: Extra keyword arguments for containers.create
                     (command, environment, ports, volumes, ...)

        Returns:
            ID of the created container
        """
        kwargs = dict(options or {})
        kwargs.update(name=name, network=network, labels=labels, auto_remove=True)

        with _engine_call("container creation", name):
            container = self.client.containers.create(image, **kwargs)
        return container.id

    def start_container(self, container_id: str) -> None:
        """Start a created container"""
        with _engine_call("container start", container_id):
            self.client.api.start(container_id)

    def restart_container(self, container_id: str, timeout: int = 10) -> None:
        """Restart a container"""
        with _engine_call("container restart", container_id):
            self.client.api.restart(container_id, timeout=timeout)

    def remove_container(self, container_id: str, force: bool = True, volumes: bool = False) -> None:
        """Remove a container, killing it first if force is set"""
        with _engine_call("container removal", container_id):
            self.client.api.remove_container(container_id, force=force, v=volumes)

    def disconnect_container(self, network_id: str, container_id: str, force: bool = True) -> None:
        """Disconnect a container from a network"""
        with _engine_call("container disconnect", container_id):
            self.client.api.disconnect_container_from_network(
                container_id, network_id, force=force
            )

    def inspect_container(self, container_id: str) -> ContainerInfo:
        """Get container info by id"""
        with _engine_call("container inspect", container_id):
            attrs = self.client.api.inspect_container(container_id)

        state = attrs.get("State") or {}
        networks = (attrs.get("NetworkSettings") or {}).get("Networks") or {}

        return ContainerInfo(
            id=attrs.get("Id", container_id),
            name=attrs.get("Name", "").lstrip("/"),
            status=state.get("Status", "unknown"),
            image=(attrs.get("Config") or {}).get("Image", "unknown"),
            labels=(attrs.get("Config") or {}).get("Labels") or {},
            networks={n: cfg.get("NetworkID", "") for n, cfg in networks.items()}
        )

    def stream_container_logs(self, container_id: str) -> Iterator[bytes]:
        """
        Follow stdout/stderr of a container

        The returned iterator ends when the container goes away.
        """
        with _engine_call("container logging", container_id):
            return self.client.api.logs(
                container_id, stdout=True, stderr=True, stream=True, follow=True
            )

    def _container_summary_to_info(self, summary: Dict[str, Any]) -> ContainerInfo:
        """Convert a Docker container list entry to ContainerInfo"""
        names = summary.get("Names") or []
        networks = (summary.get("NetworkSettings") or {}).get("Networks") or {}

        return ContainerInfo(
            id=summary.get("Id", ""),
            name=names[0].lstrip("/") if names else "",
            status=summary.get("State", "unknown"),
            image=summary.get("Image", "unknown"),
            labels=summary.get("Labels") or {},
            networks={n: cfg.get("NetworkID", "") for n, cfg in networks.items()}
        )

    # Image Operations

    def image_exists(self, image: str) -> bool:
        """Check if an image matching the reference exists locally"""
        with _engine_call("image listing", image):
            return len(self.client.api.images(name=image, quiet=True)) > 0

    def pull_image(self, image: str) -> int:
        """
        Pull a Docker image, consuming the whole progress stream

        Returns:
            Number of progress messages read
        """
        repository, tag = parse_repository_tag(image)
        messages = 0

        with _engine_call("image pull", image):
            stream = self.client.api.pull(repository, tag=tag or "latest", stream=True, decode=True)
            for message in stream:
                messages += 1
                if "error" in message:
                    raise EngineCallError("image pull", image, message["error"])

        self.logger.debug(f"Pulled image {image} ({messages} progress messages)")
        return messages
