"""
Suites and the suite registry

A Suite bundles one test run's network and container tree under a name.
Suites are obtained idempotently from a SuiteRegistry, so tests sharing a
name share the same Docker setup.
"""

import logging
import threading
from typing import Dict, List, Optional, Tuple

from .config import OrchestratorConfig
from .container import Container, ContainerOpts
from .docker_manager import DockerManager
from .network import Network, NetworkOpts


class Suite:
    """
    Testing suite with a Docker setup
    """

    def __init__(
        self,
        name: str,
        docker: DockerManager,
        config: Optional[OrchestratorConfig] = None
    ):
        self.logger = logging.getLogger("Suite")
        self.name = name
        self.docker = docker
        self.config = config or OrchestratorConfig()
        self._network: Optional[Network] = None

    def __repr__(self) -> str:
        return f"Suite(name={self.name!r})"

    @property
    def current_network(self) -> Optional[Network]:
        """The network attached by the last network() call"""
        return self._network

    def network(self, opts: NetworkOpts) -> Network:
        """
        Create a network configuration and attach it to the suite

        A second call replaces the attached network; the previous one is
        not closed.
        """
        if self._network is not None:
            self.logger.warning(
                f"Suite {self.name}: replacing network {self._network.name} with {opts.name}, "
                f"the previous network will not be closed by this suite"
            )
        self._network = Network(self.docker, opts, self.config)
        return self._network

    def container(self, opts: ContainerOpts) -> Container:
        """Create a container configuration, not attached to any network"""
        return Container(self.docker, opts, self.config)

    async def start(self) -> None:
        """Start the network and its containers"""
        if self._network is not None:
            await self._network.start()

    async def reset(self) -> None:
        """
        Reset the containers in the network

        Calls each container's reset action and health check, parents first.
        """
        if self._network is not None:
            await self._network.reset()

    async def close(self) -> None:
        """Remove all containers and the network"""
        if self._network is not None:
            await self._network.close()


class SuiteRegistry:
    """
    Process-scoped, name keyed store of suites
    """

    def __init__(
        self,
        config: Optional[OrchestratorConfig] = None,
        docker_manager: Optional[DockerManager] = None
    ):
        """
        Initialize suite registry

        Args:
            config: Run configuration handed to every suite
            docker_manager: Docker manager for suites created without one
                (connects lazily on first engine call)
        """
        self.logger = logging.getLogger("SuiteRegistry")
        self.config = config or OrchestratorConfig()
        self._docker = docker_manager
        self._suites: Dict[str, Suite] = {}
        self._lock = threading.Lock()

    @property
    def docker(self) -> DockerManager:
        with self._lock:
            if self._docker is None:
                self._docker = DockerManager()
            return self._docker

    def get_or_create(
        self,
        name: str,
        docker_manager: Optional[DockerManager] = None
    ) -> Tuple[Suite, bool]:
        """
        Return the suite registered under `name`, creating it if needed

        Args:
            name: Suite name
            docker_manager: Docker manager for a newly created suite

        Returns:
            Tuple of (suite, existed) where existed is True if the suite
            was already registered
        """
        docker = docker_manager or self.docker
        with self._lock:
            suite = self._suites.get(name)
            if suite is not None:
                return suite, True

            suite = Suite(name, docker, self.config)
            self._suites[name] = suite
            return suite, False

    def get(self, name: str) -> Optional[Suite]:
        with self._lock:
            return self._suites.get(name)

    def names(self) -> List[str]:
        with self._lock:
            return list(self._suites.keys())

    def __len__(self) -> int:
        with self._lock:
            return len(self._suites)

    def __contains__(self, name: str) -> bool:
        with self._lock:
            return name in self._suites

    async def unregister_all(self) -> Dict[str, Exception]:
        """
        Close every suite's network and clear the registry

        Failures are logged and do not stop the remaining suites from
        being closed.

        Returns:
            Mapping of suite name to the error that closing it raised
        """
        self.logger.info("(unregi) start")

        with self._lock:
            suites = list(self._suites.items())
            self._suites.clear()

        failures: Dict[str, Exception] = {}
        for name, suite in suites:
            network = suite.current_network
            if network is None:
                continue
            try:
                await suite.close()
            except Exception as e:
                failures[name] = e
                self.logger.error(f"(unregi) {name:<25} ({network.id}) - suite unregister failure: {e}")
            else:
                self.logger.info(f"(unregi) {name:<25} ({network.id}) - suite unregistered")

        self.logger.info("(unregi) finished")
        return failures


# Module-level convenience functions

_default_registry: Optional[SuiteRegistry] = None
_default_lock = threading.Lock()


def get_registry() -> SuiteRegistry:
    """Get or create the default registry, configured from the environment"""
    global _default_registry
    with _default_lock:
        if _default_registry is None:
            _default_registry = SuiteRegistry(OrchestratorConfig.from_env())
        return _default_registry


def configure_registry(
    config: OrchestratorConfig,
    docker_manager: Optional[DockerManager] = None
) -> SuiteRegistry:
    """Replace the default registry with one using the given configuration"""
    global _default_registry
    with _default_lock:
        _default_registry = SuiteRegistry(config, docker_manager)
        return _default_registry


def get_or_create_suite(
    name: str,
    docker_manager: Optional[DockerManager] = None
) -> Tuple[Suite, bool]:
    """Get or create a suite in the default registry"""
    return get_registry().get_or_create(name, docker_manager)


async def unregister_all() -> Dict[str, Exception]:
    """Close and unregister every suite in the default registry"""
    return await get_registry().unregister_all()
