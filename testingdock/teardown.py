"""
Teardown Records

Provides:
- Lifecycle states guarding teardown
- Teardown records describing what to remove
- Kind-keyed teardown dispatch
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional

from .docker_manager import DockerManager
from .exceptions import EngineCallError


logger = logging.getLogger("Teardown")


class Lifecycle(Enum):
    """Teardown lifecycle of a node"""
    ACTIVE = "active"
    CLOSING = "closing"
    CLOSED = "closed"


class TeardownKind(Enum):
    """Kind of engine resource a record removes"""
    NETWORK = "network"
    CONTAINER = "container"


@dataclass(frozen=True)
class TeardownRecord:
    """What to remove when a node closes"""

    kind: TeardownKind
    resource_id: str
    name: str
    network_id: Optional[str] = None  # network a container is attached to

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "resource_id": self.resource_id,
            "name": self.name,
            "network_id": self.network_id
        }


async def _teardown_container(docker: DockerManager, record: TeardownRecord) -> None:
    """Disconnect a container from its network, then force-remove it"""
    try:
        if record.network_id:
            await asyncio.to_thread(
                docker.disconnect_container, record.network_id, record.resource_id, True
            )
            logger.info(
                f"(cancel) {record.name:<25} ({record.resource_id}) - "
                f"container disconnected from: {record.network_id}"
            )
        await asyncio.to_thread(docker.remove_container, record.resource_id, True)
    except EngineCallError as e:
        # containers are created with auto-remove, so they may already be gone
        if not e.not_found:
            raise
        logger.info(f"(cancel) {record.name:<25} ({record.resource_id}) - container already removed")
        return

    logger.info(f"(cancel) {record.name:<25} ({record.resource_id}) - container removed")


async def _teardown_network(docker: DockerManager, record: TeardownRecord) -> None:
    """Remove a network"""
    await asyncio.to_thread(docker.remove_network, record.resource_id)
    logger.info(f"(cancel) {record.name:<25} ({record.resource_id}) - network removed")


TEARDOWN_HANDLERS: Dict[TeardownKind, Callable[[DockerManager, TeardownRecord], Awaitable[None]]] = {
    TeardownKind.CONTAINER: _teardown_container,
    TeardownKind.NETWORK: _teardown_network,
}


async def execute_teardown(docker: DockerManager, record: TeardownRecord) -> None:
    """Dispatch a teardown record to the handler for its kind"""
    handler = TEARDOWN_HANDLERS[record.kind]
    await handler(docker, record)
