"""
Ownership Guard

Every network and container created by testingdock carries the label
owner=testingdock. Before a resource is created, stale resources with the
same name are removed, but only if they carry that label.
"""

import asyncio
import logging
from typing import Dict, List, Optional

from .docker_manager import ContainerInfo, DockerManager, NetworkInfo
from .exceptions import OwnershipViolationError


OWNER_LABEL = "owner"
OWNER_VALUE = "testingdock"

logger = logging.getLogger("OwnershipGuard")


def create_testing_labels(labels: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    """Return labels with the ownership marker merged in"""
    merged = dict(labels or {})
    merged[OWNER_LABEL] = OWNER_VALUE
    return merged


def is_owned_by_testingdock(labels: Dict[str, str]) -> bool:
    """Check whether a resource carries the ownership marker"""
    return (labels or {}).get(OWNER_LABEL) == OWNER_VALUE


async def cleanup_containers(docker: DockerManager, name: str) -> int:
    """
    Remove existing containers named `name`

    Raises:
        OwnershipViolationError: If any match lacks the ownership marker;
            nothing is removed in that case

    Returns:
        Number of containers removed
    """
    containers = await asyncio.to_thread(docker.list_containers, name=name)

    for cont in containers:
        if not is_owned_by_testingdock(cont.labels):
            raise OwnershipViolationError("container", name, cont.id)

    for cont in containers:
        await asyncio.to_thread(docker.remove_container, cont.id, force=True, volumes=True)
        logger.info(f"(setup ) {cont.name:<25} ({cont.id}) - container removed")

    return len(containers)


async def cleanup_networks(docker: DockerManager, name: str) -> int:
    """
    Remove existing networks named `name` and the containers attached to them

    Raises:
        OwnershipViolationError: If a matching network or one of its attached
            containers lacks the ownership marker; nothing is removed in that case

    Returns:
        Number of networks removed
    """
    networks: List[NetworkInfo] = await asyncio.to_thread(docker.list_networks, name)

    attached: Dict[str, List[ContainerInfo]] = {}
    for net in networks:
        if not is_owned_by_testingdock(net.labels):
            raise OwnershipViolationError("network", name, net.id)

        containers = await asyncio.to_thread(docker.list_containers, network_id=net.id)
        for cont in containers:
            if not is_owned_by_testingdock(cont.labels):
                raise OwnershipViolationError("container", cont.name, cont.id)
        attached[net.id] = containers

    for net in networks:
        for cont in attached[net.id]:
            await asyncio.to_thread(docker.remove_container, cont.id, force=True, volumes=True)
            logger.info(f"(setup ) {net.name:<25} ({net.id}) - network endpoint removed: {cont.name}")

        await asyncio.to_thread(docker.remove_network, net.id)
        logger.info(f"(setup ) {net.name:<25} ({net.id}) - network removed")

    return len(networks)
