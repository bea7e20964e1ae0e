"""
Exceptions raised by the testingdock orchestrator

Every error except those logged during bulk unregistration is fatal to the
start, reset or close call that raised it.
"""

from typing import Optional


class DockError(Exception):
    """Base class for all testingdock errors"""
    pass


class DockerNotAvailableError(DockError):
    """Raised when Docker is not available or not running"""
    pass


class EngineCallError(DockError):
    """Raised when a call to the container engine fails"""

    def __init__(
        self,
        operation: str,
        resource: str,
        reason: str,
        not_found: bool = False
    ):
        self.operation = operation
        self.resource = resource
        self.reason = reason
        self.not_found = not_found
        super().__init__(f"{operation} failure ({resource}): {reason}")


class OwnershipViolationError(DockError):
    """Raised when a resource with a colliding name was not created by testingdock"""

    def __init__(self, kind: str, name: str, resource_id: Optional[str] = None):
        self.kind = kind
        self.name = name
        self.resource_id = resource_id
        super().__init__(
            f"{kind} with name {name} already exists, "
            f"but wasn't started by testingdock, aborting!"
        )


class MissingAttachmentError(DockError):
    """Raised when a container is started without being added to a network"""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Container {name} not added to any network!")


class HealthCheckTimeoutError(DockError):
    """Raised when a health check does not pass within its timeout"""

    def __init__(self, name: str, container_id: Optional[str], timeout: float, last_error: Optional[str] = None):
        self.name = name
        self.container_id = container_id
        self.timeout = timeout
        self.last_error = last_error
        message = f"health check failure: {name} ({container_id}) not healthy after {timeout}s"
        if last_error:
            message += f": {last_error}"
        super().__init__(message)


class ResetError(DockError):
    """Raised when a container reset action fails"""

    def __init__(self, name: str, container_id: Optional[str], reason: str):
        self.name = name
        self.container_id = container_id
        self.reason = reason
        super().__init__(f"container reset failure: {name} ({container_id}): {reason}")


class TopologyError(DockError):
    """Raised when a dependency edge would break the tree structure"""
    pass
