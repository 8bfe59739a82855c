"""Base provider abstraction for cloud control planes."""
import logging
from abc import ABC, abstractmethod
from typing import Any, Iterable, Optional

from ..engine.schema import PropertyChange, RemoteHandle, Resource, ResourceKind

logger = logging.getLogger(__name__)


class Provider(ABC):
    """Abstract base class for provider adapters.

    Adapters translate abstract resource kinds into vendor calls. One
    instance is scoped to a single plan/apply invocation.

    Failures are raised as ``TransientProviderError`` (worth retrying) or
    ``PermanentProviderError``.
    """

    name = "abstract"

    def __init__(self, options: Optional[dict[str, Any]] = None):
        self.options = options or {}
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    # Connection management
    async def connect(self) -> None:
        """Open the session with the control plane."""
        self._connected = True

    async def close(self) -> None:
        """Close the session with the control plane."""
        self._connected = False

    # Discovery
    @abstractmethod
    async def describe_all(
        self,
        kinds: Optional[Iterable[ResourceKind]] = None
    ) -> list[Resource]:
        """Get every provisioned resource of the given kinds (all when None).

        Returned resources carry their RemoteHandle.
        """
        pass

    # Mutation
    @abstractmethod
    async def create_resource(self, resource: Resource) -> RemoteHandle:
        """Provision a resource."""
        pass

    @abstractmethod
    async def update_resource(
        self,
        handle: RemoteHandle,
        resource: Resource,
        changes: dict[str, PropertyChange]
    ) -> RemoteHandle:
        """Apply a property diff to a provisioned resource.

        ``resource`` is the full desired resource; ``changes`` only holds
        what differs.
        """
        pass

    @abstractmethod
    async def delete_resource(self, handle: RemoteHandle) -> None:
        """Remove a provisioned resource."""
        pass

    # Context manager support
    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False
