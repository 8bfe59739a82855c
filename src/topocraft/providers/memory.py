"""In-memory provider: a dict-backed control plane.

Useful for dry runs and tests. Failures can be injected per resource to
exercise partial-apply behaviour.
"""
import asyncio
import copy
import itertools
import logging
from dataclasses import dataclass
from typing import Any, Iterable, Optional

from ..engine.schema import PropertyChange, RemoteHandle, Resource, ResourceKind
from ..errors import PermanentProviderError, ProviderError
from ..utils.logging_config import timed
from .base import Provider

logger = logging.getLogger(__name__)


@dataclass
class FailureRule:
    """Injected failure for one resource."""
    name: str
    error: ProviderError
    action: Optional[str] = None  # create, update, delete; None matches all
    times: Optional[int] = None   # None fails forever

    def matches(self, action: str, name: str) -> bool:
        if self.name != name:
            return False
        if self.action is not None and self.action != action:
            return False
        return self.times is None or self.times > 0


class InMemoryProvider(Provider):
    """Provider that keeps provisioned resources in a dict."""

    name = "memory"

    def __init__(self, options: Optional[dict[str, Any]] = None):
        super().__init__(options)
        self.latency = float(self.options.get("latency", 0))
        self._resources: dict[tuple[ResourceKind, str], Resource] = {}
        self._ids = itertools.count(1)
        self._failures: list[FailureRule] = []
        self.calls: list[tuple[str, str]] = []
        self.in_flight = 0
        self.max_in_flight = 0

    # === Test helpers ===

    def fail(
        self,
        name: str,
        error: Optional[ProviderError] = None,
        action: Optional[str] = None,
        times: Optional[int] = None,
    ) -> None:
        """Make calls for the named resource raise ``error``.

        Args:
            name: Resource name
            error: Error to raise (PermanentProviderError by default)
            action: Only fail this action (create, update, delete)
            times: Fail this many times, then succeed
        """
        if error is None:
            error = PermanentProviderError(f"Injected failure for {name}", resource=name)
        self._failures.append(FailureRule(name=name, error=error, action=action, times=times))

    def seed(self, resources: Iterable[Resource]) -> None:
        """Pre-populate provisioned state without going through the API."""
        for resource in resources:
            handle = resource.handle or self._new_handle(resource)
            self._resources[resource.key] = resource.with_handle(handle)

    def snapshot(self) -> dict[str, Resource]:
        """Current resources keyed by name."""
        return {r.name: r for r in self._resources.values()}

    # === Provider API ===

    async def describe_all(
        self,
        kinds: Optional[Iterable[ResourceKind]] = None
    ) -> list[Resource]:
        wanted = set(kinds) if kinds is not None else None
        return [
            r.with_handle(r.handle)
            for r in self._resources.values()
            if wanted is None or r.kind in wanted
        ]

    @timed("create_resource")
    async def create_resource(self, resource: Resource) -> RemoteHandle:
        await self._call("create", resource.name)
        if resource.key in self._resources:
            raise PermanentProviderError(f"{resource} already exists", resource=resource.name)

        handle = self._new_handle(resource)
        self._resources[resource.key] = resource.with_handle(handle)
        self._changed()
        logger.debug(f"Created {resource} as {handle.remote_id}")
        return handle

    @timed("update_resource")
    async def update_resource(
        self,
        handle: RemoteHandle,
        resource: Resource,
        changes: dict[str, PropertyChange]
    ) -> RemoteHandle:
        await self._call("update", handle.name)
        current = self._lookup(handle)

        properties = copy.deepcopy(current.properties)
        for name, change in changes.items():
            if change.new is None:
                properties.pop(name, None)
            else:
                properties[name] = copy.deepcopy(change.new)

        self._resources[current.key] = Resource(
            kind=current.kind,
            name=current.name,
            properties=properties,
            depends_on=resource.depends_on,
            handle=current.handle,
        )
        self._changed()
        logger.debug(f"Updated {current}: {', '.join(changes)}")
        return current.handle

    @timed("delete_resource")
    async def delete_resource(self, handle: RemoteHandle) -> None:
        await self._call("delete", handle.name)
        current = self._lookup(handle)
        del self._resources[current.key]
        self._changed()
        logger.debug(f"Deleted {current} ({handle.remote_id})")

    # === Internals ===

    def _new_handle(self, resource: Resource) -> RemoteHandle:
        prefix = "".join(c for c in resource.kind.value if c.isupper()).lower()
        return RemoteHandle(
            kind=resource.kind,
            name=resource.name,
            remote_id=f"{prefix}-{next(self._ids):06d}",
        )

    def _lookup(self, handle: RemoteHandle) -> Resource:
        current = self._resources.get((handle.kind, handle.name))
        if current is None or current.handle.remote_id != handle.remote_id:
            raise PermanentProviderError(
                f"{handle.kind.value} {handle.name} ({handle.remote_id}) not found",
                resource=handle.name,
            )
        return current

    async def _call(self, action: str, name: str) -> None:
        """Record the call, simulate latency and raise injected failures."""
        self.calls.append((action, name))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.latency:
                await asyncio.sleep(self.latency)
            for rule in self._failures:
                if rule.matches(action, name):
                    if rule.times is not None:
                        rule.times -= 1
                    raise rule.error
        finally:
            self.in_flight -= 1

    def _changed(self) -> None:
        """Hook called after every successful mutation."""
        pass
