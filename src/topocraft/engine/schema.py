"""Schema definitions for the topology engine.

Defines resources, plans, operations and apply results.
"""
import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Iterator, Optional

from ..errors import ValidationError


class ResourceKind(str, Enum):
    """Kind of a provisioned resource."""
    NETWORK = "Network"
    SECURITY_RULE = "SecurityRule"
    LOG_SINK = "LogSink"
    ROLE = "Role"
    TASK_DEFINITION = "TaskDefinition"
    CONTAINER = "Container"
    SERVICE = "Service"
    LOAD_BALANCER = "LoadBalancer"
    TARGET_GROUP = "TargetGroup"
    LISTENER = "Listener"

    @classmethod
    def parse(cls, value: "str | ResourceKind") -> "ResourceKind":
        """Resolve a kind from its name, case-insensitively."""
        if isinstance(value, cls):
            return value
        lookup = {k.value.lower(): k for k in cls}
        kind = lookup.get(str(value).replace("_", "").lower())
        if kind is None:
            raise ValidationError(f"Unknown resource kind: {value}")
        return kind


# Properties a resource of each kind must declare
REQUIRED_PROPERTIES: dict[ResourceKind, tuple[str, ...]] = {
    ResourceKind.NETWORK: ("cidr",),
    ResourceKind.SECURITY_RULE: ("port", "protocol"),
    ResourceKind.LOG_SINK: ("group_name",),
    ResourceKind.ROLE: ("assumed_by",),
    ResourceKind.TASK_DEFINITION: ("cpu", "memory"),
    ResourceKind.CONTAINER: ("image",),
    ResourceKind.SERVICE: ("desired_count",),
    ResourceKind.LOAD_BALANCER: ("internet_facing",),
    ResourceKind.TARGET_GROUP: ("port", "protocol"),
    ResourceKind.LISTENER: ("port", "protocol"),
}

# Properties that can only change by replacing the resource
IMMUTABLE_PROPERTIES: dict[ResourceKind, frozenset[str]] = {
    ResourceKind.NETWORK: frozenset({"cidr"}),
    ResourceKind.SECURITY_RULE: frozenset({"protocol"}),
    ResourceKind.LOG_SINK: frozenset({"group_name"}),
    ResourceKind.ROLE: frozenset({"assumed_by"}),
    ResourceKind.TASK_DEFINITION: frozenset({"cpu", "memory"}),
    ResourceKind.CONTAINER: frozenset({"image"}),
    ResourceKind.SERVICE: frozenset({"launch_type"}),
    ResourceKind.LOAD_BALANCER: frozenset({"internet_facing"}),
    ResourceKind.TARGET_GROUP: frozenset({"port", "protocol"}),
    ResourceKind.LISTENER: frozenset(),
}


@dataclass(frozen=True)
class RemoteHandle:
    """Provider-side identity of a provisioned resource."""
    kind: ResourceKind
    name: str
    remote_id: str

    def to_dict(self) -> dict:
        return {"kind": self.kind.value, "name": self.name, "remote_id": self.remote_id}


@dataclass(frozen=True)
class PortBinding:
    """A container port exposed by a Container resource."""
    container_port: int
    protocol: str = "tcp"

    def to_dict(self) -> dict:
        return {"container_port": self.container_port, "protocol": self.protocol}

    @classmethod
    def from_dict(cls, data: dict) -> "PortBinding":
        return cls(
            container_port=int(data["container_port"]),
            protocol=str(data.get("protocol", "tcp")).lower(),
        )


@dataclass(frozen=True)
class Resource:
    """A named node in the topology.

    Identity is ``(kind, name)``. ``depends_on`` holds the names of the
    resources this one references. ``handle`` is only set on resources
    reported by a provider.
    """
    kind: ResourceKind
    name: str
    properties: dict[str, Any] = field(default_factory=dict)
    depends_on: frozenset[str] = frozenset()
    handle: Optional[RemoteHandle] = field(default=None, compare=False)

    @property
    def key(self) -> tuple[ResourceKind, str]:
        return (self.kind, self.name)

    @property
    def immutable_properties(self) -> frozenset[str]:
        return IMMUTABLE_PROPERTIES[self.kind]

    def with_handle(self, handle: RemoteHandle) -> "Resource":
        return Resource(
            kind=self.kind,
            name=self.name,
            properties=copy.deepcopy(self.properties),
            depends_on=self.depends_on,
            handle=handle,
        )

    def to_dict(self) -> dict:
        data = {
            "kind": self.kind.value,
            "name": self.name,
            "properties": copy.deepcopy(self.properties),
            "depends_on": sorted(self.depends_on),
        }
        if self.handle:
            data["remote_id"] = self.handle.remote_id
        return data

    def __str__(self) -> str:
        return f"{self.kind.value} {self.name}"


def define_resource(
    kind: "str | ResourceKind",
    name: str,
    properties: Optional[dict[str, Any]] = None,
    depends_on: Iterable[str] = (),
    handle: Optional[RemoteHandle] = None,
) -> Resource:
    """
    Build a validated Resource.

    Properties set to None are treated as absent.

    Raises:
        ValidationError: Unknown kind, empty name, self reference or a
            property required by the kind is missing
    """
    resource_kind = ResourceKind.parse(kind)
    if not name or not isinstance(name, str):
        raise ValidationError(f"{resource_kind.value} resource needs a non-empty name")

    props = {
        key: copy.deepcopy(value)
        for key, value in (properties or {}).items()
        if value is not None
    }

    missing = [p for p in REQUIRED_PROPERTIES[resource_kind] if p not in props]
    if missing:
        raise ValidationError(
            f"{resource_kind.value} {name} is missing required "
            f"{'property' if len(missing) == 1 else 'properties'}: {', '.join(missing)}"
        )

    if isinstance(depends_on, str):
        depends_on = [depends_on]
    deps = frozenset(depends_on)
    if name in deps:
        raise ValidationError(f"{resource_kind.value} {name} cannot depend on itself")

    return Resource(
        kind=resource_kind,
        name=name,
        properties=props,
        depends_on=deps,
        handle=handle,
    )


def port_bindings(resource: Resource) -> list[PortBinding]:
    """Port bindings declared on a Container resource."""
    return [
        PortBinding.from_dict(mapping)
        for mapping in resource.properties.get("port_mappings", [])
    ]


@dataclass(frozen=True)
class DesiredState:
    """The user's target set of resources, in declaration order.

    Build through ``build_desired_state`` to get set-level validation.
    """
    resources: tuple[Resource, ...] = ()

    def __iter__(self) -> Iterator[Resource]:
        return iter(self.resources)

    def __len__(self) -> int:
        return len(self.resources)

    def get(self, name: str) -> Optional[Resource]:
        for resource in self.resources:
            if resource.name == name:
                return resource
        return None

    @property
    def kinds(self) -> set[ResourceKind]:
        return {r.kind for r in self.resources}


# --- Validation Results ---

@dataclass
class ValidationResult:
    """Result of desired state validation."""
    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


# --- Plan ---

class OperationAction(str, Enum):
    """What an operation does to its resource."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class PropertyChange:
    """Old and new value of one property. None means absent."""
    old: Any = None
    new: Any = None


@dataclass
class Operation:
    """A single Create, Update or Delete against one resource."""
    index: int
    action: OperationAction
    resource: Resource
    changes: dict[str, PropertyChange] = field(default_factory=dict)
    handle: Optional[RemoteHandle] = None
    replace: bool = False
    requires: tuple[int, ...] = ()

    @property
    def key(self) -> tuple[ResourceKind, str]:
        return self.resource.key

    def describe(self) -> str:
        verb = self.action.value.capitalize()
        suffix = " (replace)" if self.replace else ""
        return f"{verb} {self.resource}{suffix}"


@dataclass
class Plan:
    """Ordered operations turning observed state into desired state."""
    operations: list[Operation] = field(default_factory=list)

    def __iter__(self) -> Iterator[Operation]:
        return iter(self.operations)

    def __len__(self) -> int:
        return len(self.operations)

    def __getitem__(self, index: int) -> Operation:
        return self.operations[index]

    @property
    def no_change(self) -> bool:
        return len(self.operations) == 0

    def count(self, action: OperationAction) -> int:
        return sum(1 for op in self.operations if op.action == action)

    def describe(self) -> list[str]:
        return [op.describe() for op in self.operations]


# --- Execution Results ---

class OperationStatus(str, Enum):
    """Lifecycle state of an operation during apply."""
    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    APPLIED = "applied"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class OperationResult:
    """Final accounting for one operation."""
    operation: Operation
    status: OperationStatus = OperationStatus.PENDING
    error: Optional[str] = None
    error_type: Optional[str] = None
    reason: Optional[str] = None
    attempts: int = 0
    handle: Optional[RemoteHandle] = None
    duration_ms: float = 0.0

    def to_dict(self) -> dict:
        return {
            "operation": self.operation.describe(),
            "action": self.operation.action.value,
            "kind": self.operation.resource.kind.value,
            "name": self.operation.resource.name,
            "status": self.status.value,
            "error": self.error,
            "error_type": self.error_type,
            "reason": self.reason,
            "attempts": self.attempts,
            "remote_id": self.handle.remote_id if self.handle else None,
            "duration_ms": round(self.duration_ms, 2),
        }


@dataclass
class ApplyResult:
    """Per-operation outcome of applying a plan."""
    results: list[OperationResult] = field(default_factory=list)
    dry_run: bool = False
    cancelled: bool = False

    def _with_status(self, status: OperationStatus) -> list[OperationResult]:
        return [r for r in self.results if r.status == status]

    @property
    def applied(self) -> list[OperationResult]:
        return self._with_status(OperationStatus.APPLIED)

    @property
    def failed(self) -> list[OperationResult]:
        return self._with_status(OperationStatus.FAILED)

    @property
    def skipped(self) -> list[OperationResult]:
        return self._with_status(OperationStatus.SKIPPED)

    @property
    def success(self) -> bool:
        """True only when every operation was applied (or nothing to do)."""
        if self.dry_run:
            return not self.cancelled
        return all(r.status == OperationStatus.APPLIED for r in self.results)

    def status_of(self, name: str, action: Optional[OperationAction] = None) -> OperationStatus:
        """Status of the (last) operation on the named resource."""
        matches = [
            r for r in self.results
            if r.operation.resource.name == name
            and (action is None or r.operation.action == action)
        ]
        if not matches:
            raise KeyError(f"No operation for resource: {name}")
        return matches[-1].status

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "dry_run": self.dry_run,
            "cancelled": self.cancelled,
            "applied": len(self.applied),
            "failed": len(self.failed),
            "skipped": len(self.skipped),
            "operations": [r.to_dict() for r in self.results],
        }
