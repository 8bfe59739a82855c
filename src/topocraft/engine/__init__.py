"""Topology Engine - declarative provisioning plans.

The engine turns a declared set of resources into provider calls:
- Send desired state, not individual calls
- Validation before anything touches the provider
- Dependency-ordered, minimal plans
- Concurrent apply with a per-operation accounting

Usage:
    from topocraft.engine import TopologyEngine, load_declaration
    from topocraft.providers import LocalStateProvider

    desired = load_declaration("stack.yaml")
    async with LocalStateProvider({"state_path": "state.yaml"}) as provider:
        result = await TopologyEngine(provider).apply(desired)
"""

from .schema import (
    ApplyResult,
    DesiredState,
    IMMUTABLE_PROPERTIES,
    Operation,
    OperationAction,
    OperationResult,
    OperationStatus,
    Plan,
    PortBinding,
    PropertyChange,
    REQUIRED_PROPERTIES,
    RemoteHandle,
    Resource,
    ResourceKind,
    ValidationResult,
    define_resource,
    port_bindings,
)
from .validator import ResourceValidator, build_desired_state
from .resolver import deletion_order, dependents_closure, topological_order
from .planner import PlanBuilder, build_plan, diff_properties, summarize_plan
from .executor import PlanExecutor
from .engine import TopologyEngine
from .parser import DeclarationParser, compute_checksum, load_declaration

__all__ = [
    # Main engine
    "TopologyEngine",
    # Schema classes
    "ApplyResult",
    "DesiredState",
    "IMMUTABLE_PROPERTIES",
    "Operation",
    "OperationAction",
    "OperationResult",
    "OperationStatus",
    "Plan",
    "PortBinding",
    "PropertyChange",
    "REQUIRED_PROPERTIES",
    "RemoteHandle",
    "Resource",
    "ResourceKind",
    "ValidationResult",
    "define_resource",
    "port_bindings",
    # Validation
    "ResourceValidator",
    "build_desired_state",
    # Resolver
    "topological_order",
    "deletion_order",
    "dependents_closure",
    # Planner
    "PlanBuilder",
    "build_plan",
    "diff_properties",
    "summarize_plan",
    # Executor
    "PlanExecutor",
    # Parser
    "DeclarationParser",
    "load_declaration",
    "compute_checksum",
]
