"""Plan builder: diff desired state against observed state.

Computes the minimal, dependency-ordered set of operations needed to reach
the desired state.
"""
import logging
from typing import Any, Iterable

from ..errors import ConflictError
from .resolver import deletion_order, dependents_closure, topological_order
from .schema import (
    Operation,
    OperationAction,
    Plan,
    PropertyChange,
    Resource,
    ResourceKind,
)

logger = logging.getLogger(__name__)

Key = tuple[ResourceKind, str]


def diff_properties(
    current: dict[str, Any],
    desired: dict[str, Any]
) -> dict[str, PropertyChange]:
    """Changed properties between two property maps, in a stable order."""
    changes = {}
    for name in sorted(set(current) | set(desired)):
        old = current.get(name)
        new = desired.get(name)
        if old != new:
            changes[name] = PropertyChange(old=old, new=new)
    return changes


class PlanBuilder:
    """Build an ordered operation list from desired and observed state."""

    def __init__(self, replace_on_conflict: bool = True):
        """
        Args:
            replace_on_conflict: Convert immutable-property updates into
                delete + create. When False they raise ConflictError.
        """
        self.replace_on_conflict = replace_on_conflict

    def build(
        self,
        desired: Iterable[Resource],
        observed: Iterable[Resource]
    ) -> Plan:
        """
        Calculate the plan.

        Args:
            desired: Desired resources in declaration order
            observed: Resources currently provisioned

        Returns:
            Plan with deletes first (reverse dependency order), then creates
            and updates (dependency order)

        Raises:
            CycleError: Either graph has a cycle
            ConflictError: Immutable property change with replacement disabled
        """
        desired = list(desired)
        observed = list(observed)

        creation = topological_order(desired)
        removal = deletion_order(observed)

        current_by_key: dict[Key, Resource] = {r.key: r for r in observed}
        desired_keys = {r.key for r in desired}

        creates: dict[Key, dict[str, PropertyChange]] = {}
        updates: dict[Key, dict[str, PropertyChange]] = {}
        replaced: dict[Key, dict[str, PropertyChange]] = {}

        for resource in desired:
            current = current_by_key.get(resource.key)
            if current is None:
                creates[resource.key] = {
                    name: PropertyChange(new=value)
                    for name, value in sorted(resource.properties.items())
                }
                continue

            changes = diff_properties(current.properties, resource.properties)
            if not changes:
                continue

            immutable = set(changes) & resource.immutable_properties
            if immutable:
                if not self.replace_on_conflict:
                    raise ConflictError(str(resource), immutable)
                logger.info(
                    f"{resource}: {', '.join(sorted(immutable))} forces replacement"
                )
                replaced[resource.key] = changes
            else:
                updates[resource.key] = changes

        self._cascade_replacements(desired, observed, current_by_key, desired_keys, replaced, updates)

        plan = Plan()
        delete_index: dict[Key, int] = {}
        deletes_by_name: dict[str, list[int]] = {}

        for current in removal:
            if current.key in desired_keys and current.key not in replaced:
                continue
            op = Operation(
                index=len(plan),
                action=OperationAction.DELETE,
                resource=current,
                changes={
                    name: PropertyChange(old=value)
                    for name, value in sorted(current.properties.items())
                },
                handle=current.handle,
                replace=current.key in replaced,
            )
            plan.operations.append(op)
            delete_index[current.key] = op.index
            deletes_by_name.setdefault(current.name, []).append(op.index)

        # Dependents are deleted first, so a delete waits on its dependents' deletes
        for op in plan.operations:
            waits = {
                i
                for other in observed
                if op.resource.name in other.depends_on
                for i in deletes_by_name.get(other.name, ())
                if i < op.index
            }
            op.requires = tuple(sorted(waits))

        apply_index: dict[str, int] = {}
        for resource in creation:
            key = resource.key
            if key in creates:
                action, changes, replace = OperationAction.CREATE, creates[key], False
            elif key in replaced:
                action, changes, replace = OperationAction.CREATE, replaced[key], True
            elif key in updates:
                action, changes, replace = OperationAction.UPDATE, updates[key], False
            else:
                continue

            waits = {apply_index[d] for d in resource.depends_on if d in apply_index}
            if replace:
                waits.add(delete_index[key])

            current = current_by_key.get(key)
            op = Operation(
                index=len(plan),
                action=action,
                resource=resource,
                changes=changes,
                handle=current.handle if (current and action == OperationAction.UPDATE) else None,
                replace=replace,
                requires=tuple(sorted(waits)),
            )
            plan.operations.append(op)
            apply_index[resource.name] = op.index

        logger.debug(
            f"Plan: {plan.count(OperationAction.CREATE)} create, "
            f"{plan.count(OperationAction.UPDATE)} update, "
            f"{plan.count(OperationAction.DELETE)} delete"
        )
        return plan

    def _cascade_replacements(
        self,
        desired: list[Resource],
        observed: list[Resource],
        current_by_key: dict[Key, Resource],
        desired_keys: set[Key],
        replaced: dict[Key, dict[str, PropertyChange]],
        updates: dict[Key, dict[str, PropertyChange]],
    ) -> None:
        """Replace every existing resource that depends on a replaced one."""
        if not replaced:
            return

        names = {name for _, name in replaced}
        affected = dependents_closure(observed + desired, names)

        for resource in desired:
            if resource.name not in affected or resource.key in replaced:
                continue
            current = current_by_key.get(resource.key)
            if current is None:
                continue
            logger.info(f"{resource}: replaced along with its dependencies")
            replaced[resource.key] = updates.pop(
                resource.key,
                diff_properties(current.properties, resource.properties),
            )


def build_plan(
    desired: Iterable[Resource],
    observed: Iterable[Resource],
    replace_on_conflict: bool = True,
) -> Plan:
    """Shortcut for ``PlanBuilder(replace_on_conflict).build(desired, observed)``."""
    return PlanBuilder(replace_on_conflict).build(desired, observed)


def _fmt(value: Any) -> str:
    return "<absent>" if value is None else repr(value)


def summarize_plan(plan: Plan) -> str:
    """
    Create a human-readable summary of a plan.

    Useful for dry-run output and logging.
    """
    if plan.no_change:
        return "No changes needed - observed state matches desired state"

    lines = [
        f"Operations to apply ({len(plan)} total: "
        f"{plan.count(OperationAction.CREATE)} create, "
        f"{plan.count(OperationAction.UPDATE)} update, "
        f"{plan.count(OperationAction.DELETE)} delete):",
        "",
    ]

    for op in plan:
        resource = op.resource
        immutable = resource.immutable_properties
        if op.replace:
            lines.append(f"  [-/+] {op.action.value.capitalize()} {resource} (replace)")
            if op.action == OperationAction.CREATE:
                for name, change in op.changes.items():
                    note = " (forces replacement)" if name in immutable else ""
                    lines.append(f"        {name}: {_fmt(change.old)} -> {_fmt(change.new)}{note}")
        elif op.action == OperationAction.CREATE:
            lines.append(f"  [+] Create {resource}")
            for name, change in op.changes.items():
                lines.append(f"      {name}: {_fmt(change.new)}")
        elif op.action == OperationAction.UPDATE:
            lines.append(f"  [~] Update {resource}")
            for name, change in op.changes.items():
                lines.append(f"      {name}: {_fmt(change.old)} -> {_fmt(change.new)}")
        else:
            lines.append(f"  [-] Delete {resource}")

    return "\n".join(lines)
