"""Dependency resolution over the resource reference graph.

Orders resources so that every resource comes after the resources it
depends on. Ties are broken by declaration order so plans are stable
across runs.
"""
import heapq
from typing import Iterable

from ..errors import CycleError
from .schema import Resource


def _index(resources: list[Resource]) -> dict[str, int]:
    """Map resource name to declaration position.

    Observed state can hold two kinds under one name; the first wins for
    reference lookups.
    """
    positions: dict[str, int] = {}
    for i, resource in enumerate(resources):
        positions.setdefault(resource.name, i)
    return positions


def _edges(resources: list[Resource]) -> list[list[int]]:
    """Dependency edges by position. References outside the set are ignored."""
    positions = _index(resources)
    return [
        sorted(positions[ref] for ref in r.depends_on if ref in positions)
        for r in resources
    ]


def topological_order(resources: Iterable[Resource]) -> list[Resource]:
    """
    Stable topological sort of resources.

    Args:
        resources: Resources in declaration order

    Returns:
        Resources ordered dependencies-first

    Raises:
        CycleError: Naming every resource that sits on a cycle
    """
    resources = list(resources)
    deps = _edges(resources)

    remaining = [len(d) for d in deps]
    dependents: list[list[int]] = [[] for _ in resources]
    for i, targets in enumerate(deps):
        for target in targets:
            dependents[target].append(i)

    ready = [i for i, n in enumerate(remaining) if n == 0]
    heapq.heapify(ready)

    order: list[int] = []
    while ready:
        i = heapq.heappop(ready)
        order.append(i)
        for dependent in dependents[i]:
            remaining[dependent] -= 1
            if remaining[dependent] == 0:
                heapq.heappush(ready, dependent)

    if len(order) != len(resources):
        members = _cycle_members(deps)
        raise CycleError(resources[i].name for i in members)

    return [resources[i] for i in order]


def deletion_order(resources: Iterable[Resource]) -> list[Resource]:
    """Reverse topological order: dependents before their dependencies."""
    return list(reversed(topological_order(resources)))


def dependents_closure(resources: Iterable[Resource], names: Iterable[str]) -> set[str]:
    """Names of all resources that transitively depend on any of ``names``."""
    reverse: dict[str, set[str]] = {}
    for resource in resources:
        for ref in resource.depends_on:
            reverse.setdefault(ref, set()).add(resource.name)

    found: set[str] = set()
    stack = list(names)
    while stack:
        name = stack.pop()
        for dependent in reverse.get(name, ()):
            if dependent not in found:
                found.add(dependent)
                stack.append(dependent)
    return found


def _cycle_members(deps: list[list[int]]) -> list[int]:
    """Positions on a cycle: strongly connected components larger than one
    node, or nodes with a self edge. Iterative Tarjan."""
    index_of: dict[int, int] = {}
    lowlink: dict[int, int] = {}
    on_stack: set[int] = set()
    stack: list[int] = []
    members: set[int] = set()
    counter = 0

    for root in range(len(deps)):
        if root in index_of:
            continue
        work = [(root, 0)]
        while work:
            node, child = work.pop()
            if child == 0:
                index_of[node] = lowlink[node] = counter
                counter += 1
                stack.append(node)
                on_stack.add(node)

            recurse = False
            targets = deps[node]
            while child < len(targets):
                target = targets[child]
                child += 1
                if target not in index_of:
                    work.append((node, child))
                    work.append((target, 0))
                    recurse = True
                    break
                if target in on_stack:
                    lowlink[node] = min(lowlink[node], index_of[target])
            if recurse:
                continue

            if lowlink[node] == index_of[node]:
                component = []
                while True:
                    top = stack.pop()
                    on_stack.discard(top)
                    component.append(top)
                    if top == node:
                        break
                if len(component) > 1 or node in deps[node]:
                    members.update(component)

            if work:
                parent = work[-1][0]
                lowlink[parent] = min(lowlink[parent], lowlink[node])

    return sorted(members)
