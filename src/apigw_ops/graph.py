"""Dependency graph: scan property references into edges, reject cycles and dangling refs.

The graph is a plain dict {identity: sorted list of identities it depends on}.
An edge A -> B means A references an output of B, so B provisions first.
"""

from __future__ import annotations

from typing import Any

from apigw_ops.exceptions import CycleDetected, UnresolvedReference
from apigw_ops.registry import Registry
from apigw_ops.resources import RESOURCE_TYPES
from apigw_ops.stack_reader import iter_refs


def extract_edges(registry: Registry) -> dict[str, list[str]]:
    """Collect each resource's dependencies from the references in its properties."""
    types = {d["id"]: d["type"] for d in registry.definitions()}
    graph: dict[str, list[str]] = {}
    for definition in registry.definitions():
        identity = definition["id"]
        deps: set[str] = set()
        for target, attribute in iter_refs(definition["properties"]):
            if target == identity:
                raise CycleDetected([identity])
            _check_target(types, target, attribute, identity)
            deps.add(target)
        graph[identity] = sorted(deps)
    for name, value in registry.outputs().items():
        for target, attribute in iter_refs(value):
            _check_target(types, target, attribute, f"output:{name}")
    return graph


def _check_target(types: dict[str, str], target: str, attribute: str, referrer: str) -> None:
    if target not in types:
        raise UnresolvedReference(target, referrer)
    if attribute not in RESOURCE_TYPES[types[target]].OUTPUTS:
        raise UnresolvedReference(target, referrer, attribute)


def find_cycle(graph: dict[str, list[str]]) -> list[str] | None:
    """Return the first cycle found by depth-first search, in encounter order.

    Roots and neighbours are visited in sorted order, so the result is
    deterministic. Dependencies that are not keys of the graph are ignored.
    """
    white, grey, black = 0, 1, 2
    color = {node: white for node in graph}
    for root in sorted(graph):
        if color[root] != white:
            continue
        color[root] = grey
        path = [root]
        stack = [iter(graph[root])]
        while stack:
            nxt = next(stack[-1], None)
            if nxt is None:
                color[path.pop()] = black
                stack.pop()
                continue
            state = color.get(nxt, black)
            if state == grey:
                return path[path.index(nxt):]
            if state == white:
                color[nxt] = grey
                path.append(nxt)
                stack.append(iter(graph[nxt]))
    return None


def build_graph(registry: Registry) -> dict[str, list[str]]:
    """Build and validate the dependency DAG for a registry.

    Raises:
        UnresolvedReference: a reference names a missing identity or attribute
        CycleDetected: the references form a cycle (including self references)
    """
    graph = extract_edges(registry)
    cycle = find_cycle(graph)
    if cycle:
        raise CycleDetected(cycle)
    return graph


def dependents(graph: dict[str, list[str]]) -> dict[str, list[str]]:
    """Invert the graph: identity → resources that depend on it."""
    result: dict[str, list[str]] = {node: [] for node in graph}
    for node, deps in graph.items():
        for dep in deps:
            result.setdefault(dep, []).append(node)
    return {node: sorted(nodes) for node, nodes in result.items()}


def downstream(graph: dict[str, list[str]], roots: Any) -> set[str]:
    """All resources that transitively depend on any of roots (roots excluded)."""
    inverted = dependents(graph)
    seen: set[str] = set()
    todo = list(roots)
    while todo:
        node = todo.pop()
        for child in inverted.get(node, []):
            if child not in seen:
                seen.add(child)
                todo.append(child)
    return seen - set(roots)


def state_graph(resources: dict[str, Any]) -> dict[str, list[str]]:
    """Rebuild the graph from the dependsOn lists saved in state entries.

    Used for teardown, where the stack file may no longer declare the
    resources being removed.
    """
    return {
        identity: sorted(d for d in entry.get("dependsOn", []) if d in resources)
        for identity, entry in resources.items()
    }


def format_graph(graph: dict[str, list[str]]) -> str:
    """One line per node: 'Node -> DepA, DepB'."""
    lines = []
    for node in sorted(graph):
        deps = ", ".join(graph[node]) or "(none)"
        lines.append(f"{node} -> {deps}")
    return "\n".join(lines)
