"""Order a validated dependency graph into provisioning batches."""

from __future__ import annotations

from typing import Iterable

import structlog

from apigw_ops.exceptions import SynthesisStalled
from apigw_ops.graph import format_graph

logger = structlog.get_logger()


def synthesize(graph: dict[str, list[str]],
               only: Iterable[str] | None = None) -> list[list[str]]:
    """Layer the graph Kahn-style into batches.

    Each batch holds every node whose dependencies are all in earlier
    batches, sorted by identity. With `only`, the plan is restricted to that
    subset and dependencies outside it count as already satisfied.

    Raises:
        SynthesisStalled: some nodes could never be batched (a cycle slipped
            past graph validation)
    """
    nodes = set(graph) if only is None else set(only) & set(graph)
    remaining = {node: {dep for dep in graph[node] if dep in nodes} for node in nodes}
    batches: list[list[str]] = []
    while remaining:
        ready = sorted(node for node, deps in remaining.items() if not deps)
        if not ready:
            logger.error(
                "synthesis_stalled",
                remaining=sorted(remaining),
                batched=batches,
                graph=format_graph(graph),
            )
            raise SynthesisStalled(sorted(remaining))
        batches.append(ready)
        for node in ready:
            del remaining[node]
        for deps in remaining.values():
            deps.difference_update(ready)
    return batches


def teardown_order(graph: dict[str, list[str]],
                   only: Iterable[str] | None = None) -> list[str]:
    """Flattened reverse of synthesize(): dependents always come before their dependencies.

    With `only`, the full graph is still ordered and then filtered, so a
    dependency chain running through nodes outside the subset is respected.
    """
    order: list[str] = []
    for batch in reversed(synthesize(graph)):
        order.extend(reversed(batch))
    if only is None:
        return order
    keep = set(only)
    return [node for node in order if node in keep]


def batch_index(batches: list[list[str]]) -> dict[str, int]:
    return {node: i for i, batch in enumerate(batches) for node in batch}
