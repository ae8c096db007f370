"""Plan generation: build the graph, order batches, reconcile each resource against state."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

from apigw_ops.exceptions import StalePlan
from apigw_ops.graph import build_graph
from apigw_ops.reconciler import CREATE, UPDATE, DELETE, NOOP, orphans, reconcile
from apigw_ops.registry import Registry
from apigw_ops.stack_reader import resolve_refs
from apigw_ops.synthesizer import synthesize

# Symbols for plan output
SYMBOLS = {CREATE: "+", UPDATE: "~", DELETE: "-", NOOP: "."}
COLORS = {CREATE: "\033[32m", UPDATE: "\033[33m", DELETE: "\033[31m", NOOP: "\033[90m"}
RESET = "\033[0m"


def generate_plan(registry: Registry, state: dict[str, Any] | None) -> dict[str, Any]:
    """Generate a plan by reconciling every declared resource against state.

    Resources are visited in batch order. A resource whose dependency is
    itself going to change sees that dependency's outputs as
    "(known after apply)" and is planned as an update.

    Args:
        registry: Declared resources
        state: State dict (from load_state()), or None

    Returns:
        Plan dict with batches, changes list, orphans and summary

    Raises:
        CycleDetected, UnresolvedReference: the declarations are not a valid DAG
    """
    state_resources = state.get("resources", {}) if state else {}
    graph = build_graph(registry)
    batches = synthesize(graph)

    outputs = {k: v.get("outputs", {}) for k, v in state_resources.items()}
    changing: set[str] = set()
    changes = []
    for batch in batches:
        for identity in batch:
            definition = registry.get(identity)
            pending = {dep for dep in graph[identity] if dep in changing}
            resolved = resolve_refs(definition["properties"], outputs, pending)
            change = reconcile(definition, resolved, state_resources.get(identity), pending)
            change["depends_on"] = graph[identity]
            # Old entries are only needed by the executor, which reloads state
            change.pop("old", None)
            if change["action"] != NOOP:
                changing.add(identity)
            changes.append(change)

    orphaned = orphans(registry.identities(), state_resources)
    return {
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "stack": registry.stack_name,
        "stack_hash": registry.stack_hash(),
        "batches": batches,
        "changes": changes,
        "orphans": orphaned,
        "summary": {
            "create": sum(1 for c in changes if c["action"] == CREATE),
            "update": sum(1 for c in changes if c["action"] == UPDATE),
            "noop": sum(1 for c in changes if c["action"] == NOOP),
            "orphan": len(orphaned),
        },
    }


def has_changes(plan: dict[str, Any]) -> bool:
    summary = plan["summary"]
    return bool(summary["create"] or summary["update"])


def check_plan(plan: dict[str, Any], registry: Registry) -> None:
    """Refuse a saved plan that was generated from different declarations."""
    if plan.get("stack_hash") != registry.stack_hash():
        raise StalePlan(
            "Saved plan does not match the current stack file. Re-run 'plan'."
        )


def print_plan(plan: dict[str, Any], verbose: bool = False) -> None:
    """Print plan to console in Terraform-style format."""
    summary = plan["summary"]
    changes = plan["changes"]

    print(f"\nPlan: {summary['create']} to create, {summary['update']} to update, "
          f"{summary['noop']} unchanged.\n")

    if not has_changes(plan) and not verbose:
        print("No changes. Infrastructure is up-to-date.\n")
    else:
        for number, batch in enumerate(plan["batches"], 1):
            in_batch = [c for c in changes if c["id"] in batch]
            shown = [c for c in in_batch if verbose or c["action"] != NOOP]
            if not shown:
                continue
            print(f"  Batch {number}:")
            for change in shown:
                action = change["action"]
                symbol = SYMBOLS[action]
                color = COLORS[action]
                marker = " (must be replaced)" if change["replace"] else ""
                print(f"    {color}{symbol} {change['type']:<16} \"{change['id']}\"  "
                      f"({change['detail']}){marker}{RESET}")
                if change["affects_binding"]:
                    print(f"      ! replacing this resource changes DNS/TLS bindings")
        print()

    if plan["orphans"]:
        print("Resources in state but no longer declared (left in place; "
              "use 'destroy --target' to remove):")
        for identity in plan["orphans"]:
            print(f"  {COLORS[DELETE]}? {identity}{RESET}")
        print()


def save_plan(plan: dict[str, Any], path: str) -> None:
    """Save plan to a JSON file."""
    with open(path, "w") as f:
        json.dump(plan, f, indent=2)
        f.write("\n")
    print(f"Plan saved to {path}")


def load_plan(path: str) -> dict[str, Any]:
    """Load a plan from a JSON file."""
    with open(path, "r") as f:
        plan: dict[str, Any] = json.load(f)
    return plan
