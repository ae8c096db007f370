"""Decide the verb for each resource by comparing its resolved spec against saved state."""

from __future__ import annotations

from typing import Any, Iterable

from apigw_ops.resources import RESOURCE_TYPES
from apigw_ops.stack_reader import compute_hash


# Change actions
CREATE = "create"
UPDATE = "update"
DELETE = "delete"
NOOP = "noop"


def spec_hash(resource_type: str, properties: dict[str, Any]) -> str:
    """Hash of a resource's type and fully resolved properties."""
    return compute_hash({"type": resource_type, "properties": properties})


def reconcile(definition: dict[str, Any], resolved: dict[str, Any],
              entry: dict[str, Any] | None,
              pending: Iterable[str] = ()) -> dict[str, Any]:
    """Compare one resource's resolved properties against its state entry.

    Args:
        definition: Registry definition {"id", "type", "properties"}
        resolved: Properties with every reference replaced by its value
        entry: State entry for this identity, or None
        pending: Dependencies whose outputs are not known yet (plan only)

    Returns change dict:
      {"action": str, "id": str, "type": str, "detail": str,
       "replace": bool, "affects_binding": bool, "replaces": str|None,
       "spec_hash": str, "properties": dict, "old": entry|None}

    Never touches state; the executor commits after the backend succeeds.
    """
    resource_type = definition["type"]
    mod = RESOURCE_TYPES[resource_type]
    pending = sorted(pending)
    change = {
        "action": NOOP,
        "id": definition["id"],
        "type": resource_type,
        "detail": "unchanged",
        "replace": False,
        "affects_binding": False,
        "replaces": None,
        "spec_hash": spec_hash(resource_type, resolved),
        "properties": resolved,
        "old": entry,
    }

    if entry is None:
        change.update(action=CREATE, detail="new")
    elif entry.get("type") != resource_type:
        # A type cannot be updated in place: create the new resource, then
        # delete the old identifier once the create has succeeded.
        change.update(
            action=CREATE, replace=True, affects_binding=mod.BINDING,
            replaces=entry.get("identifier"),
            detail=f"type {entry.get('type')}→{resource_type}",
        )
    elif pending:
        change.update(action=UPDATE, detail="after " + ", ".join(pending))
    elif entry.get("specHash") != change["spec_hash"]:
        old_props = entry.get("properties", {})
        changed = changed_keys(old_props, resolved)
        replace = any(k in mod.REPLACE_ON for k in changed)
        change.update(
            action=UPDATE, replace=replace,
            affects_binding=replace and mod.BINDING,
            detail=_diff_detail(old_props, resolved),
        )
    return change


def orphans(identities: Iterable[str], state_resources: dict[str, Any]) -> list[str]:
    """State entries that are no longer declared. These are never deleted implicitly."""
    declared = set(identities)
    return sorted(k for k in state_resources if k not in declared)


def changed_keys(old_props: dict[str, Any], new_props: dict[str, Any]) -> list[str]:
    all_keys = set(old_props.keys()) | set(new_props.keys())
    return sorted(k for k in all_keys if old_props.get(k) != new_props.get(k))


def _diff_detail(old_props: dict[str, Any], new_props: dict[str, Any]) -> str:
    """Produce a short summary of what changed between two property dicts."""
    changed = []
    for k in changed_keys(old_props, new_props):
        old_val = old_props.get(k)
        new_val = new_props.get(k)
        if old_val is None:
            changed.append(f"added {k}")
        elif new_val is None:
            changed.append(f"removed {k}")
        elif isinstance(old_val, (str, int, float, bool)) and isinstance(new_val, (str, int, float, bool)):
            changed.append(f"{k} {old_val!r}→{new_val!r}")
        else:
            changed.append(f"changed {k}")
    if not changed:
        return "changed"
    result: str = ", ".join(changed[:3]) + ("..." if len(changed) > 3 else "")
    return result
