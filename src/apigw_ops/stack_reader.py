"""Reads stack files, finds and resolves {"$ref": "Id.attr"} references, computes hashes."""

from __future__ import annotations

import hashlib
import json
from typing import Any, Iterator

from apigw_ops.exceptions import StackError

REF_KEY = "$ref"
KNOWN_AFTER_APPLY = "(known after apply)"


def read_stack(path: str) -> dict[str, Any]:
    """Read and parse a stack file, rejecting duplicate keys."""
    try:
        with open(path, "r") as f:
            stack: dict[str, Any] = json.load(f, object_pairs_hook=_no_duplicates)
    except FileNotFoundError:
        raise StackError(f"Stack file not found: {path}")
    except json.JSONDecodeError as e:
        raise StackError(f"Stack file {path} is not valid JSON: {e}")
    if not isinstance(stack, dict) or not isinstance(stack.get("resources"), dict):
        raise StackError(f"Stack file {path} must contain a 'resources' object")
    return stack


def _no_duplicates(pairs: list[tuple[str, Any]]) -> dict[str, Any]:
    result: dict[str, Any] = {}
    for key, value in pairs:
        if key in result:
            raise StackError(f"Duplicate key {key!r} in stack file")
        result[key] = value
    return result


def write_stack(stack: dict[str, Any], path: str) -> None:
    with open(path, "w") as f:
        json.dump(stack, f, indent=2)
        f.write("\n")


def compute_hash(value: Any) -> str:
    """Compute SHA256 hash of normalized (sorted-keys) JSON representation."""
    canonical = json.dumps(value, sort_keys=True, separators=(",", ":"))
    return "sha256:" + hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def ref(identity: str, attribute: str) -> dict[str, str]:
    """Build a reference value: ref("ApiCertificate", "arn")."""
    return {REF_KEY: f"{identity}.{attribute}"}


def is_ref(value: Any) -> bool:
    return isinstance(value, dict) and len(value) == 1 and REF_KEY in value


def parse_ref(value: dict[str, Any]) -> tuple[str, str]:
    """Split a reference into (identity, attribute).

    {"$ref": "ApiCertificate.arn"} → ("ApiCertificate", "arn")
    """
    target = value[REF_KEY]
    if not isinstance(target, str) or "." not in target:
        raise StackError(f"Malformed reference {target!r}, expected 'Identity.attribute'")
    identity, attribute = target.split(".", 1)
    if not identity or not attribute:
        raise StackError(f"Malformed reference {target!r}, expected 'Identity.attribute'")
    return identity, attribute


def iter_refs(value: Any) -> Iterator[tuple[str, str]]:
    """Yield every (identity, attribute) reference found in value, depth first."""
    if is_ref(value):
        yield parse_ref(value)
    elif isinstance(value, dict):
        for key in value:
            yield from iter_refs(value[key])
    elif isinstance(value, list):
        for item in value:
            yield from iter_refs(item)


def resolve_refs(value: Any, outputs: dict[str, dict[str, Any]],
                 pending: set[str] | frozenset[str] = frozenset()) -> Any:
    """Recursively replace references with the referenced resource's outputs.

    References to identities in `pending` resolve to KNOWN_AFTER_APPLY.
    Raises KeyError when a referenced output is not available.
    """
    if is_ref(value):
        identity, attribute = parse_ref(value)
        if identity in pending:
            return KNOWN_AFTER_APPLY
        resource_outputs = outputs.get(identity)
        if resource_outputs is None or attribute not in resource_outputs:
            raise KeyError(f"output {identity}.{attribute} is not available")
        return resource_outputs[attribute]
    if isinstance(value, dict):
        return {k: resolve_refs(v, outputs, pending) for k, v in value.items()}
    if isinstance(value, list):
        return [resolve_refs(item, outputs, pending) for item in value]
    return value
