"""Registry of declared resource definitions for one synthesis pass."""

from __future__ import annotations

import copy
from typing import Any, Iterator

from apigw_ops.exceptions import DuplicateResource, InvalidResource, StackError
from apigw_ops.resources import RESOURCE_TYPES
from apigw_ops.stack_reader import compute_hash, iter_refs


class Registry:
    """Holds validated resource definitions keyed by identity.

    A definition is a dict {"id": str, "type": str, "properties": dict}.
    Definitions are copied in and copied out, so nothing outside the
    registry can change them once registered.
    """

    def __init__(self, stack_name: str = "default") -> None:
        self.stack_name = stack_name
        self._resources: dict[str, dict[str, Any]] = {}
        self._outputs: dict[str, Any] = {}

    @classmethod
    def from_stack(cls, stack: dict[str, Any]) -> Registry:
        """Build a registry from a parsed stack file."""
        registry = cls(stack.get("stack") or "default")
        for identity, decl in stack.get("resources", {}).items():
            if not isinstance(decl, dict) or "type" not in decl:
                raise InvalidResource(identity, "declaration must be an object with a 'type'")
            registry.register(identity, decl["type"], decl.get("properties", {}))
        for name, value in (stack.get("outputs") or {}).items():
            registry.add_output(name, value)
        return registry

    def register(self, identity: str, resource_type: str,
                 properties: dict[str, Any] | None = None) -> None:
        if not isinstance(identity, str) or not identity or "." in identity:
            raise InvalidResource(str(identity), "identity must be a non-empty string without '.'")
        if identity in self._resources:
            raise DuplicateResource(identity)
        mod = RESOURCE_TYPES.get(resource_type)
        if mod is None:
            raise InvalidResource(
                identity,
                f"unknown type {resource_type!r} (expected one of {', '.join(sorted(RESOURCE_TYPES))})",
            )
        properties = properties or {}
        if not isinstance(properties, dict):
            raise InvalidResource(identity, "properties must be an object")
        missing = [name for name in mod.REQUIRED if name not in properties]
        if missing:
            raise InvalidResource(identity, f"missing required properties: {', '.join(missing)}")
        problems = mod.validate(properties)
        if problems:
            raise InvalidResource(identity, "; ".join(problems))
        try:
            # Surfaces malformed references at registration time
            list(iter_refs(properties))
        except StackError as e:
            raise InvalidResource(identity, str(e))
        self._resources[identity] = {
            "id": identity,
            "type": resource_type,
            "properties": copy.deepcopy(properties),
        }

    def add_output(self, name: str, value: Any) -> None:
        try:
            list(iter_refs(value))
        except StackError as e:
            raise InvalidResource(f"output:{name}", str(e))
        self._outputs[name] = copy.deepcopy(value)

    def get(self, identity: str) -> dict[str, Any]:
        return copy.deepcopy(self._resources[identity])

    def outputs(self) -> dict[str, Any]:
        return copy.deepcopy(self._outputs)

    def identities(self) -> list[str]:
        return sorted(self._resources)

    def definitions(self) -> list[dict[str, Any]]:
        return [self.get(identity) for identity in self.identities()]

    def stack_hash(self) -> str:
        """Hash of every declaration, used to detect stale saved plans."""
        return compute_hash({
            "stack": self.stack_name,
            "resources": self._resources,
            "outputs": self._outputs,
        })

    def __contains__(self, identity: object) -> bool:
        return identity in self._resources

    def __iter__(self) -> Iterator[str]:
        return iter(self.identities())

    def __len__(self) -> int:
        return len(self._resources)
