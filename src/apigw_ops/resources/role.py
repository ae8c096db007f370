"""Role resource: an execution role a service principal may assume."""
from __future__ import annotations

from typing import Any

RESOURCE_TYPE = "Role"
REQUIRED = ["assumedBy"]
OUTPUTS = ["arn", "name"]
REPLACE_ON = ["assumedBy"]
BINDING = False


def validate(properties: dict[str, Any]) -> list[str]:
    problems = []
    policies = properties.get("policies", [])
    if not isinstance(policies, list):
        return ["policies must be a list"]
    for i, statement in enumerate(policies):
        if not isinstance(statement, dict):
            problems.append(f"policies[{i}] must be an object")
            continue
        if not statement.get("actions"):
            problems.append(f"policies[{i}] has no actions")
        if not statement.get("resources"):
            problems.append(f"policies[{i}] has no resources")
    return problems


def to_payload(properties: dict[str, Any]) -> dict[str, Any]:
    statements = [
        {
            "effect": statement.get("effect", "Allow"),
            "actions": list(statement["actions"]),
            "resources": list(statement["resources"]),
        }
        for statement in properties.get("policies", [])
    ]
    payload = {
        "assumedBy": properties["assumedBy"],
        "policies": statements,
    }
    if properties.get("roleName"):
        payload["roleName"] = properties["roleName"]
    return payload


def create(backend: Any, properties: dict[str, Any]) -> dict[str, Any]:
    result: dict[str, Any] = backend.create(RESOURCE_TYPE, to_payload(properties))
    return result


def update(backend: Any, identifier: str, properties: dict[str, Any]) -> dict[str, Any]:
    result: dict[str, Any] = backend.update(identifier, to_payload(properties))
    return result


def delete(backend: Any, identifier: str) -> None:
    backend.delete(identifier)


def describe(backend: Any, identifier: str) -> dict[str, Any]:
    result: dict[str, Any] = backend.describe(identifier)
    return result


def is_ready(outputs: dict[str, Any]) -> bool:
    return True
