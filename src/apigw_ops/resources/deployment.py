"""Deployment resource: an immutable snapshot of the API's methods."""
from __future__ import annotations

from typing import Any

RESOURCE_TYPE = "Deployment"
REQUIRED = ["restApiId"]
OUTPUTS = ["id"]
REPLACE_ON = ["restApiId"]
BINDING = False


def validate(properties: dict[str, Any]) -> list[str]:
    if not isinstance(properties.get("methods", []), list):
        return ["methods must be a list of method references"]
    return []


def to_payload(properties: dict[str, Any]) -> dict[str, Any]:
    # methods only order the deployment after its routes; the ids are
    # sent so a changed route produces a new snapshot
    return {
        "restApiId": properties["restApiId"],
        "description": properties.get("description", ""),
        "methods": sorted(properties.get("methods", [])),
    }


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
