"""GatewayApi resource: the REST API that routes requests to the function."""
from __future__ import annotations

from typing import Any

RESOURCE_TYPE = "GatewayApi"
REQUIRED = ["name"]
OUTPUTS = ["id", "rootResourceId", "arn"]
REPLACE_ON: list[str] = []
BINDING = False


def validate(properties: dict[str, Any]) -> list[str]:
    endpoint = properties.get("endpointType", "EDGE")
    if endpoint not in ("EDGE", "REGIONAL", "PRIVATE"):
        return [f"endpointType must be EDGE, REGIONAL or PRIVATE, got {endpoint!r}"]
    return []


def to_payload(properties: dict[str, Any]) -> dict[str, Any]:
    return {
        "name": properties["name"],
        "description": properties.get("description", ""),
        "endpointType": properties.get("endpointType", "EDGE"),
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
