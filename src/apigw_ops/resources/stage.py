"""Stage resource: a named, invokable pointer at a deployment."""
from __future__ import annotations

import re
from typing import Any

RESOURCE_TYPE = "Stage"
REQUIRED = ["restApiId", "deploymentId", "stageName"]
OUTPUTS = ["name", "invokeUrl"]
REPLACE_ON = ["restApiId", "stageName"]
BINDING = False

STAGE_NAME = re.compile(r"^[A-Za-z0-9_-]{1,128}$")


def validate(properties: dict[str, Any]) -> list[str]:
    name = properties.get("stageName")
    if isinstance(name, str) and not STAGE_NAME.match(name):
        return [f"stageName {name!r} may only contain letters, digits, '-' and '_'"]
    return []


def to_payload(properties: dict[str, Any]) -> dict[str, Any]:
    return {
        "restApiId": properties["restApiId"],
        "deploymentId": properties["deploymentId"],
        "stageName": properties["stageName"],
        "variables": dict(properties.get("variables", {})),
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
