"""BasePathMapping resource: routes a custom domain to an API stage."""
from __future__ import annotations

from typing import Any

RESOURCE_TYPE = "BasePathMapping"
REQUIRED = ["domainName", "restApiId", "stage"]
OUTPUTS = ["id"]
REPLACE_ON = ["domainName", "basePath"]
BINDING = True


def validate(properties: dict[str, Any]) -> list[str]:
    base_path = properties.get("basePath", "")
    if not isinstance(base_path, str) or base_path.startswith("/"):
        return ["basePath must be a string without a leading '/'"]
    return []


def to_payload(properties: dict[str, Any]) -> dict[str, Any]:
    return {
        "domainName": properties["domainName"],
        "restApiId": properties["restApiId"],
        "stage": properties["stage"],
        "basePath": properties.get("basePath", ""),
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
