"""Method resource: a route on the API with a function proxy integration."""
from __future__ import annotations

from typing import Any

RESOURCE_TYPE = "Method"
REQUIRED = ["restApiId", "path", "httpMethod", "integration"]
OUTPUTS = ["id"]
REPLACE_ON = ["restApiId", "path", "httpMethod"]
BINDING = False

HTTP_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS", "ANY")


def validate(properties: dict[str, Any]) -> list[str]:
    problems = []
    path = properties.get("path")
    if isinstance(path, str) and not path.startswith("/"):
        problems.append(f"path must start with '/', got {path!r}")
    http_method = properties.get("httpMethod")
    if isinstance(http_method, str) and http_method not in HTTP_METHODS:
        problems.append(f"httpMethod must be one of {', '.join(HTTP_METHODS)}")
    integration = properties.get("integration")
    if not isinstance(integration, dict) or "functionArn" not in integration:
        problems.append("integration must be an object with functionArn")
    return problems


def to_payload(properties: dict[str, Any]) -> dict[str, Any]:
    integration = properties["integration"]
    payload = {
        "restApiId": properties["restApiId"],
        "path": properties["path"],
        "httpMethod": properties["httpMethod"],
        "integration": {
            "type": "AWS_PROXY",
            "functionArn": integration["functionArn"],
        },
    }
    if integration.get("credentialsRole"):
        payload["integration"]["credentialsRole"] = integration["credentialsRole"]
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
