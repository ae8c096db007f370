"""Function resource: serverless compute function invoked by the gateway."""
from __future__ import annotations

from typing import Any

RESOURCE_TYPE = "Function"
REQUIRED = ["handler", "runtime", "role"]
OUTPUTS = ["arn", "name", "state"]
REPLACE_ON = ["functionName", "architecture"]
BINDING = False

ARCHITECTURES = ("arm64", "x86_64")
MAX_TIMEOUT = 900  # seconds
DEFAULT_TIMEOUT = 3


def validate(properties: dict[str, Any]) -> list[str]:
    problems = []
    handler = properties.get("handler")
    if isinstance(handler, str) and "." not in handler:
        problems.append(f"handler must look like 'file.function', got {handler!r}")
    arch = properties.get("architecture", "arm64")
    if arch not in ARCHITECTURES:
        problems.append(f"architecture must be one of {', '.join(ARCHITECTURES)}")
    timeout = properties.get("timeout", DEFAULT_TIMEOUT)
    if not isinstance(timeout, int) or not 1 <= timeout <= MAX_TIMEOUT:
        problems.append(f"timeout must be between 1 and {MAX_TIMEOUT} seconds")
    env = properties.get("environment", {})
    if not isinstance(env, dict):
        problems.append("environment must be an object")
    concurrency = properties.get("provisionedConcurrency", 0)
    if not isinstance(concurrency, int) or concurrency < 0:
        problems.append("provisionedConcurrency must be a non-negative integer")
    return problems


def to_payload(properties: dict[str, Any]) -> dict[str, Any]:
    payload = {
        "handler": properties["handler"],
        "runtime": properties["runtime"],
        "role": properties["role"],
        "architecture": properties.get("architecture", "arm64"),
        "timeout": properties.get("timeout", DEFAULT_TIMEOUT),
        "code": properties.get("code", "lambda"),
        "environment": dict(properties.get("environment", {})),
        "provisionedConcurrency": properties.get("provisionedConcurrency", 0),
    }
    if properties.get("functionName"):
        payload["functionName"] = properties["functionName"]
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
    """Functions with provisioned concurrency report Pending until warmed up."""
    state = outputs.get("state", "Active")
    if state == "Failed":
        raise RuntimeError("function entered state Failed")
    return state == "Active"
