"""DomainName resource: custom domain bound to a certificate."""
from __future__ import annotations

from typing import Any

RESOURCE_TYPE = "DomainName"
REQUIRED = ["domainName", "certificateArn"]
OUTPUTS = ["name", "regionalDomainName", "regionalHostedZoneId"]
REPLACE_ON = ["domainName"]
# Alias records point at regionalDomainName
BINDING = True


def validate(properties: dict[str, Any]) -> list[str]:
    problems = []
    if properties.get("endpointType", "REGIONAL") not in ("EDGE", "REGIONAL"):
        problems.append("endpointType must be EDGE or REGIONAL")
    if properties.get("securityPolicy", "TLS_1_2") not in ("TLS_1_0", "TLS_1_2"):
        problems.append("securityPolicy must be TLS_1_0 or TLS_1_2")
    return problems


def to_payload(properties: dict[str, Any]) -> dict[str, Any]:
    return {
        "domainName": properties["domainName"],
        "certificateArn": properties["certificateArn"],
        "endpointType": properties.get("endpointType", "REGIONAL"),
        "securityPolicy": properties.get("securityPolicy", "TLS_1_2"),
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
