"""Record resource: DNS alias record pointing the API hostname at the custom domain."""
from __future__ import annotations

from typing import Any

RESOURCE_TYPE = "Record"
REQUIRED = ["hostedZoneId", "recordName", "target"]
OUTPUTS = ["fqdn"]
REPLACE_ON = ["hostedZoneId", "recordName", "recordType"]
BINDING = True

RECORD_TYPES = ("A", "AAAA")


def validate(properties: dict[str, Any]) -> list[str]:
    problems = []
    if properties.get("recordType", "A") not in RECORD_TYPES:
        problems.append(f"recordType must be one of {', '.join(RECORD_TYPES)}")
    target = properties.get("target")
    if not isinstance(target, dict) or "dnsName" not in target or "hostedZoneId" not in target:
        problems.append("target must be an alias object with dnsName and hostedZoneId")
    return problems


def to_payload(properties: dict[str, Any]) -> dict[str, Any]:
    target = properties["target"]
    return {
        "hostedZoneId": properties["hostedZoneId"],
        "recordName": properties["recordName"].rstrip(".") + ".",
        "recordType": properties.get("recordType", "A"),
        "aliasTarget": {
            "dnsName": target["dnsName"],
            "hostedZoneId": target["hostedZoneId"],
            "evaluateTargetHealth": bool(target.get("evaluateTargetHealth", False)),
        },
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
