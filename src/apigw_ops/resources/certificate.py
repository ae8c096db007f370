"""Certificate resource: TLS certificate validated through DNS records in a hosted zone."""
from __future__ import annotations

from typing import Any

RESOURCE_TYPE = "Certificate"
REQUIRED = ["domainName"]
OUTPUTS = ["arn", "status"]
REPLACE_ON = ["domainName", "subjectAlternativeNames", "hostedZoneId"]
# Custom domains terminate TLS with this certificate
BINDING = True

READY_STATUS = "ISSUED"
FAILED_STATUSES = ("FAILED", "VALIDATION_TIMED_OUT", "REVOKED")


def validate(properties: dict[str, Any]) -> list[str]:
    problems = []
    sans = properties.get("subjectAlternativeNames", [])
    if not isinstance(sans, list):
        problems.append("subjectAlternativeNames must be a list")
    method = properties.get("validationMethod", "DNS")
    if method not in ("DNS", "EMAIL"):
        problems.append(f"validationMethod must be DNS or EMAIL, got {method!r}")
    if method == "DNS" and not properties.get("hostedZoneId"):
        problems.append("hostedZoneId is required for DNS validation")
    return problems


def to_payload(properties: dict[str, Any]) -> dict[str, Any]:
    payload = {
        "domainName": properties["domainName"],
        "subjectAlternativeNames": list(properties.get("subjectAlternativeNames", [])),
        "validationMethod": properties.get("validationMethod", "DNS"),
    }
    if properties.get("hostedZoneId"):
        payload["hostedZoneId"] = properties["hostedZoneId"]
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
    """Certificates are usable once DNS validation has completed."""
    status = outputs.get("status")
    if status in FAILED_STATUSES:
        raise RuntimeError(f"certificate validation ended in status {status}")
    return status == READY_STATUS
