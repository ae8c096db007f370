"""Local simulated provisioning backend for dry runs and tests."""

from __future__ import annotations

import copy
import json
import os
import threading
from typing import Any

from apigw_ops.exceptions import NotFoundError
from apigw_ops.resources import RESOURCE_TYPES

NAME_KEYS = ("name", "functionName", "roleName", "domainName", "stageName")


class SandboxBackend:
    """Simulated backend implementing create/update/delete/describe.

    Resources live in memory, or in a JSON file when `path` is given so
    that successive CLI invocations see the same "cloud". Identifiers are
    "<type>-<n>". Updates that touch one of the type's REPLACE_ON properties
    get a fresh identifier, like a replacement would. Certificates report
    PENDING_VALIDATION until they have been described `validation_polls`
    times.
    """

    def __init__(self, path: str | None = None, validation_polls: int = 1) -> None:
        self.path = path
        self.validation_polls = validation_polls
        self.calls: list[tuple[str, str, str]] = []
        self._lock = threading.Lock()
        self._data: dict[str, Any] = {"counter": 0, "resources": {}}
        if path and os.path.exists(path):
            with open(path, "r") as f:
                self._data = json.load(f)

    def create(self, resource_type: str, properties: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            identifier = self._new_identifier(resource_type)
            record = {"type": resource_type, "properties": copy.deepcopy(properties), "polls": 0}
            self._data["resources"][identifier] = record
            self.calls.append(("create", resource_type, identifier))
            self._save()
            return {"identifier": identifier, "outputs": self._outputs(identifier, record)}

    def update(self, identifier: str, properties: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            record = self._data["resources"].get(identifier)
            if record is None:
                raise NotFoundError(f"{identifier} does not exist", status_code=404)
            resource_type = record["type"]
            self.calls.append(("update", resource_type, identifier))
            replace_on = RESOURCE_TYPES[resource_type].REPLACE_ON
            replaced = any(record["properties"].get(k) != properties.get(k) for k in replace_on)
            record = {"type": resource_type, "properties": copy.deepcopy(properties),
                      "polls": record["polls"]}
            result: dict[str, Any] = {}
            if replaced:
                del self._data["resources"][identifier]
                identifier = self._new_identifier(resource_type)
                record["polls"] = 0
                result["identifier"] = identifier
            self._data["resources"][identifier] = record
            self._save()
            result["outputs"] = self._outputs(identifier, record)
            return result

    def delete(self, identifier: str) -> None:
        with self._lock:
            record = self._data["resources"].pop(identifier, None)
            resource_type = record["type"] if record else "?"
            self.calls.append(("delete", resource_type, identifier))
            self._save()

    def describe(self, identifier: str) -> dict[str, Any]:
        with self._lock:
            record = self._data["resources"].get(identifier)
            if record is None:
                return {"exists": False, "outputs": {}}
            record["polls"] += 1
            self._save()
            return {"exists": True, "outputs": self._outputs(identifier, record)}

    def identifiers(self) -> list[str]:
        with self._lock:
            return sorted(self._data["resources"])

    def _new_identifier(self, resource_type: str) -> str:
        self._data["counter"] += 1
        return f"{resource_type.lower()}-{self._data['counter']:04d}"

    def _outputs(self, identifier: str, record: dict[str, Any]) -> dict[str, Any]:
        resource_type = record["type"]
        props = record["properties"]
        outputs: dict[str, Any] = {}
        for attr in RESOURCE_TYPES[resource_type].OUTPUTS:
            if attr == "arn":
                outputs[attr] = f"arn:sandbox:{resource_type.lower()}:{identifier}"
            elif attr == "id":
                outputs[attr] = identifier
            elif attr == "name":
                outputs[attr] = next((props[k] for k in NAME_KEYS if props.get(k)), identifier)
            elif attr == "status":
                issued = record["polls"] >= self.validation_polls
                outputs[attr] = "ISSUED" if issued else "PENDING_VALIDATION"
            elif attr == "state":
                outputs[attr] = "Active"
            elif attr == "invokeUrl":
                outputs[attr] = f"https://{props['restApiId']}.execute-api.sandbox/{props['stageName']}"
            elif attr == "fqdn":
                outputs[attr] = props["recordName"]
            elif attr == "regionalDomainName":
                outputs[attr] = f"d-{identifier}.execute-api.sandbox"
            elif attr == "regionalHostedZoneId":
                outputs[attr] = "ZSANDBOX"
            else:
                outputs[attr] = f"{identifier}.{attr}"
        return outputs

    def _save(self) -> None:
        if not self.path:
            return
        os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
        tmp = self.path + ".tmp"
        with open(tmp, "w") as f:
            json.dump(self._data, f, indent=2)
            f.write("\n")
        os.replace(tmp, self.path)
