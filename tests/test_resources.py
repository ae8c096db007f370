"""Tests for resource type modules."""

import importlib

import pytest
from unittest.mock import MagicMock

from apigw_ops.resources import RESOURCE_TYPES, TYPE_MODULES
from apigw_ops.resources import certificate, deployment, function, method, record


# ===================================================================
# 1. Every type implements the capability interface
# ===================================================================

_ALL_MODULES = [
    "apigw_ops.resources.certificate",
    "apigw_ops.resources.role",
    "apigw_ops.resources.function",
    "apigw_ops.resources.gateway_api",
    "apigw_ops.resources.domain_name",
    "apigw_ops.resources.method",
    "apigw_ops.resources.deployment",
    "apigw_ops.resources.stage",
    "apigw_ops.resources.base_path_mapping",
    "apigw_ops.resources.record",
]


class TestInterface:
    # Tests that each module exposes the constants and functions the executor uses.
    @pytest.mark.parametrize("mod_path", _ALL_MODULES)
    def test_module_interface(self, mod_path):
        mod = importlib.import_module(mod_path)
        for name in ("RESOURCE_TYPE", "REQUIRED", "OUTPUTS", "REPLACE_ON", "BINDING"):
            assert hasattr(mod, name), name
        for name in ("validate", "to_payload", "create", "update", "delete", "describe", "is_ready"):
            assert callable(getattr(mod, name)), name
        assert RESOURCE_TYPES[mod.RESOURCE_TYPE] is mod

    # Tests that the registry holds exactly the closed set of types.
    def test_closed_set(self):
        assert len(TYPE_MODULES) == len(_ALL_MODULES)
        assert sorted(RESOURCE_TYPES) == [
            "BasePathMapping", "Certificate", "Deployment", "DomainName", "Function",
            "GatewayApi", "Method", "Record", "Role", "Stage",
        ]

    # Tests that create/update/delete/describe delegate to the backend contract.
    def test_delegates_to_backend(self):
        backend = MagicMock()
        backend.create.return_value = {"identifier": "r", "outputs": {}}
        props = {"name": "DemoApi"}
        mod = RESOURCE_TYPES["GatewayApi"]
        mod.create(backend, props)
        backend.create.assert_called_once_with("GatewayApi", {
            "name": "DemoApi", "description": "", "endpointType": "EDGE",
        })
        mod.update(backend, "r", props)
        backend.update.assert_called_once()
        mod.delete(backend, "r")
        backend.delete.assert_called_once_with("r")
        mod.describe(backend, "r")
        backend.describe.assert_called_once_with("r")


# ===================================================================
# 2. Type-specific behaviour
# ===================================================================

class TestCertificate:
    # Tests that readiness waits for ISSUED and fails on terminal statuses.
    def test_is_ready(self):
        assert certificate.is_ready({"status": "ISSUED"}) is True
        assert certificate.is_ready({"status": "PENDING_VALIDATION"}) is False
        with pytest.raises(RuntimeError, match="FAILED"):
            certificate.is_ready({"status": "FAILED"})

    # Tests that email validation does not need a hosted zone.
    def test_email_validation(self):
        assert certificate.validate({"domainName": "x", "validationMethod": "EMAIL"}) == []


class TestFunction:
    # Tests that out-of-range timeouts and unknown architectures are reported.
    def test_validate(self):
        problems = function.validate({
            "handler": "hello.handler", "timeout": 901, "architecture": "sparc",
        })
        assert len(problems) == 2

    # Tests that payload defaults match a minimal declaration.
    def test_payload_defaults(self):
        payload = function.to_payload({"handler": "h.f", "runtime": "nodejs16.x", "role": "arn"})
        assert payload["architecture"] == "arm64"
        assert payload["timeout"] == 3
        assert payload["environment"] == {}

    # Tests that functions are ready when Active.
    def test_is_ready(self):
        assert function.is_ready({"state": "Pending"}) is False
        assert function.is_ready({"state": "Active"}) is True


class TestMethod:
    # Tests that paths must be absolute and verbs known.
    def test_validate(self):
        assert method.validate({"path": "test1", "httpMethod": "FETCH",
                                "integration": {"functionArn": "a"}}) != []
        assert method.validate({"path": "/test1", "httpMethod": "GET",
                                "integration": {"functionArn": "a"}}) == []

    # Tests that the integration is a proxy integration carrying the credentials role.
    def test_payload(self):
        payload = method.to_payload({
            "restApiId": "api", "path": "/test1", "httpMethod": "GET",
            "integration": {"functionArn": "fn", "credentialsRole": "role"},
        })
        assert payload["integration"] == {
            "type": "AWS_PROXY", "functionArn": "fn", "credentialsRole": "role",
        }


class TestDeployment:
    # Tests that method ids are sorted so declaration order does not cause updates.
    def test_methods_sorted(self):
        payload = deployment.to_payload({"restApiId": "a", "methods": ["m2", "m1"]})
        assert payload["methods"] == ["m1", "m2"]


class TestRecord:
    # Tests that record names are sent fully qualified.
    def test_payload_trailing_dot(self):
        payload = record.to_payload({
            "hostedZoneId": "Z", "recordName": "api.example.com",
            "target": {"dnsName": "d.example", "hostedZoneId": "ZT"},
        })
        assert payload["recordName"] == "api.example.com."
        assert payload["aliasTarget"]["evaluateTargetHealth"] is False

    # Tests that a target without a hosted zone is rejected.
    def test_validate_target(self):
        assert record.validate({"target": {"dnsName": "x"}}) != []
