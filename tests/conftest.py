"""Shared fixtures: small stacks, a sandbox backend that can be told to fail, a store."""

import pytest

from apigw_ops.graph import build_graph
from apigw_ops.registry import Registry
from apigw_ops.sandbox import SandboxBackend
from apigw_ops.stack_reader import ref
from apigw_ops.state import LocalStateBackend, StateStore


class FailingSandbox(SandboxBackend):
    """Sandbox that raises for creates of chosen payloads.

    fail_on maps a marker property value (e.g. the "name" or "domainName"
    of the payload) to the exception to raise.
    """

    def __init__(self, fail_on=None, **kwargs):
        super().__init__(**kwargs)
        self.fail_on = dict(fail_on or {})

    def create(self, resource_type, properties):
        for value in properties.values():
            if isinstance(value, str) and value in self.fail_on:
                self.calls.append(("create-failed", resource_type, value))
                raise self.fail_on[value]
        return super().create(resource_type, properties)


def scenario_stack():
    """Cert, Role, Function(Role), Gateway(Cert), Deployment(Gateway, Function)."""
    return {
        "stack": "scenario",
        "resources": {
            "Cert": {"type": "Certificate",
                     "properties": {"domainName": "example.com", "hostedZoneId": "Z1"}},
            "Role": {"type": "Role", "properties": {"assumedBy": "lambda.amazonaws.com"}},
            "Function": {"type": "Function",
                         "properties": {"handler": "hello.handler", "runtime": "nodejs16.x",
                                        "role": ref("Role", "arn")}},
            "Gateway": {"type": "DomainName",
                        "properties": {"domainName": "api.example.com",
                                       "certificateArn": ref("Cert", "arn")}},
            "Deployment": {"type": "Deployment",
                           "properties": {"restApiId": ref("Gateway", "name"),
                                          "description": ref("Function", "arn")}},
        },
    }


def chain_stack():
    """Cert → Domain → Deployment → Record, each depending on the previous one."""
    return {
        "stack": "chain",
        "resources": {
            "Cert": {"type": "Certificate",
                     "properties": {"domainName": "example.com", "hostedZoneId": "Z1"}},
            "Domain": {"type": "DomainName",
                       "properties": {"domainName": "api.example.com",
                                      "certificateArn": ref("Cert", "arn")}},
            "Deployment": {"type": "Deployment",
                           "properties": {"restApiId": ref("Domain", "name")}},
            "Record": {"type": "Record",
                       "properties": {"hostedZoneId": "Z1",
                                      "recordName": "api.example.com",
                                      "target": {"dnsName": ref("Deployment", "id"),
                                                 "hostedZoneId": "ZAPI"}}},
        },
    }


@pytest.fixture
def scenario_registry():
    return Registry.from_stack(scenario_stack())


@pytest.fixture
def chain_registry():
    return Registry.from_stack(chain_stack())


@pytest.fixture
def state_backend(tmp_path):
    return LocalStateBackend(str(tmp_path / "state.json"))


@pytest.fixture
def store(state_backend):
    return StateStore(state_backend, state_backend.init("test"))


@pytest.fixture
def sandbox():
    return SandboxBackend()


@pytest.fixture
def make_executor(store):
    """Build an Executor with instant polling over the given registry and backend."""
    from apigw_ops.executor import Executor

    def _make(registry, backend, **kwargs):
        kwargs.setdefault("poll_interval", 0)
        kwargs.setdefault("timeout", 5)
        return Executor(registry, build_graph(registry), backend, store, **kwargs)

    return _make
