"""Stack template for a TLS custom-domain API fronting a serverless function."""

from __future__ import annotations

from typing import Any

from apigw_ops.stack_reader import ref

DEFAULT_STACK_NAME = "serverless-api"
DEFAULT_FUNCTION_TIMEOUT = 13 * 60  # seconds
LOGS_ACTIONS = ["logs:CreateLogGroup", "logs:CreateLogStream", "logs:PutLogEvents"]


def serverless_api_stack(domain: str, hosted_zone_id: str, record_name: str | None = None,
                         stack_name: str = DEFAULT_STACK_NAME, api_name: str = "DemoApi",
                         stage_name: str = "dev", route: str = "/test1",
                         code: str = "lambda", handler: str = "hello.handler",
                         runtime: str = "nodejs16.x", architecture: str = "arm64",
                         environment: dict[str, str] | None = None) -> dict[str, Any]:
    """Build the stack dict for the API/function/DNS topology.

    Args:
        domain: Apex domain of the hosted zone (e.g. "example.com")
        hosted_zone_id: Hosted zone that validates the certificate and holds the alias
        record_name: API hostname, defaults to "api.<domain>"
    """
    record_name = record_name or f"api.{domain}"
    if environment is None:
        environment = {"DYNAMO_DB_TABLE": "Example"}

    resources: dict[str, Any] = {
        "ApiCertificate": {
            "type": "Certificate",
            "properties": {
                "domainName": domain,
                "subjectAlternativeNames": [f"*.{domain}"],
                "validationMethod": "DNS",
                "hostedZoneId": hosted_zone_id,
            },
        },
        "FunctionRole": {
            "type": "Role",
            "properties": {
                "assumedBy": "lambda.amazonaws.com",
                "policies": [{"actions": LOGS_ACTIONS, "resources": ["*"]}],
            },
        },
        "Function1": {
            "type": "Function",
            "properties": {
                "code": code,
                "handler": handler,
                "runtime": runtime,
                "architecture": architecture,
                "timeout": DEFAULT_FUNCTION_TIMEOUT,
                "role": ref("FunctionRole", "arn"),
                "environment": dict(environment),
                "provisionedConcurrency": 1,
            },
        },
        "GatewayRole": {
            "type": "Role",
            "properties": {
                "assumedBy": "apigateway.amazonaws.com",
                "policies": [{
                    "actions": ["lambda:InvokeFunction"],
                    "resources": [ref("Function1", "arn")],
                }],
            },
        },
        "Api": {
            "type": "GatewayApi",
            "properties": {"name": api_name, "endpointType": "REGIONAL"},
        },
        "ApiDomain": {
            "type": "DomainName",
            "properties": {
                "domainName": record_name,
                "certificateArn": ref("ApiCertificate", "arn"),
                "endpointType": "REGIONAL",
            },
        },
        "RouteMethod": {
            "type": "Method",
            "properties": {
                "restApiId": ref("Api", "id"),
                "path": route,
                "httpMethod": "GET",
                "integration": {
                    "functionArn": ref("Function1", "arn"),
                    "credentialsRole": ref("GatewayRole", "arn"),
                },
            },
        },
        "ApiDeployment": {
            "type": "Deployment",
            "properties": {
                "restApiId": ref("Api", "id"),
                "methods": [ref("RouteMethod", "id")],
            },
        },
        "ApiStage": {
            "type": "Stage",
            "properties": {
                "restApiId": ref("Api", "id"),
                "deploymentId": ref("ApiDeployment", "id"),
                "stageName": stage_name,
            },
        },
        "ApiMapping": {
            "type": "BasePathMapping",
            "properties": {
                "domainName": ref("ApiDomain", "name"),
                "restApiId": ref("Api", "id"),
                "stage": ref("ApiStage", "name"),
            },
        },
        "ApiRecord": {
            "type": "Record",
            "properties": {
                "hostedZoneId": hosted_zone_id,
                "recordName": record_name,
                "recordType": "A",
                "target": {
                    "dnsName": ref("ApiDomain", "regionalDomainName"),
                    "hostedZoneId": ref("ApiDomain", "regionalHostedZoneId"),
                },
            },
        },
    }
    return {
        "stack": stack_name,
        "resources": resources,
        "outputs": {
            "ApiCertificateArn": ref("ApiCertificate", "arn"),
            "ApiUrl": f"https://{record_name}{route}",
        },
    }
