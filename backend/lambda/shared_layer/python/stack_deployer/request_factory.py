"""stack_deployer.request_factory — Translate SQS records into deployment requests.

Message bodies are JSON with the PascalCase keys written by the pipeline's
deploy action, e.g.::

    {
        "ZipLocation": "s3://artifacts/build-42.zip",
        "TemplateFileName": "cloudformation.template.yml",
        "TemplateConfigurationFileName": "cloudformation.config.json",
        "StackName": "orders-svc",
        "RoleArn": "arn:aws:iam::123456789012:role/deployer",
        "Token": "<step functions task token>",
        "ParameterOverrides": {"Env": "prod"},
        "Capabilities": ["CAPABILITY_IAM"],
        "EnvironmentName": "prod",
        "CommitInfo": {"GithubOwner": "o", "GithubRepository": "r", "GithubRef": "abc"}
    }
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

from .errors import RequestParseError
from .models import CommitInfo, DeploymentRequest

_REQUIRED_KEYS = ("ZipLocation", "TemplateFileName", "StackName", "Token")


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _parse_overrides(raw: Any) -> Dict[str, str]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise RequestParseError("'ParameterOverrides' must be an object")
    return {str(k): "" if v is None else str(v) for k, v in raw.items()}


def _parse_capabilities(raw: Any) -> List[str]:
    if raw is None:
        return []
    if isinstance(raw, str):
        raw = [raw]
    if not isinstance(raw, list):
        raise RequestParseError("'Capabilities' must be a list of strings")
    return [str(c).strip() for c in raw if str(c).strip()]


def _parse_commit_info(raw: Any) -> CommitInfo:
    if not isinstance(raw, dict):
        return CommitInfo()
    return CommitInfo(
        owner=_optional_str(raw.get("GithubOwner")),
        repository=_optional_str(raw.get("GithubRepository")),
        ref=_optional_str(raw.get("GithubRef")),
    )


def request_from_body(body: Dict[str, Any], delivery_id: Optional[str] = None) -> DeploymentRequest:
    if not isinstance(body, dict):
        raise RequestParseError("Deployment request body must be a JSON object")

    missing = [key for key in _REQUIRED_KEYS if not _optional_str(body.get(key))]
    if missing:
        raise RequestParseError(f"Deployment request missing required field(s): {', '.join(missing)}")

    return DeploymentRequest(
        zip_location=str(body["ZipLocation"]).strip(),
        template_file_name=str(body["TemplateFileName"]).strip(),
        stack_name=str(body["StackName"]).strip(),
        token=str(body["Token"]).strip(),
        template_configuration_file_name=_optional_str(body.get("TemplateConfigurationFileName")),
        role_arn=_optional_str(body.get("RoleArn")),
        parameter_overrides=_parse_overrides(body.get("ParameterOverrides")),
        capabilities=tuple(_parse_capabilities(body.get("Capabilities"))),
        environment_name=_optional_str(body.get("EnvironmentName")),
        commit_info=_parse_commit_info(body.get("CommitInfo")),
        delivery_id=delivery_id,
    )


def request_from_sqs_record(record: Dict[str, Any]) -> DeploymentRequest:
    """Parse one SQS record; raises RequestParseError on malformed input."""
    raw = record.get("body") or ""
    try:
        body = json.loads(raw)
    except (json.JSONDecodeError, TypeError) as exc:
        raise RequestParseError(f"SQS message body is not valid JSON: {exc}") from exc
    return request_from_body(body, delivery_id=record.get("messageId"))
