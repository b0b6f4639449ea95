"""stack_deployer.template_config — Parse CloudFormation template configuration files.

Format::

    {
        "Parameters": {"Key": "Value"},
        "Tags": {"Key": "Value"},
        "StackPolicy": {"Statement": [...]}
    }
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Union

from .errors import ConfigParseError
from .models import Parameter, TemplateConfiguration


def _string_map(raw: Any, section: str) -> Dict[str, str]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigParseError(f"'{section}' must be an object of string values")
    return {str(k): "" if v is None else str(v) for k, v in raw.items()}


def parse_template_configuration(source: Union[str, bytes]) -> TemplateConfiguration:
    if isinstance(source, bytes):
        source = source.decode("utf-8")
    try:
        data = json.loads(source)
    except json.JSONDecodeError as exc:
        raise ConfigParseError(f"Template configuration is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigParseError("Template configuration must be a JSON object")

    parameters: List[Parameter] = list(_string_map(data.get("Parameters"), "Parameters").items())
    tags = [{"Key": k, "Value": v} for k, v in _string_map(data.get("Tags"), "Tags").items()]

    policy = data.get("StackPolicy")
    if policy is None:
        policy_body = None
    elif isinstance(policy, str):
        policy_body = policy
    else:
        policy_body = json.dumps(policy)

    return TemplateConfiguration(parameters=parameters, tags=tags, stack_policy_body=policy_body)
