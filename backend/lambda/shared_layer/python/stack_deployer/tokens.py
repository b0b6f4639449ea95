"""stack_deployer.tokens — Deterministic CloudFormation client request tokens.

In ``content`` mode the token depends only on what is being deployed and for
which workflow task, so an SQS redelivery of the same message reuses the
token and CloudFormation absorbs the duplicate submission. In ``delivery``
mode the SQS message id is mixed in and each delivery is its own attempt.
"""

from __future__ import annotations

import hashlib
import json

from .config import IDEMPOTENCY_CONTENT, IDEMPOTENCY_DELIVERY
from .models import DeploymentRequest

# CloudFormation: [a-zA-Z][-a-zA-Z0-9]*, max 128 chars.
_TOKEN_PREFIX = "stackdeploy-"


def generate_token(request: DeploymentRequest, mode: str = IDEMPOTENCY_CONTENT) -> str:
    identity = {
        "zip_location": request.zip_location,
        "template_file_name": request.template_file_name,
        "template_configuration_file_name": request.template_configuration_file_name or "",
        "stack_name": request.stack_name,
        "role_arn": request.role_arn or "",
        "token": request.token,
        "parameter_overrides": dict(request.parameter_overrides),
        "capabilities": sorted(request.capabilities),
    }
    if mode == IDEMPOTENCY_DELIVERY:
        if not request.delivery_id:
            raise ValueError("delivery idempotency mode requires a delivery id")
        identity["delivery_id"] = request.delivery_id
    elif mode != IDEMPOTENCY_CONTENT:
        raise ValueError(f"Unsupported idempotency mode: {mode}")

    digest = hashlib.sha256(
        json.dumps(identity, sort_keys=True, separators=(",", ":")).encode("utf-8")
    ).hexdigest()
    return f"{_TOKEN_PREFIX}{digest[:48]}"
