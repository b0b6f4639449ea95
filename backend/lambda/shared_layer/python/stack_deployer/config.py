"""stack_deployer.config — Environment configuration for the stack deployer.

Values are read from the environment once at import time and gathered into a
``DeployerSettings`` value that the Lambda entry point hands to the
orchestrator. Nothing below is consulted per request.

Environment variables:
    DEPLOY_REGION                  default: us-east-1
    NOTIFICATION_ARN               default: "" (no CloudFormation SNS target)
    DEPLOY_TIMEOUT_SECONDS         default: 840
    LAMBDA_TIMEOUT_MARGIN_SECONDS  default: 30
    STACK_POLL_SECONDS             default: 10
    MAX_SUBMIT_ATTEMPTS            default: 5
    RETRY_BACKOFF_SECONDS          default: 1,2,4,8,16
    IDEMPOTENCY_MODE               default: content  (content | delivery)
    GITHUB_APP_ID                  GitHub App numeric ID
    GITHUB_INSTALLATION_ID         Installation ID of the App
    GITHUB_PRIVATE_KEY_SECRET      default: github-app/private-key
    COMMIT_STATUS_SERVICE_NAME     default: AWS CloudFormation
    STACK_CONSOLE_URL              default: CloudFormation console stack page
    ROLE_SESSION_NAME              default: stack-deployer
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Optional, Tuple

logger = logging.getLogger(__name__)

IDEMPOTENCY_CONTENT = "content"
IDEMPOTENCY_DELIVERY = "delivery"
_IDEMPOTENCY_MODES = {IDEMPOTENCY_CONTENT, IDEMPOTENCY_DELIVERY}

_DEFAULT_CONSOLE_URL = (
    "https://console.aws.amazon.com/cloudformation/home?region={region}"
    "#/stacks/stackinfo?filteringText=&filteringStatus=active&viewNested=true"
    "&hideStacks=false&stackId={stack_name}"
)


def _env_int(name: str, default: int, minimum: int = 0) -> int:
    raw = os.environ.get(name, "")
    if not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("[WARNING] %s=%r is not an integer; using %s", name, raw, default)
        return default
    if value < minimum:
        logger.warning("[WARNING] %s=%s below minimum %s; using %s", name, value, minimum, default)
        return default
    return value


def _env_backoffs(name: str, default: Tuple[int, ...]) -> Tuple[int, ...]:
    raw = os.environ.get(name, "")
    if not raw.strip():
        return default
    try:
        values = tuple(int(part) for part in raw.split(",") if part.strip())
    except ValueError:
        logger.warning("[WARNING] %s=%r is not a comma-separated integer list", name, raw)
        return default
    values = tuple(v for v in values if v >= 0)
    return values or default


def _env_mode(name: str, default: str) -> str:
    raw = os.environ.get(name, "").strip().lower()
    if not raw:
        return default
    if raw not in _IDEMPOTENCY_MODES:
        logger.warning("[WARNING] %s=%r unsupported; using %s", name, raw, default)
        return default
    return raw


# ---------------------------------------------------------------------------
# Configuration (read from env; callers may override at import time)
# ---------------------------------------------------------------------------

DEPLOY_REGION: str = os.environ.get("DEPLOY_REGION", "us-east-1")
NOTIFICATION_ARN: str = os.environ.get("NOTIFICATION_ARN", "")
DEPLOY_TIMEOUT_SECONDS: int = _env_int("DEPLOY_TIMEOUT_SECONDS", 840, minimum=1)
LAMBDA_TIMEOUT_MARGIN_SECONDS: int = _env_int("LAMBDA_TIMEOUT_MARGIN_SECONDS", 30)
STACK_POLL_SECONDS: int = _env_int("STACK_POLL_SECONDS", 10, minimum=1)
MAX_SUBMIT_ATTEMPTS: int = _env_int("MAX_SUBMIT_ATTEMPTS", 5, minimum=1)
RETRY_BACKOFF_SECONDS: Tuple[int, ...] = _env_backoffs("RETRY_BACKOFF_SECONDS", (1, 2, 4, 8, 16))
IDEMPOTENCY_MODE: str = _env_mode("IDEMPOTENCY_MODE", IDEMPOTENCY_CONTENT)
GITHUB_APP_ID: str = os.environ.get("GITHUB_APP_ID", "")
GITHUB_INSTALLATION_ID: str = os.environ.get("GITHUB_INSTALLATION_ID", "")
GITHUB_PRIVATE_KEY_SECRET: str = os.environ.get("GITHUB_PRIVATE_KEY_SECRET", "github-app/private-key")
COMMIT_STATUS_SERVICE_NAME: str = os.environ.get("COMMIT_STATUS_SERVICE_NAME", "AWS CloudFormation")
STACK_CONSOLE_URL: str = os.environ.get("STACK_CONSOLE_URL", _DEFAULT_CONSOLE_URL)
ROLE_SESSION_NAME: str = os.environ.get("ROLE_SESSION_NAME", "stack-deployer")


@dataclass(frozen=True)
class DeployerSettings:
    """Per-container settings passed explicitly into the orchestrator."""

    region: str = "us-east-1"
    notification_arn: Optional[str] = None
    deploy_timeout_seconds: int = 840
    lambda_timeout_margin_seconds: int = 30
    stack_poll_seconds: int = 10
    max_submit_attempts: int = 5
    retry_backoff_seconds: Tuple[int, ...] = field(default=(1, 2, 4, 8, 16))
    idempotency_mode: str = IDEMPOTENCY_CONTENT
    commit_status_service_name: str = "AWS CloudFormation"
    stack_console_url: str = _DEFAULT_CONSOLE_URL

    def details_url(self, stack_name: str) -> str:
        return self.stack_console_url.format(region=self.region, stack_name=stack_name)


def load_settings() -> DeployerSettings:
    """Build settings from the module-level environment values."""
    return DeployerSettings(
        region=DEPLOY_REGION,
        notification_arn=NOTIFICATION_ARN or None,
        deploy_timeout_seconds=DEPLOY_TIMEOUT_SECONDS,
        lambda_timeout_margin_seconds=LAMBDA_TIMEOUT_MARGIN_SECONDS,
        stack_poll_seconds=STACK_POLL_SECONDS,
        max_submit_attempts=MAX_SUBMIT_ATTEMPTS,
        retry_backoff_seconds=RETRY_BACKOFF_SECONDS,
        idempotency_mode=IDEMPOTENCY_MODE,
        commit_status_service_name=COMMIT_STATUS_SERVICE_NAME,
        stack_console_url=STACK_CONSOLE_URL,
    )
