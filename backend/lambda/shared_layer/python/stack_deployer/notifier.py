"""stack_deployer.notifier — Resume the waiting Step Functions task.

``Success`` and ``NoChanges`` both resume the task with the stack outputs as
JSON; ``Failure`` fails it with the cause text. Delivery problems are logged
and swallowed: a token that was already consumed or has expired is a normal
consequence of redelivery, not an orchestrator failure.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError

from .aws_clients import _get_sfn
from .errors import NotificationDeliveryError
from .models import DeploymentOutcome, Failure
from .observability import _emit_structured_observability

logger = logging.getLogger(__name__)

FAILURE_ERROR_NAME = "DeploymentFailed"

# Step Functions limits
_MAX_CAUSE_LENGTH = 32768
_STALE_TOKEN_CODES = {"TaskDoesNotExist", "TaskTimedOut", "InvalidToken"}


def _truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


class WorkflowNotifier:
    def __init__(self, sfn_client: Any = None) -> None:
        self._sfn = sfn_client

    def _client(self):
        return self._sfn or _get_sfn()

    def _send(self, token: str, outcome: DeploymentOutcome) -> None:
        try:
            if isinstance(outcome, Failure):
                self._client().send_task_failure(
                    taskToken=token,
                    error=FAILURE_ERROR_NAME,
                    cause=_truncate(outcome.cause or "Unknown deployment failure", _MAX_CAUSE_LENGTH),
                )
            else:
                self._client().send_task_success(
                    taskToken=token,
                    output=json.dumps(dict(outcome.outputs), sort_keys=True),
                )
        except ClientError as exc:
            code = str(exc.response.get("Error", {}).get("Code") or "")
            raise NotificationDeliveryError(f"{code}: {exc}") from exc
        except BotoCoreError as exc:
            raise NotificationDeliveryError(str(exc)) from exc

    def notify(self, token: str, outcome: DeploymentOutcome) -> bool:
        """Send exactly one resume signal; returns True when it was accepted."""
        try:
            self._send(token, outcome)
        except NotificationDeliveryError as exc:
            cause = exc.__cause__
            code = ""
            if isinstance(cause, ClientError):
                code = str(cause.response.get("Error", {}).get("Code") or "")
            if code in _STALE_TOKEN_CODES:
                logger.warning("[WARNING] Workflow token already consumed or expired (%s); ignoring", code)
            else:
                logger.error("[ERROR] Workflow notification not delivered: %s", exc)
            _emit_structured_observability(
                component="notifier",
                event="workflow_notify_rejected",
                request_token=token,
                outcome=outcome.kind,
                error_code=code or exc.code,
            )
            return False

        logger.info("[INFO] Workflow task resumed with %s", outcome.kind)
        _emit_structured_observability(
            component="notifier",
            event="workflow_notified",
            request_token=token,
            outcome=outcome.kind,
        )
        return True
