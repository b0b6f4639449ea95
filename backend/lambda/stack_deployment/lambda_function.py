"""stack_deployment/lambda_function.py

SQS-triggered Lambda that deploys CloudFormation stacks for CI pipelines.

Each SQS record carries one deployment request written by a Step Functions
task (``waitForTaskToken``). The Lambda creates or updates the stack, waits
for it to converge, resumes the task with the stack outputs (or a failure
cause) and mirrors the phase to the commit's GitHub status.

Flow:
    SQS (deployment requests)
    → This Lambda
    → S3 artifact zip (template + optional template configuration)
    → CloudFormation create_stack / update_stack
    → Step Functions send_task_success / send_task_failure
    → GitHub commit status

Environment variables: see ``stack_deployer.config``. Requires the
``stack_deployer`` layer.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from stack_deployer.artifacts import S3ArtifactStore
from stack_deployer.aws_clients import CloudFormationClientFactory
from stack_deployer.commit_status import CommitStatusReporter
from stack_deployer.config import DeployerSettings, load_settings
from stack_deployer.errors import RequestParseError
from stack_deployer.github import GithubStatusClient
from stack_deployer.notifier import WorkflowNotifier
from stack_deployer.orchestrator import DeploymentOrchestrator
from stack_deployer.reconciler import CloudFormationControlPlane, DeployReconciler
from stack_deployer.request_factory import request_from_sqs_record
from stack_deployer.stack_state import StackStateReader

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logger = logging.getLogger()
logger.setLevel(logging.INFO)

# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------

_orchestrator: Optional[DeploymentOrchestrator] = None


def _build_orchestrator(settings: DeployerSettings) -> DeploymentOrchestrator:
    client_factory = CloudFormationClientFactory(region=settings.region)
    state_reader = StackStateReader(client_factory)
    reconciler = DeployReconciler(
        state_reader,
        CloudFormationControlPlane(client_factory),
        max_submit_attempts=settings.max_submit_attempts,
        retry_backoff_seconds=settings.retry_backoff_seconds,
        poll_seconds=settings.stack_poll_seconds,
    )
    return DeploymentOrchestrator(
        artifact_store=S3ArtifactStore(),
        reconciler=reconciler,
        state_reader=state_reader,
        notifier=WorkflowNotifier(),
        status_reporter=CommitStatusReporter(
            GithubStatusClient(),
            service_name=settings.commit_status_service_name,
        ),
        settings=settings,
    )


def _get_orchestrator() -> DeploymentOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = _build_orchestrator(load_settings())
    return _orchestrator


def _remaining_time_ms(context: Any) -> Optional[int]:
    getter = getattr(context, "get_remaining_time_in_millis", None)
    if getter is None:
        return None
    return int(getter())


# ---------------------------------------------------------------------------
# Lambda handler
# ---------------------------------------------------------------------------


def handler(event: Dict[str, Any], context: Any) -> Dict[str, List[Dict[str, str]]]:
    """SQS Lambda handler (partial batch response)."""
    records = event.get("Records", [])
    logger.info("[INFO] stack_deployment: received %d SQS message(s)", len(records))

    failures: List[Dict[str, str]] = []
    orchestrator = _get_orchestrator()

    for record in records:
        message_id = record.get("messageId", "")
        try:
            request = request_from_sqs_record(record)
        except RequestParseError as e:
            # No task token to resume; leave the message for redrive / DLQ.
            logger.error("[ERROR] Rejected SQS message %s: %s", message_id, e)
            failures.append({"itemIdentifier": message_id})
            continue

        orchestrator.handle(request, remaining_time_ms=_remaining_time_ms(context))

    return {"batchItemFailures": failures}
