"""stack_deployer.orchestrator — Top-level sequencing for one deployment request.

Flow:
    template + config from S3 artifact
    → merge parameters
    → idempotency token
    → commit status "pending"
    → create-or-update + convergence wait
    → resume workflow task (exactly once)
    → terminal commit status (exactly once)

Any exception before the workflow notification is converted into a
``Failure`` outcome, so every request resumes its task token.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Optional

from .config import DeployerSettings
from .models import (
    COMMIT_PENDING,
    DeploymentOutcome,
    DeploymentRequest,
    DeployStackContext,
    Failure,
    NoChanges,
    TemplateConfiguration,
    commit_state_for,
)
from .observability import _elapsed_ms, _emit_structured_observability
from .parameters import merge_parameters
from .template_config import parse_template_configuration
from .tokens import generate_token

logger = logging.getLogger(__name__)


class DeploymentOrchestrator:
    def __init__(
        self,
        *,
        artifact_store: Any,
        reconciler: Any,
        state_reader: Any,
        notifier: Any,
        status_reporter: Any,
        settings: DeployerSettings,
        config_parser: Callable[[str], TemplateConfiguration] = parse_template_configuration,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._artifacts = artifact_store
        self._reconciler = reconciler
        self._state_reader = state_reader
        self._notifier = notifier
        self._status_reporter = status_reporter
        self._settings = settings
        self._config_parser = config_parser
        self._clock = clock

    def _deadline(self, remaining_time_ms: Optional[int]) -> float:
        budget = float(self._settings.deploy_timeout_seconds)
        if remaining_time_ms is not None:
            lambda_budget = remaining_time_ms / 1000.0 - self._settings.lambda_timeout_margin_seconds
            budget = max(0.0, min(budget, lambda_budget))
        return self._clock() + budget

    def _load_config(self, request: DeploymentRequest) -> Optional[TemplateConfiguration]:
        file_name = request.template_configuration_file_name
        if not file_name:
            return None
        source = self._artifacts.get_entry(request.zip_location, file_name)
        return self._config_parser(source)

    def _report(self, request: DeploymentRequest, state: str, detail: Optional[str] = None) -> None:
        try:
            self._status_reporter.report(
                request.stack_name,
                request.environment_name,
                request.commit_info,
                state,
                self._settings.details_url(request.stack_name),
                detail=detail,
            )
        except Exception as exc:
            logger.warning("[WARNING] Commit status reporter raised for %s: %s", request.stack_name, exc)

    def _deploy(self, request: DeploymentRequest, deadline: float) -> DeploymentOutcome:
        template = self._artifacts.get_entry(request.zip_location, request.template_file_name)
        config = self._load_config(request)
        parameters = merge_parameters(config.parameters if config else None, request.parameter_overrides)
        token = generate_token(request, self._settings.idempotency_mode)

        self._report(request, COMMIT_PENDING)

        outcome = self._reconciler.reconcile(
            DeployStackContext(
                stack_name=request.stack_name,
                template_body=template,
                client_request_token=token,
                role_arn=request.role_arn,
                parameters=parameters,
                tags=list(config.tags) if config else [],
                stack_policy_body=config.stack_policy_body if config else None,
                capabilities=tuple(request.capabilities),
                notification_arn=self._settings.notification_arn,
            ),
            deadline,
        )

        if isinstance(outcome, NoChanges):
            logger.info("[INFO] Stack %s already up to date; reading current outputs", request.stack_name)
            outcome = NoChanges(outputs=self._state_reader.outputs(request.stack_name, request.role_arn))
        return outcome

    def handle(self, request: DeploymentRequest, remaining_time_ms: Optional[int] = None) -> None:
        """Deploy one request; the workflow notification is the only result channel."""
        started = time.monotonic()
        logger.info("[START] Deploying stack %s (environment=%s)", request.stack_name, request.environment_name)
        deadline = self._deadline(remaining_time_ms)

        try:
            outcome = self._deploy(request, deadline)
        except Exception as exc:
            logger.error("[ERROR] Deployment of %s failed: %s", request.stack_name, exc, exc_info=True)
            outcome = Failure(cause=str(exc) or type(exc).__name__)

        try:
            self._notifier.notify(request.token, outcome)
        except Exception as exc:
            logger.error("[ERROR] Workflow notifier raised for %s: %s", request.stack_name, exc)

        detail = outcome.cause if isinstance(outcome, Failure) else None
        self._report(request, commit_state_for(outcome), detail=detail)

        _emit_structured_observability(
            component="orchestrator",
            event="deployment_complete",
            stack_name=request.stack_name,
            request_token=request.token,
            outcome=outcome.kind,
            latency_ms=_elapsed_ms(started),
        )
        logger.info("[END] Stack %s finished with %s", request.stack_name, outcome.kind)
