"""stack_deployer.reconciler — Create-or-update a stack and classify the result.

State machine per reconcile call::

    idle -> created | updated -> converging -> converged | failed
    idle -> updated -> no_changes_needed

The outcome is returned as a ``DeploymentOutcome`` value. "No updates are to
be performed" is recognised by ``CloudFormationControlPlane`` and surfaces as
``NoChanges``; callers never inspect error text.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple, Union

from botocore.exceptions import BotoCoreError, ClientError

from .errors import (
    DeploymentTimeoutError,
    StackDeployerError,
    StackNotFoundError,
    TransientControlPlaneError,
    classify_client_error,
    is_no_updates_error,
    is_token_reuse_error,
)
from .models import DeploymentOutcome, DeployStackContext, Failure, NoChanges, StackInfo, Success
from .observability import _elapsed_ms, _emit_structured_observability
from .parameters import _to_cfn_parameters

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Reconcile states
# ---------------------------------------------------------------------------

_STATE_IDLE = "idle"
_STATE_CREATED = "created"
_STATE_UPDATED = "updated"
_STATE_CONVERGING = "converging"
_STATE_CONVERGED = "converged"
_STATE_NO_CHANGES = "no_changes_needed"
_STATE_FAILED = "failed"

_TRANSITIONS = {
    _STATE_IDLE: {_STATE_CREATED, _STATE_UPDATED, _STATE_FAILED},
    _STATE_CREATED: {_STATE_CONVERGING, _STATE_FAILED},
    _STATE_UPDATED: {_STATE_CONVERGING, _STATE_NO_CHANGES, _STATE_FAILED},
    _STATE_CONVERGING: {_STATE_CONVERGED, _STATE_FAILED},
    _STATE_CONVERGED: set(),
    _STATE_NO_CHANGES: set(),
    _STATE_FAILED: set(),
}

_CONVERGED_STATUSES = {"CREATE_COMPLETE", "UPDATE_COMPLETE", "IMPORT_COMPLETE"}
_FAILED_STATUSES = {
    "CREATE_FAILED",
    "ROLLBACK_COMPLETE",
    "ROLLBACK_FAILED",
    "DELETE_COMPLETE",
    "DELETE_FAILED",
    "UPDATE_FAILED",
    "UPDATE_ROLLBACK_COMPLETE",
    "UPDATE_ROLLBACK_FAILED",
    "IMPORT_ROLLBACK_COMPLETE",
    "IMPORT_ROLLBACK_FAILED",
}

# Polls with no stack before a submitted operation counts as missing.
_MAX_UNSEEN_POLLS = 3


def _advance(stack_name: str, current: str, next_state: str) -> str:
    if next_state not in _TRANSITIONS[current]:
        raise ValueError(f"Invalid reconcile transition {current} -> {next_state}")
    logger.info("[INFO] Stack %s: %s -> %s", stack_name, current, next_state)
    return next_state


# ---------------------------------------------------------------------------
# Control plane adapter
# ---------------------------------------------------------------------------


class _NoChangesSignal:
    def __repr__(self) -> str:
        return "NO_CHANGES"


NO_CHANGES = _NoChangesSignal()


@dataclass(frozen=True)
class SubmittedOperation:
    stack_id: str
    operation: str
    token_reused: bool = False


class CloudFormationControlPlane:
    """Thin adapter over the CloudFormation create/update calls."""

    def __init__(self, client_factory: Any) -> None:
        self._client_factory = client_factory

    def _common_args(self, context: DeployStackContext) -> Dict[str, Any]:
        args: Dict[str, Any] = {
            "StackName": context.stack_name,
            "TemplateBody": context.template_body,
            "Parameters": _to_cfn_parameters(context.parameters),
            "Capabilities": list(context.capabilities),
            "ClientRequestToken": context.client_request_token,
        }
        if context.tags:
            args["Tags"] = list(context.tags)
        if context.stack_policy_body:
            args["StackPolicyBody"] = context.stack_policy_body
        if context.notification_arn:
            args["NotificationARNs"] = [context.notification_arn]
        return args

    def _submit(self, operation: str, context: DeployStackContext, **extra: Any):
        try:
            client = self._client_factory.create(context.role_arn)
            call = client.create_stack if operation == "create" else client.update_stack
            resp = call(**self._common_args(context), **extra)
        except (ClientError, BotoCoreError) as exc:
            if operation == "update" and is_no_updates_error(exc):
                return NO_CHANGES
            if is_token_reuse_error(exc):
                logger.info(
                    "[INFO] Request token already used for %s; skipping duplicate %s",
                    context.stack_name,
                    operation,
                )
                return SubmittedOperation(context.stack_name, operation, token_reused=True)
            raise classify_client_error(exc) from exc
        return SubmittedOperation(str(resp.get("StackId") or context.stack_name), operation)

    def create(self, context: DeployStackContext) -> SubmittedOperation:
        return self._submit("create", context, OnFailure="DELETE")

    def update(self, context: DeployStackContext) -> Union[SubmittedOperation, _NoChangesSignal]:
        return self._submit("update", context)


# ---------------------------------------------------------------------------
# Reconciler
# ---------------------------------------------------------------------------


class DeployReconciler:
    def __init__(
        self,
        state_reader: Any,
        control_plane: Any,
        *,
        max_submit_attempts: int = 5,
        retry_backoff_seconds: Tuple[int, ...] = (1, 2, 4, 8, 16),
        poll_seconds: int = 10,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._state_reader = state_reader
        self._control_plane = control_plane
        self._max_submit_attempts = max(1, max_submit_attempts)
        self._backoffs = tuple(retry_backoff_seconds) or (1,)
        self._poll_seconds = max(0, poll_seconds)
        self._sleep = sleep
        self._clock = clock

    def _backoff_seconds(self, attempt_number: int) -> int:
        idx = max(0, min(attempt_number - 1, len(self._backoffs) - 1))
        return self._backoffs[idx]

    def _remaining(self, deadline: Optional[float]) -> float:
        if deadline is None:
            return float("inf")
        return deadline - self._clock()

    def reconcile(self, context: DeployStackContext, deadline: Optional[float] = None) -> DeploymentOutcome:
        """Submit the stack operation and block until it is classified.

        ``deadline`` is a ``clock()`` value after which the attempt is a
        timeout ``Failure``.
        """
        started = time.monotonic()
        stack = context.stack_name
        state = _STATE_IDLE

        try:
            submitted = self._submit_with_retries(context, deadline)
        except StackDeployerError as exc:
            state = _advance(stack, state, _STATE_FAILED)
            return self._finish(context, Failure(cause=str(exc)), started, error_code=exc.code)
        except Exception as exc:
            logger.error("[ERROR] Unclassified error submitting %s: %s", stack, exc, exc_info=True)
            state = _advance(stack, state, _STATE_FAILED)
            return self._finish(context, Failure(cause=str(exc)), started, error_code="unclassified")

        if submitted is NO_CHANGES:
            state = _advance(stack, state, _STATE_UPDATED)
            state = _advance(stack, state, _STATE_NO_CHANGES)
            return self._finish(context, NoChanges(), started)

        state = _advance(stack, state, _STATE_CREATED if submitted.operation == "create" else _STATE_UPDATED)
        state = _advance(stack, state, _STATE_CONVERGING)

        try:
            info = self._wait_for_convergence(context, submitted.stack_id, deadline)
        except StackDeployerError as exc:
            state = _advance(stack, state, _STATE_FAILED)
            return self._finish(context, Failure(cause=str(exc)), started, error_code=exc.code)

        if info.status in _CONVERGED_STATUSES:
            state = _advance(stack, state, _STATE_CONVERGED)
            return self._finish(context, Success(outputs=dict(info.outputs)), started)

        state = _advance(stack, state, _STATE_FAILED)
        cause = f"{info.status}: {info.status_reason}" if info.status_reason else info.status
        return self._finish(context, Failure(cause=cause), started, error_code="stack_failed")

    def _submit_with_retries(self, context: DeployStackContext, deadline: Optional[float]):
        attempt = 0
        while True:
            attempt += 1
            if self._remaining(deadline) <= 0:
                raise DeploymentTimeoutError(
                    f"Deployment time budget exhausted before submitting stack {context.stack_name}"
                )
            try:
                if self._state_reader.exists(context.stack_name, context.role_arn):
                    logger.info("[INFO] Updating existing stack %s (attempt %d)", context.stack_name, attempt)
                    return self._control_plane.update(context)
                logger.info("[INFO] Creating stack %s (attempt %d)", context.stack_name, attempt)
                return self._control_plane.create(context)
            except TransientControlPlaneError as exc:
                wait = self._backoff_seconds(attempt)
                if attempt >= self._max_submit_attempts:
                    logger.error(
                        "[ERROR] Giving up on %s after %d attempt(s): %s", context.stack_name, attempt, exc
                    )
                    raise
                if wait >= self._remaining(deadline):
                    logger.error("[ERROR] No time left to retry %s: %s", context.stack_name, exc)
                    raise
                logger.warning(
                    "[WARNING] Transient error (%s) on %s; retrying in %ss", exc.code, context.stack_name, wait
                )
                self._sleep(wait)

    def _wait_for_convergence(
        self, context: DeployStackContext, stack_id: str, deadline: Optional[float]
    ) -> StackInfo:
        stack = context.stack_name
        target = stack_id or stack
        last_status = "unknown"
        unseen_polls = 0
        while True:
            try:
                info = self._state_reader.describe(target, context.role_arn, include_deleted=True)
            except TransientControlPlaneError as exc:
                logger.warning("[WARNING] Transient error polling %s: %s", stack, exc)
            else:
                if info is not None:
                    last_status = info.status
                    if info.status in _CONVERGED_STATUSES or info.status in _FAILED_STATUSES:
                        return info
                elif last_status != "unknown":
                    raise StackNotFoundError(
                        f"Stack {stack} disappeared while converging (last status: {last_status})"
                    )
                else:
                    # Never seen, e.g. a reused create token whose stack is already deleted.
                    unseen_polls += 1
                    if unseen_polls >= _MAX_UNSEEN_POLLS:
                        raise StackNotFoundError(
                            f"Stack {stack} not found after {unseen_polls} poll(s) following submission"
                        )

            remaining = self._remaining(deadline)
            if remaining <= 0:
                raise DeploymentTimeoutError(
                    f"Timed out waiting for stack {stack} to converge (last status: {last_status})"
                )
            self._sleep(min(self._poll_seconds, remaining))

    def _finish(
        self,
        context: DeployStackContext,
        outcome: DeploymentOutcome,
        started: float,
        error_code: Optional[str] = None,
    ) -> DeploymentOutcome:
        _emit_structured_observability(
            component="reconciler",
            event="reconcile_complete",
            stack_name=context.stack_name,
            outcome=outcome.kind,
            latency_ms=_elapsed_ms(started),
            error_code=error_code,
        )
        return outcome
