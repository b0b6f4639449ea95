"""stack_deployer.commit_status — Best-effort commit status mirroring.

Every report is fire-and-forget: errors are logged and never reach the
deployment outcome or the workflow notification.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Optional

from .models import COMMIT_FAILURE, COMMIT_PENDING, COMMIT_SUCCESS, CommitInfo
from .observability import _emit_structured_observability

logger = logging.getLogger(__name__)

_MAX_DESCRIPTION_LENGTH = 140
_ACCOUNT_ID_RE = re.compile(r"(?<!\d)\d{12}(?!\d)")
_ACCESS_KEY_RE = re.compile(r"\b(?:AKIA|ASIA)[A-Z0-9]{16}\b")
_SECRET_ASSIGNMENT_RE = re.compile(r"(?i)\b(password|secret|token|apikey|api_key)\s*[=:]\s*\S+")

_STATE_VERBS = {
    COMMIT_PENDING: "is deploying",
    COMMIT_SUCCESS: "deployed successfully",
    COMMIT_FAILURE: "deployment failed",
}


def sanitize_description(text: str) -> str:
    """Strip account ids and credential-looking values, then clamp to GitHub's limit."""
    text = _SECRET_ASSIGNMENT_RE.sub(lambda m: f"{m.group(1)}=***", text)
    text = _ACCESS_KEY_RE.sub("***", text)
    text = _ACCOUNT_ID_RE.sub("************", text)
    text = " ".join(text.split())
    if len(text) > _MAX_DESCRIPTION_LENGTH:
        text = text[: _MAX_DESCRIPTION_LENGTH - 3] + "..."
    return text


class CommitStatusReporter:
    def __init__(self, status_client: Any, service_name: str = "AWS CloudFormation") -> None:
        self._client = status_client
        self._service_name = service_name

    def _context(self, project_name: str, environment_name: Optional[str]) -> str:
        if environment_name:
            return f"{self._service_name} - {project_name} ({environment_name})"
        return f"{self._service_name} - {project_name}"

    def report(
        self,
        project_name: str,
        environment_name: Optional[str],
        commit_info: CommitInfo,
        state: str,
        details_url: str,
        detail: Optional[str] = None,
    ) -> bool:
        """Post one status; returns True when GitHub accepted it."""
        if not commit_info.complete:
            logger.info("[INFO] No commit metadata for %s; skipping %s status", project_name, state)
            return False
        if not getattr(self._client, "configured", True):
            logger.info("[INFO] Commit status client not configured; skipping %s status", state)
            return False

        description = f"{project_name} {_STATE_VERBS.get(state, state)}"
        if detail:
            description = f"{description}: {detail}"

        try:
            self._client.create_status(
                owner=commit_info.owner,
                repo=commit_info.repository,
                ref=commit_info.ref,
                state=state,
                target_url=details_url,
                description=sanitize_description(description),
                context=self._context(project_name, environment_name),
            )
        except Exception as exc:
            logger.warning(
                "[WARNING] Failed to report %s commit status for %s/%s@%s: %s",
                state,
                commit_info.owner,
                commit_info.repository,
                commit_info.ref,
                exc,
            )
            _emit_structured_observability(
                component="commit_status",
                event="commit_status_failed",
                stack_name=project_name,
                outcome=state,
                error_code=getattr(exc, "code", type(exc).__name__),
            )
            return False

        logger.info("[INFO] Commit status %s reported for %s", state, project_name)
        return True
