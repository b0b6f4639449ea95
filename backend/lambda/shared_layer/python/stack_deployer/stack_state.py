"""stack_deployer.stack_state — Read the current state of a CloudFormation stack."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from botocore.exceptions import BotoCoreError, ClientError

from .errors import StackNotFoundError, classify_client_error
from .models import StackInfo

logger = logging.getLogger(__name__)

# Stacks in this state are gone; a new stack with the same name can be created.
_ABSENT_STATUSES = {"DELETE_COMPLETE"}


def _outputs_map(stack: Dict[str, Any]) -> Dict[str, str]:
    return {
        str(o.get("OutputKey")): str(o.get("OutputValue", ""))
        for o in stack.get("Outputs") or []
        if o.get("OutputKey")
    }


def _stack_info(stack: Dict[str, Any]) -> StackInfo:
    return StackInfo(
        stack_name=str(stack.get("StackName") or ""),
        stack_id=str(stack.get("StackId") or ""),
        status=str(stack.get("StackStatus") or ""),
        status_reason=str(stack.get("StackStatusReason") or ""),
        outputs=_outputs_map(stack),
    )


class StackStateReader:
    """Queries stack existence, status and outputs.

    Boto errors leave this class already classified: ``StackNotFoundError``,
    ``AccessError`` or ``TransientControlPlaneError``/``PermanentControlPlaneError``.
    """

    def __init__(self, client_factory: Any) -> None:
        self._client_factory = client_factory

    def describe(
        self,
        stack_name: str,
        role_arn: Optional[str] = None,
        include_deleted: bool = False,
    ) -> Optional[StackInfo]:
        """Return the stack, or None when it does not exist.

        A deleted stack can still be described by its stack id; pass
        ``include_deleted`` to get it back instead of None.
        """
        try:
            client = self._client_factory.create(role_arn)
            resp = client.describe_stacks(StackName=stack_name)
        except (ClientError, BotoCoreError) as exc:
            err = classify_client_error(exc)
            if isinstance(err, StackNotFoundError):
                return None
            raise err from exc

        stacks = resp.get("Stacks") or []
        if not stacks:
            return None
        info = _stack_info(stacks[0])
        if info.status in _ABSENT_STATUSES and not include_deleted:
            return None
        return info

    def exists(self, stack_name: str, role_arn: Optional[str] = None) -> bool:
        return self.describe(stack_name, role_arn) is not None

    def outputs(self, stack_name: str, role_arn: Optional[str] = None) -> Dict[str, str]:
        info = self.describe(stack_name, role_arn)
        if info is None:
            raise StackNotFoundError(f"Stack with id {stack_name} does not exist")
        return dict(info.outputs)
