"""stack_deployer.models — Value types shared by the deployment components."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Tuple, Union

Parameter = Tuple[str, str]

COMMIT_PENDING = "pending"
COMMIT_SUCCESS = "success"
COMMIT_FAILURE = "failure"


@dataclass(frozen=True)
class CommitInfo:
    owner: Optional[str] = None
    repository: Optional[str] = None
    ref: Optional[str] = None

    @property
    def complete(self) -> bool:
        return bool(self.owner and self.repository and self.ref)


@dataclass(frozen=True)
class DeploymentRequest:
    """One logical deployment attempt, as delivered by the queue."""

    zip_location: str
    template_file_name: str
    stack_name: str
    token: str
    template_configuration_file_name: Optional[str] = None
    role_arn: Optional[str] = None
    parameter_overrides: Mapping[str, str] = field(default_factory=dict)
    capabilities: Tuple[str, ...] = ()
    environment_name: Optional[str] = None
    commit_info: CommitInfo = field(default_factory=CommitInfo)
    delivery_id: Optional[str] = None


@dataclass(frozen=True)
class TemplateConfiguration:
    parameters: List[Parameter] = field(default_factory=list)
    tags: List[Dict[str, str]] = field(default_factory=list)
    stack_policy_body: Optional[str] = None


@dataclass(frozen=True)
class DeployStackContext:
    """Command object for one create-or-update submission."""

    stack_name: str
    template_body: str
    client_request_token: str
    role_arn: Optional[str] = None
    parameters: List[Parameter] = field(default_factory=list)
    tags: List[Dict[str, str]] = field(default_factory=list)
    stack_policy_body: Optional[str] = None
    capabilities: Tuple[str, ...] = ()
    notification_arn: Optional[str] = None


@dataclass(frozen=True)
class StackInfo:
    stack_name: str
    stack_id: str
    status: str
    status_reason: str = ""
    outputs: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class Success:
    outputs: Dict[str, str] = field(default_factory=dict)
    kind = "success"


@dataclass(frozen=True)
class NoChanges:
    outputs: Dict[str, str] = field(default_factory=dict)
    kind = "no_changes"


@dataclass(frozen=True)
class Failure:
    cause: str
    kind = "failure"


DeploymentOutcome = Union[Success, NoChanges, Failure]


def commit_state_for(outcome: DeploymentOutcome) -> str:
    """Map an outcome onto the commit-status taxonomy."""
    if isinstance(outcome, Failure):
        return COMMIT_FAILURE
    return COMMIT_SUCCESS
