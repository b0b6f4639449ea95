"""stack_deployer.errors — Exception taxonomy and boto error classification.

Every AWS error that reaches the deployer is translated into this hierarchy
by ``classify_client_error`` so callers branch on type, never on message text.
"""

from __future__ import annotations

from typing import Optional

from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionError as BotoConnectionError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)


class StackDeployerError(Exception):
    """Base class for all deployer errors."""

    code = "deployer_error"


class RequestParseError(StackDeployerError):
    code = "request_invalid"


class ArtifactNotFoundError(StackDeployerError):
    code = "artifact_not_found"


class ConfigParseError(StackDeployerError):
    code = "config_invalid"


class ControlPlaneError(StackDeployerError):
    code = "control_plane_error"

    def __init__(self, message: str, aws_code: Optional[str] = None) -> None:
        super().__init__(message)
        self.aws_code = aws_code


class TransientControlPlaneError(ControlPlaneError):
    code = "transient"


class ConcurrentModificationError(TransientControlPlaneError):
    code = "concurrent_modification"


class PermanentControlPlaneError(ControlPlaneError):
    code = "permanent"


class AccessError(PermanentControlPlaneError):
    code = "access_denied"


class StackNotFoundError(ControlPlaneError):
    code = "stack_not_found"


class DeploymentTimeoutError(ControlPlaneError):
    code = "timeout"


class NotificationDeliveryError(StackDeployerError):
    code = "notification_undelivered"


TransientError = TransientControlPlaneError

_THROTTLING_CODES = {
    "Throttling",
    "ThrottlingException",
    "RequestLimitExceeded",
    "TooManyRequestsException",
    "ServiceUnavailable",
    "InternalFailure",
    "RequestTimeout",
}
_ACCESS_CODES = {
    "AccessDenied",
    "AccessDeniedException",
    "UnauthorizedOperation",
    "ExpiredToken",
    "ExpiredTokenException",
    "InvalidClientTokenId",
}
_NETWORK_ERRORS = (
    BotoConnectionError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)


def _client_error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code") or "")


def _client_error_message(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Message") or exc)


def is_no_updates_error(exc: BaseException) -> bool:
    """True when CloudFormation rejected an update because nothing changed."""
    if not isinstance(exc, ClientError):
        return False
    return (
        _client_error_code(exc) == "ValidationError"
        and "no updates are to be performed" in _client_error_message(exc).lower()
    )


def is_token_reuse_error(exc: BaseException) -> bool:
    return isinstance(exc, ClientError) and _client_error_code(exc) == "TokenAlreadyExistsException"


def classify_client_error(exc: Exception) -> StackDeployerError:
    """Translate a boto exception into the deployer taxonomy."""
    if isinstance(exc, StackDeployerError):
        return exc
    if isinstance(exc, ClientError):
        code = _client_error_code(exc)
        message = _client_error_message(exc)
        lowered = message.lower()
        if code in _THROTTLING_CODES:
            return TransientControlPlaneError(message, aws_code=code)
        if code in _ACCESS_CODES:
            return AccessError(message, aws_code=code)
        if code == "ValidationError":
            if "does not exist" in lowered:
                return StackNotFoundError(message, aws_code=code)
            if "_in_progress state" in lowered:
                return ConcurrentModificationError(message, aws_code=code)
        return PermanentControlPlaneError(message, aws_code=code)
    if isinstance(exc, _NETWORK_ERRORS):
        return TransientControlPlaneError(str(exc), aws_code=type(exc).__name__)
    if isinstance(exc, BotoCoreError):
        return PermanentControlPlaneError(str(exc), aws_code=type(exc).__name__)
    return PermanentControlPlaneError(str(exc))
