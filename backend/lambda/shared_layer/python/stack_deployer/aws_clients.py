"""stack_deployer.aws_clients — Lazy-singleton AWS clients and role-scoped factories.

Base clients are created on first use and cached for the life of the Lambda
container. CloudFormation clients that act on behalf of a deployment request
are built per request from STS credentials for the request's role.
"""

from __future__ import annotations

import datetime as dt
import time
from typing import Any, Dict, Optional, Tuple

import boto3
from botocore.config import Config

from .config import DEPLOY_REGION, ROLE_SESSION_NAME

# ---------------------------------------------------------------------------
# Client configuration
# ---------------------------------------------------------------------------

_STANDARD_CONFIG = Config(
    retries={"max_attempts": 3, "mode": "standard"},
    connect_timeout=5,
    read_timeout=30,
)

_CREDENTIAL_REFRESH_MARGIN_SECONDS = 300

# ---------------------------------------------------------------------------
# Client singletons
# ---------------------------------------------------------------------------

_s3 = None
_sfn = None
_sts = None
_cfn = None
_secretsmanager = None


def _get_s3(region: Optional[str] = None):
    """Get (or create) the S3 client singleton."""
    global _s3
    if _s3 is None:
        _s3 = boto3.client("s3", region_name=region or DEPLOY_REGION, config=_STANDARD_CONFIG)
    return _s3


def _get_sfn(region: Optional[str] = None):
    """Get (or create) the Step Functions client singleton."""
    global _sfn
    if _sfn is None:
        _sfn = boto3.client(
            "stepfunctions",
            region_name=region or DEPLOY_REGION,
            config=Config(retries={"max_attempts": 5, "mode": "standard"}, connect_timeout=5, read_timeout=10),
        )
    return _sfn


def _get_sts(region: Optional[str] = None):
    """Get (or create) the STS client singleton."""
    global _sts
    if _sts is None:
        _sts = boto3.client("sts", region_name=region or DEPLOY_REGION, config=_STANDARD_CONFIG)
    return _sts


def _get_cloudformation(region: Optional[str] = None):
    """Get (or create) the CloudFormation client singleton (Lambda role)."""
    global _cfn
    if _cfn is None:
        _cfn = boto3.client("cloudformation", region_name=region or DEPLOY_REGION, config=_STANDARD_CONFIG)
    return _cfn


def _get_secretsmanager(region: Optional[str] = None):
    """Get (or create) the Secrets Manager client singleton."""
    global _secretsmanager
    if _secretsmanager is None:
        _secretsmanager = boto3.client(
            "secretsmanager", region_name=region or DEPLOY_REGION, config=_STANDARD_CONFIG
        )
    return _secretsmanager


class CloudFormationClientFactory:
    """Builds CloudFormation clients scoped to a deployment role.

    Assumed-role clients are cached per role until shortly before their
    credentials expire, so polling a stack does not call STS every time.
    """

    def __init__(self, region: Optional[str] = None, sts_client: Any = None) -> None:
        self._region = region or DEPLOY_REGION
        self._sts = sts_client
        self._cache: Dict[str, Tuple[Any, float]] = {}

    def create(self, role_arn: Optional[str] = None):
        if not role_arn:
            return _get_cloudformation(self._region)

        cached = self._cache.get(role_arn)
        if cached and cached[1] > time.time():
            return cached[0]

        sts = self._sts or _get_sts(self._region)
        creds = sts.assume_role(RoleArn=role_arn, RoleSessionName=ROLE_SESSION_NAME)["Credentials"]
        client = boto3.client(
            "cloudformation",
            region_name=self._region,
            aws_access_key_id=creds["AccessKeyId"],
            aws_secret_access_key=creds["SecretAccessKey"],
            aws_session_token=creds["SessionToken"],
            config=_STANDARD_CONFIG,
        )
        expiration = creds.get("Expiration")
        if isinstance(expiration, dt.datetime):
            expires_at = expiration.timestamp() - _CREDENTIAL_REFRESH_MARGIN_SECONDS
        else:
            expires_at = time.time() + _CREDENTIAL_REFRESH_MARGIN_SECONDS
        self._cache[role_arn] = (client, expires_at)
        return client
