"""stack_deployer.artifacts — Read files out of zipped build artifacts in S3."""

from __future__ import annotations

import io
import logging
import zipfile
from typing import Any, Optional, Tuple

from botocore.exceptions import ClientError

from .aws_clients import _get_s3
from .errors import ArtifactNotFoundError

logger = logging.getLogger(__name__)

_MISSING_OBJECT_CODES = {"NoSuchKey", "NoSuchBucket", "404", "NotFound"}


def _split_location(location: str) -> Tuple[str, str]:
    """Split ``s3://bucket/key`` (or ``bucket/key``) into bucket and key."""
    path = location.strip()
    if path.startswith("s3://"):
        path = path[len("s3://"):]
    bucket, _, key = path.partition("/")
    if not bucket or not key:
        raise ArtifactNotFoundError(f"Invalid artifact location: {location!r}")
    return bucket, key


class S3ArtifactStore:
    def __init__(self, s3_client: Any = None) -> None:
        self._s3 = s3_client

    def _client(self):
        return self._s3 or _get_s3()

    def get_entry(self, location: str, file_name: str) -> str:
        """Return ``file_name`` from the zip at ``location`` as text."""
        bucket, key = _split_location(location)
        try:
            obj = self._client().get_object(Bucket=bucket, Key=key)
        except ClientError as exc:
            code = str(exc.response.get("Error", {}).get("Code") or "")
            if code in _MISSING_OBJECT_CODES:
                raise ArtifactNotFoundError(f"Artifact not found: s3://{bucket}/{key}") from exc
            raise

        data = obj["Body"].read()
        try:
            with zipfile.ZipFile(io.BytesIO(data)) as zf:
                entry = _find_entry(zf, file_name)
                if entry is None:
                    raise ArtifactNotFoundError(
                        f"Entry '{file_name}' not found in s3://{bucket}/{key}"
                    )
                content = zf.read(entry)
        except zipfile.BadZipFile as exc:
            raise ArtifactNotFoundError(f"Artifact s3://{bucket}/{key} is not a zip archive") from exc

        logger.info("[INFO] Read %s (%d bytes) from s3://%s/%s", file_name, len(content), bucket, key)
        return content.decode("utf-8")


def _strip_dot_slash(name: str) -> str:
    return name[2:] if name.startswith("./") else name


def _find_entry(zf: zipfile.ZipFile, file_name: str) -> Optional[str]:
    wanted = _strip_dot_slash(file_name)
    for name in zf.namelist():
        if _strip_dot_slash(name) == wanted:
            return name
    return None
