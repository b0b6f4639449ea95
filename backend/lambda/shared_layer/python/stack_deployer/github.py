"""stack_deployer.github — GitHub App authentication and commit status API.

Authenticates as a GitHub App using an RS256 JWT exchanged for an
installation access token, then posts commit statuses via REST:

    POST /repos/{owner}/{repo}/statuses/{ref}
"""

from __future__ import annotations

import json
import logging
import time
import urllib.error
import urllib.request
from typing import Any, Dict, Optional

import jwt

from .aws_clients import _get_secretsmanager
from .config import GITHUB_APP_ID, GITHUB_INSTALLATION_ID, GITHUB_PRIVATE_KEY_SECRET
from .errors import NotificationDeliveryError

logger = logging.getLogger(__name__)

GITHUB_API_BASE = "https://api.github.com"
_API_VERSION = "2022-11-28"
_PRIVATE_KEY_TTL: float = 3600.0  # re-fetch from Secrets Manager every hour
_INSTALLATION_TOKEN_TTL: float = 50 * 60.0  # tokens are valid for 60 minutes


class GithubStatusClient:
    def __init__(
        self,
        app_id: str = GITHUB_APP_ID,
        installation_id: str = GITHUB_INSTALLATION_ID,
        private_key_secret: str = GITHUB_PRIVATE_KEY_SECRET,
        secrets_client: Any = None,
        api_base: str = GITHUB_API_BASE,
    ) -> None:
        self._app_id = app_id
        self._installation_id = installation_id
        self._private_key_secret = private_key_secret
        self._secrets = secrets_client
        self._api_base = api_base.rstrip("/")
        self._private_key: Optional[str] = None
        self._private_key_fetched_at = 0.0
        self._installation_token: Optional[str] = None
        self._installation_token_fetched_at = 0.0

    @property
    def configured(self) -> bool:
        return bool(self._app_id and self._installation_id)

    # -----------------------------------------------------------------------
    # App authentication
    # -----------------------------------------------------------------------

    def _get_private_key(self) -> str:
        """Fetch the GitHub App private key from Secrets Manager (cached)."""
        now = time.time()
        if self._private_key and (now - self._private_key_fetched_at) < _PRIVATE_KEY_TTL:
            return self._private_key
        sm = self._secrets or _get_secretsmanager()
        resp = sm.get_secret_value(SecretId=self._private_key_secret)
        self._private_key = resp["SecretString"]
        self._private_key_fetched_at = now
        return self._private_key

    def _generate_app_jwt(self) -> str:
        """Short-lived RS256 JWT: iat at most 60s in the past, exp under 10 minutes."""
        if not self._app_id:
            raise NotificationDeliveryError("GITHUB_APP_ID environment variable not set")
        now = int(time.time())
        payload = {
            "iat": now - 60,  # allow for clock skew
            "exp": now + (9 * 60),
            "iss": str(self._app_id),
        }
        return jwt.encode(payload, self._get_private_key(), algorithm="RS256")

    def _get_installation_token(self) -> str:
        now = time.time()
        if self._installation_token and (now - self._installation_token_fetched_at) < _INSTALLATION_TOKEN_TTL:
            return self._installation_token
        if not self._installation_id:
            raise NotificationDeliveryError("GITHUB_INSTALLATION_ID environment variable not set")

        url = f"{self._api_base}/app/installations/{self._installation_id}/access_tokens"
        data = self._request("POST", url, bearer=self._generate_app_jwt())
        self._installation_token = data["token"]
        self._installation_token_fetched_at = now
        return self._installation_token

    # -----------------------------------------------------------------------
    # REST helpers
    # -----------------------------------------------------------------------

    def _request(
        self,
        method: str,
        url: str,
        bearer: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        headers = {
            "Accept": "application/vnd.github+json",
            "Authorization": f"Bearer {bearer}",
            "X-GitHub-Api-Version": _API_VERSION,
        }
        body = None
        if payload is not None:
            body = json.dumps(payload).encode("utf-8")
            headers["Content-Type"] = "application/json"

        req = urllib.request.Request(url, method=method, data=body, headers=headers)
        try:
            with urllib.request.urlopen(req, timeout=10) as resp:
                return json.loads(resp.read() or b"{}")
        except urllib.error.HTTPError as exc:
            text = exc.read().decode("utf-8", errors="replace")[:500]
            logger.error("GitHub API %s %s failed: %s %s", method, url, exc.code, text)
            raise NotificationDeliveryError(f"GitHub API error ({exc.code}): {text}") from exc
        except urllib.error.URLError as exc:
            raise NotificationDeliveryError(f"GitHub API unreachable: {exc.reason}") from exc

    def create_status(
        self,
        owner: str,
        repo: str,
        ref: str,
        state: str,
        target_url: str,
        description: str,
        context: str,
    ) -> Dict[str, Any]:
        url = f"{self._api_base}/repos/{owner}/{repo}/statuses/{ref}"
        return self._request(
            "POST",
            url,
            bearer=self._get_installation_token(),
            payload={
                "state": state,
                "target_url": target_url,
                "description": description,
                "context": context,
            },
        )
