"""stack_deployer.observability — Structured log lines for deployment phases.

Each phase emits one ``[OBSERVABILITY] {json}`` line alongside the usual
bracket-tagged log messages. Task tokens are reduced to a short fingerprint.
"""

from __future__ import annotations

import datetime as dt
import hashlib
import json
import logging
import time
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


def _now_z() -> str:
    """Current UTC timestamp in ISO 8601 format with Z suffix."""
    return dt.datetime.now(dt.timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _elapsed_ms(started: float) -> int:
    return int(max(0.0, time.monotonic() - started) * 1000)


def _token_fingerprint(token: Optional[str]) -> str:
    if not token:
        return ""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()[:12]


def _emit_structured_observability(
    *,
    component: str,
    event: str,
    stack_name: Optional[str] = None,
    request_token: Optional[str] = None,
    outcome: Optional[str] = None,
    latency_ms: Optional[int] = None,
    error_code: Optional[str] = None,
) -> None:
    payload: Dict[str, Any] = {
        "timestamp": _now_z(),
        "component": component,
        "event": event,
        "stack_name": str(stack_name or ""),
        "request_token": _token_fingerprint(request_token),
        "outcome": str(outcome or ""),
        "latency_ms": int(max(0, latency_ms or 0)),
        "error_code": str(error_code or ""),
    }
    logger.info("[OBSERVABILITY] %s", json.dumps(payload, sort_keys=True, default=str))
