# src/tokenfarm/api/structured_logging.py
from __future__ import annotations

import logging
import os
import time
import uuid
from typing import Any, Dict, Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from tokenfarm.runtime.events import log_event

Json = Dict[str, Any]


def _truthy(v: str | None) -> bool:
    if v is None:
        return False
    return v.strip().lower() in {"1", "true", "yes", "y", "on"}


def configure_structured_logging(level_name: Optional[str] = None) -> None:
    """Configure stdlib logging for JSONL output (stdout).

    - Level from the argument, else TOKENFARM_LOG_LEVEL (default INFO).
    - Safe to call multiple times.
    """
    raw = level_name or os.environ.get("TOKENFARM_LOG_LEVEL") or "INFO"
    level = getattr(logging, raw.strip().upper(), logging.INFO)

    root = logging.getLogger()
    if getattr(root, "_tokenfarm_configured", False):  # type: ignore[attr-defined]
        root.setLevel(level)
        return

    handler = logging.StreamHandler()
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(message)s"))

    root.handlers = [handler]
    root.setLevel(level)
    setattr(root, "_tokenfarm_configured", True)  # type: ignore[attr-defined]


# Path prefix -> API surface, first match wins.
_SURFACES = (
    ("/v1/dev/", "dev"),
    ("/v1/farm/", "farm"),
    ("/v1/stake-token/", "stake_token"),
    ("/v1/accounts/", "accounts"),
    ("/v1/metrics", "ops"),
    ("/v1/health", "ops"),
    ("/health", "ops"),
)


def request_surface(path: str) -> str:
    for prefix, surface in _SURFACES:
        if path.startswith(prefix):
            return surface
    return "other"


class RequestLogMiddleware(BaseHTTPMiddleware):
    """One JSONL `http_request` line per request.

    Signed writes also carry the farm op, the signing account and the
    authentication outcome, as recorded on request.state by the route.

    Controls:
      - TOKENFARM_LOG_REQUESTS=0 to disable (default on)
      - TOKENFARM_LOG_REQUEST_HEADERS=1 to include a small header subset
    """

    def __init__(self, app) -> None:
        super().__init__(app)
        raw = (os.environ.get("TOKENFARM_LOG_REQUESTS") or "1").strip().lower()
        self._enabled = raw not in {"0", "false", "no", "n", "off"}
        self._log_headers = _truthy(os.environ.get("TOKENFARM_LOG_REQUEST_HEADERS"))
        self._logger = logging.getLogger("tokenfarm.http")

    def _header_subset(self, request: Request) -> Json:
        if not self._log_headers:
            return {}
        out: Json = {}
        for k in ["user-agent", "content-type", "content-length", "x-forwarded-for"]:
            v = request.headers.get(k)
            if v:
                out[k] = v
        return out

    async def dispatch(self, request: Request, call_next):
        if not self._enabled:
            return await call_next(request)

        started = time.monotonic()
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
        request.state.request_id = request_id

        status = 500
        err: Optional[str] = None
        response: Optional[Response] = None

        try:
            response = await call_next(request)
            status = int(response.status_code)
            response.headers.setdefault("x-request-id", request_id)
            return response
        except Exception as e:
            err = str(e)
            raise
        finally:
            path = str(request.url.path or "")
            state = request.state
            log_event(
                self._logger,
                "http_request",
                request_id=request_id,
                method=request.method,
                path=path,
                surface=request_surface(path),
                op=getattr(state, "farm_op", None),
                signer=getattr(state, "signer", None),
                auth=getattr(state, "auth", None),
                status=status,
                duration_ms=int((time.monotonic() - started) * 1000),
                client=str(request.client.host) if request.client else "",
                headers=self._header_subset(request),
                error=err,
            )
