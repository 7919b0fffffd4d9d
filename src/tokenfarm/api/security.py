from __future__ import annotations

import ipaddress
import os
import time
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware


def _truthy(v: str | None) -> bool:
    return (v or "").strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None:
        return int(default)
    try:
        return int(str(raw).strip())
    except Exception:
        return int(default)


def _is_valid_ip(raw: str) -> bool:
    try:
        ipaddress.ip_address(raw)
        return True
    except ValueError:
        return False


def _client_ip(request: Request) -> str:
    """Client IP used as the rate-limit key (never for auth decisions).

    X-Forwarded-For is honoured only with TOKENFARM_TRUST_PROXY_HEADERS=1, and in
    prod only when the immediate peer is listed in TOKENFARM_TRUSTED_PROXY_IPS
    (comma-separated IPs or CIDRs).
    """

    def _trusted_proxy_ok() -> bool:
        raw = (os.environ.get("TOKENFARM_TRUSTED_PROXY_IPS") or "").strip()
        if not raw:
            mode = (os.environ.get("TOKENFARM_MODE") or "prod").strip().lower()
            return mode != "prod"

        peer = request.client.host if request.client else ""
        if not peer or not _is_valid_ip(peer):
            return False
        peer_ip = ipaddress.ip_address(peer)

        for p in [p.strip() for p in raw.split(",") if p.strip()][:64]:
            try:
                if "/" in p:
                    if peer_ip in ipaddress.ip_network(p, strict=False):
                        return True
                elif peer_ip == ipaddress.ip_address(p):
                    return True
            except ValueError:
                continue
        return False

    if _truthy(os.environ.get("TOKENFARM_TRUST_PROXY_HEADERS")) and _trusted_proxy_ok():
        xff = request.headers.get("x-forwarded-for")
        if xff:
            ip = xff.split(",")[0].strip()
            if ip and _is_valid_ip(ip):
                return ip

    client = request.client
    if client and client.host:
        host = str(client.host)
        return host if _is_valid_ip(host) else "unknown"
    return "unknown"


class RequestSizeLimitMiddleware(BaseHTTPMiddleware):
    """Fail-fast request size limiter.

    Configure:
      TOKENFARM_MAX_REQUEST_BYTES (default: 16_384; farm bodies are tiny)
      TOKENFARM_SIZE_LIMIT_DISABLE=1 to disable (only when enforced at the edge)
    """

    def __init__(
        self,
        app,
        *,
        max_bytes: Optional[int] = None,
        exempt_prefixes: Tuple[str, ...] = ("/docs", "/openapi.json", "/health"),
    ):
        super().__init__(app)
        self._enabled = not _truthy(os.environ.get("TOKENFARM_SIZE_LIMIT_DISABLE"))
        self._max_bytes = int(max_bytes) if max_bytes is not None else _env_int("TOKENFARM_MAX_REQUEST_BYTES", 16_384)
        self._exempt_prefixes = exempt_prefixes

    def _too_large(self) -> JSONResponse:
        return JSONResponse(
            status_code=413,
            content={"ok": False, "error": {"code": "request_too_large", "message": "Request body too large"}},
        )

    async def dispatch(self, request: Request, call_next):
        if not self._enabled:
            return await call_next(request)

        path = request.url.path or ""
        for ex in self._exempt_prefixes:
            if path.startswith(ex):
                return await call_next(request)

        cl = request.headers.get("content-length")
        if cl:
            try:
                if int(cl) > self._max_bytes:
                    return self._too_large()
            except ValueError:
                # Malformed header; fall back to the buffered body cap.
                pass

        if (request.method or "").upper() in {"POST", "PUT", "PATCH"}:
            body = await request.body()
            if body and len(body) > self._max_bytes:
                return self._too_large()

        return await call_next(request)


@dataclass(frozen=True)
class TokenBucket:
    rate_per_sec: float
    burst: float


# (method, path prefix, bucket). First match wins; "" matches any path.
# Key registration and dev routes draw from their own buckets, never "write".
BUCKET_RULES: Tuple[Tuple[str, str, str], ...] = (
    ("POST", "/v1/accounts/keys", "register"),
    ("POST", "/v1/dev/", "dev"),
    ("POST", "", "write"),
    ("*", "", "read"),
)

_BUCKET_DEFAULTS: Dict[str, Tuple[int, int]] = {
    "write": (4, 20),
    "read": (12, 40),
    "register": (1, 5),
    "dev": (2, 10),
}


def bucket_for(method: str, path: str) -> str:
    m = (method or "").upper()
    for rule_method, prefix, name in BUCKET_RULES:
        if rule_method not in {"*", m}:
            continue
        if path.startswith(prefix):
            return name
    return "read"


def _env_bucket(name: str) -> TokenBucket:
    rate, burst = _BUCKET_DEFAULTS[name]
    env = name.upper()
    return TokenBucket(
        rate_per_sec=float(_env_int(f"TOKENFARM_RL_{env}_PER_SEC", rate)),
        burst=float(_env_int(f"TOKENFARM_RL_{env}_BURST", burst)),
    )


class RateLimitMiddleware(BaseHTTPMiddleware):
    """In-memory token bucket rate limiter keyed by client IP and bucket.

    Buckets come from BUCKET_RULES; each is tuned with
    TOKENFARM_RL_<BUCKET>_PER_SEC / TOKENFARM_RL_<BUCKET>_BURST.
    Best-effort for a single process; enforce at the edge for replicas.
    Entries are evicted by TTL (TOKENFARM_RL_TTL_S) and a size cap
    (TOKENFARM_RL_MAX_KEYS).
    """

    def __init__(
        self,
        app,
        *,
        buckets: Optional[Dict[str, TokenBucket]] = None,
        ttl_s: int | None = None,
        max_keys: int | None = None,
        exempt_prefixes: Tuple[str, ...] = ("/docs", "/openapi.json", "/health"),
    ):
        super().__init__(app)
        # "<ip>:<bucket>" -> (tokens_remaining, last_refill_ts)
        self._state: Dict[str, Tuple[float, float]] = {}
        self._buckets = {name: _env_bucket(name) for name in _BUCKET_DEFAULTS}
        self._buckets.update(buckets or {})
        self._exempt_prefixes = exempt_prefixes
        self._ttl_s = int(ttl_s) if ttl_s is not None else _env_int("TOKENFARM_RL_TTL_S", 900)
        self._max_keys = int(max_keys) if max_keys is not None else _env_int("TOKENFARM_RL_MAX_KEYS", 20_000)

    def _rate_limited(self, bucket: str) -> JSONResponse:
        return JSONResponse(
            status_code=429,
            content={
                "ok": False,
                "error": {"code": "rate_limited", "message": "Too many requests", "details": {"bucket": bucket}},
            },
        )

    def _prune(self, now: float) -> None:
        if self._ttl_s > 0:
            cutoff = now - float(self._ttl_s)
            for k in [k for k, (_, last) in self._state.items() if last < cutoff]:
                self._state.pop(k, None)

        if self._max_keys > 0 and len(self._state) > self._max_keys:
            oldest = sorted(self._state.items(), key=lambda kv: kv[1][1])
            for k, _ in oldest[: len(oldest) - self._max_keys]:
                self._state.pop(k, None)

    async def dispatch(self, request: Request, call_next):
        path = request.url.path or ""
        for ex in self._exempt_prefixes:
            if path.startswith(ex):
                return await call_next(request)

        name = bucket_for(request.method, path)
        bucket = self._buckets[name]
        key = f"{_client_ip(request)}:{name}"
        now = time.time()

        tokens, last = self._state.get(key, (bucket.burst, now))
        tokens = min(bucket.burst, tokens + (now - last) * bucket.rate_per_sec)
        if tokens < 1.0:
            self._state[key] = (tokens, now)
            return self._rate_limited(name)

        self._state[key] = (tokens - 1.0, now)
        if self._max_keys > 0 and len(self._state) > self._max_keys:
            self._prune(now)

        return await call_next(request)
