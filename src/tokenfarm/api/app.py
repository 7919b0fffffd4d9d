from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import List

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from tokenfarm.api.errors import ApiError
from tokenfarm.api.routes_public import public_router
from tokenfarm.api.security import RateLimitMiddleware, RequestSizeLimitMiddleware
from tokenfarm.api.structured_logging import RequestLogMiddleware, configure_structured_logging
from tokenfarm.runtime.errors import AssetError, FarmError
from tokenfarm.runtime.events import log_event
from tokenfarm.runtime.executor import ExecutorError
from tokenfarm.runtime.executor_boot import build_executor as _build_executor

log = logging.getLogger("tokenfarm.api")


def build_executor():
    """Build a FarmExecutor for API runtime.

    This wrapper exists so tests can monkeypatch `tokenfarm.api.app.build_executor`
    without reaching into runtime modules.
    """
    return _build_executor()


def _parse_cors_origins() -> List[str]:
    """Parse CORS origins with production-safe defaults.

    Policy:
      - If TOKENFARM_CORS_ORIGINS is unset/empty -> CORS disabled (fail-closed)
      - Wildcard "*" is rejected in TOKENFARM_MODE=prod
    """
    raw = os.environ.get("TOKENFARM_CORS_ORIGINS", "").strip()
    mode = os.environ.get("TOKENFARM_MODE", "prod").strip().lower()

    if not raw:
        return []

    origins = [o.strip() for o in raw.split(",") if o.strip()]

    if "*" in origins:
        if mode == "prod":
            raise RuntimeError(
                "Unsafe CORS configuration: wildcard '*' not allowed in production. "
                "Set explicit origins in TOKENFARM_CORS_ORIGINS."
            )
        return ["*"]

    return origins


def _install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ApiError)
    async def _api_error(_request: Request, exc: ApiError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=exc.to_json())

    @app.exception_handler(FarmError)
    async def _farm_error(_request: Request, exc: FarmError) -> JSONResponse:
        err = ApiError.from_farm_error(exc)
        return JSONResponse(status_code=err.status_code, content=err.to_json())

    @app.exception_handler(AssetError)
    async def _asset_error(_request: Request, exc: AssetError) -> JSONResponse:
        err = ApiError.from_farm_error(exc)
        return JSONResponse(status_code=err.status_code, content=err.to_json())

    @app.exception_handler(ExecutorError)
    async def _executor_error(_request: Request, exc: ExecutorError) -> JSONResponse:
        log_event(log, "executor_error", error=str(exc))
        err = ApiError.conflict("executor_error", str(exc))
        return JSONResponse(status_code=err.status_code, content=err.to_json())


def create_app(*, boot_runtime: bool = True) -> FastAPI:
    """Create the FastAPI application.

    boot_runtime:
      - True (default): build the farm executor and attach it to app.state
      - False: keep lightweight for unit tests / import-time validation
    """
    mode = os.environ.get("TOKENFARM_MODE", "prod").strip().lower()
    configure_structured_logging()

    @asynccontextmanager
    async def _lifespan(app: FastAPI):
        ex = getattr(app.state, "executor", None)
        log_event(
            log,
            "api_started",
            mode=mode,
            chain_id=getattr(ex, "chain_id", None),
        )
        yield
        log_event(log, "api_stopped", mode=mode)

    # Disable docs in production.
    if mode == "prod":
        app = FastAPI(
            title="TokenFarm API",
            docs_url=None,
            redoc_url=None,
            openapi_url=None,
            lifespan=_lifespan,
        )
    else:
        app = FastAPI(title="TokenFarm API", lifespan=_lifespan)

    if boot_runtime:
        app.state.executor = build_executor()
    else:
        app.state.executor = None

    _install_error_handlers(app)

    # --- Middleware ---
    # Added last runs first: size limit, then rate limit, then request logging.
    app.add_middleware(RequestLogMiddleware)
    app.add_middleware(RateLimitMiddleware)
    app.add_middleware(RequestSizeLimitMiddleware)

    cors_origins = _parse_cors_origins()
    if cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=cors_origins,
            allow_credentials=True,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["Authorization", "Content-Type"],
        )

    # --- Routers ---
    app.include_router(public_router)

    return app
