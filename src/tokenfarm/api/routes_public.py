# src/tokenfarm/api/routes_public.py
from __future__ import annotations

from fastapi import APIRouter

from tokenfarm.api.routes_public_parts.assets import router as assets_router
from tokenfarm.api.routes_public_parts.dev import router as dev_router
from tokenfarm.api.routes_public_parts.farm import router as farm_router
from tokenfarm.api.routes_public_parts.health import router as health_router
from tokenfarm.api.routes_public_parts.metrics import router as metrics_router

public_router = APIRouter()

# Unversioned health aliases for ops tooling.
public_router.include_router(health_router, prefix="", tags=["health"])

# Versioned API surface
public_router.include_router(health_router, prefix="/v1", tags=["health"])
public_router.include_router(farm_router, prefix="/v1", tags=["farm"])
public_router.include_router(assets_router, prefix="/v1", tags=["assets"])
public_router.include_router(dev_router, prefix="/v1", tags=["dev"])

# Ops
public_router.include_router(metrics_router, prefix="/v1", tags=["metrics"])
