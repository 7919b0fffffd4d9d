from __future__ import annotations

from fastapi import APIRouter, Request, Response

from tokenfarm.runtime.metrics import format_prometheus, metrics_enabled

router = APIRouter()


@router.get("/metrics")
def metrics(request: Request) -> Response:
    """Farm metrics in Prometheus text format (TOKENFARM_METRICS_ENABLED=1).

    Farm gauges (stake, stakers, rate, block) are resampled on every scrape so
    the wall-clock block is current between transactions.
    """
    if not metrics_enabled():
        return Response(status_code=404, content="not_found\n", media_type="text/plain")
    ex = getattr(request.app.state, "executor", None)
    if ex is not None:
        ex.refresh_gauges()
    return Response(content=format_prometheus(), media_type="text/plain; version=0.0.4")
