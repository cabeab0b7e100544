"""Health, statistics and Prometheus endpoints."""

from typing import Any, Dict

from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse

from toolgateway.app.api.deps import get_dispatcher
from toolgateway.app.services.dispatcher import Dispatcher

router = APIRouter(tags=["metrics"])


@router.get("/health")
async def health(
    request: Request,
    upstream: bool = False,
    dispatcher: Dispatcher = Depends(get_dispatcher),
) -> Dict[str, Any]:
    """Health classification from error rate and latency.

    With ``?upstream=true`` the upstream API is also checked.
    """
    status = dispatcher.metrics.get_health_status()
    body: Dict[str, Any] = {
        "status": status.status,
        "details": status.details,
        "shutting_down": dispatcher.is_shutting_down,
    }
    if upstream:
        provider = getattr(request.app.state, "provider", None)
        body["upstream"] = {
            "reachable": bool(provider is not None and await provider.health_check()),
        }
    return body


@router.get("/stats")
async def stats(dispatcher: Dispatcher = Depends(get_dispatcher)) -> Dict[str, Any]:
    """Full metrics snapshot plus live gateway state."""
    return {
        "metrics": dispatcher.metrics.get_metrics().to_dict(),
        "uptime_seconds": round(dispatcher.metrics.uptime_seconds(), 2),
        "in_flight": dispatcher.in_flight,
        "cache_entries": len(dispatcher.cache) if dispatcher.cache is not None else 0,
        "tools": [tool.name for tool in dispatcher.registry],
    }


@router.get("/metrics", response_class=PlainTextResponse)
async def prometheus_metrics(dispatcher: Dispatcher = Depends(get_dispatcher)) -> PlainTextResponse:
    """Metrics in Prometheus text exposition format."""
    return PlainTextResponse(
        content=dispatcher.metrics.get_prometheus_metrics(),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
