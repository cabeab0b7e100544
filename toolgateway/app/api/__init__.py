"""API endpoints package for the gateway."""

from toolgateway.app.api.metrics import router as metrics_router
from toolgateway.app.api.tools import router as tools_router

__all__ = [
    "metrics_router",
    "tools_router",
]
