"""Services package for the gateway.

This package provides:
- Per-resource rate limiting (RateLimiter)
- Metrics and health classification (MetricsTracker)
- Tool dispatch (toolgateway.app.services.dispatcher)
"""

from toolgateway.app.services.metrics import HealthStatus, MetricsSnapshot, MetricsTracker
from toolgateway.app.services.rate_limiter import RateLimiter

__all__ = [
    "HealthStatus",
    "MetricsSnapshot",
    "MetricsTracker",
    "RateLimiter",
]
