"""Shared HTTP client management for connection pooling.

One ``httpx.AsyncClient`` is opened during application startup and handed
to the upstream SDK client and the metrics exporter, so every outbound call
shares the same pool and timeouts.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import httpx

from toolgateway.app.core.config import Settings, settings


def build_timeout(app_settings: Optional[Settings] = None) -> httpx.Timeout:
    """Granular timeouts; read/write use the upstream timeout."""
    cfg = app_settings or settings
    return httpx.Timeout(
        connect=cfg.httpx_connect_timeout,
        read=cfg.upstream_timeout,
        write=cfg.upstream_timeout,
        pool=cfg.httpx_pool_timeout,
    )


def build_limits(app_settings: Optional[Settings] = None) -> httpx.Limits:
    cfg = app_settings or settings
    return httpx.Limits(
        max_connections=cfg.httpx_max_connections,
        max_keepalive_connections=cfg.httpx_max_keepalive_connections,
        keepalive_expiry=cfg.httpx_keepalive_expiry,
    )


@asynccontextmanager
async def init_http_client(
    app_settings: Optional[Settings] = None,
) -> AsyncGenerator[httpx.AsyncClient, None]:
    """Open the shared HTTP client for the lifetime of the context.

    Used in the FastAPI lifespan:

        async with init_http_client(app_settings) as client:
            provider = GroqProvider(api_key, http_client=client)
            yield
    """
    client = httpx.AsyncClient(
        timeout=build_timeout(app_settings),
        limits=build_limits(app_settings),
    )
    try:
        yield client
    finally:
        await client.aclose()
