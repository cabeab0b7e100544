import asyncio
import logging
import os
import sys
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Callable, Dict, Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from toolgateway.app.api.metrics import router as metrics_router
from toolgateway.app.api.tools import router as tools_router
from toolgateway.app.core.cache import TTLCache
from toolgateway.app.core.config import MissingCredentialError, Settings, settings
from toolgateway.app.core.http_client import init_http_client
from toolgateway.app.core.logging import get_logger, setup_logging
from toolgateway.app.core.rate_limits import load_rate_limits
from toolgateway.app.exceptions import is_retryable
from toolgateway.app.middleware.request_id import RequestIdMiddleware
from toolgateway.app.providers.groq import GroqProvider
from toolgateway.app.providers.retry import RetryPolicy
from toolgateway.app.services.dispatcher import Dispatcher
from toolgateway.app.services.metrics import Exporter, MetricsTracker, build_http_exporter
from toolgateway.app.services.rate_limiter import RateLimiter
from toolgateway.app.tools import build_registry

logger = get_logger(__name__)


def build_dispatcher(
    app_settings: Settings,
    provider: GroqProvider,
    exporter: Optional[Exporter] = None,
) -> Dispatcher:
    """Wire the tool registry and admission components from settings."""
    metrics = MetricsTracker(
        snapshot_interval=app_settings.metrics_snapshot_interval,
        retention_days=app_settings.metrics_retention_days,
        exporter=exporter,
        critical_error_rate=app_settings.health_critical_error_rate,
        warning_error_rate=app_settings.health_warning_error_rate,
        critical_response_ms=app_settings.health_critical_response_ms,
        warning_response_ms=app_settings.health_warning_response_ms,
    )

    limiter = None
    if app_settings.rate_limit_enabled:
        limiter = RateLimiter(
            load_rate_limits(),
            window_seconds=app_settings.rate_limit_window_seconds,
            enforce_zero_token_capacity=app_settings.enforce_zero_token_capacity,
        )

    cache = TTLCache(max_size=app_settings.cache_max_size) if app_settings.cache_enabled else None

    retry_policy = RetryPolicy(
        max_attempts=app_settings.retry_max_attempts,
        initial_delay=app_settings.retry_initial_delay,
        max_delay=app_settings.retry_max_delay,
        backoff_factor=app_settings.retry_backoff_factor,
        retry_if=is_retryable,
    )

    return Dispatcher(
        registry=build_registry(provider, metrics, app_settings),
        metrics=metrics,
        limiter=limiter,
        cache=cache,
        retry_policy=retry_policy,
    )


def _terminate(code: int = 1) -> None:
    logging.shutdown()
    os._exit(code)


def handle_uncaught_exception(exc_type, exc_value, exc_tb) -> None:
    """``sys.excepthook``: log the fault; the interpreter then exits with 1."""
    if issubclass(exc_type, KeyboardInterrupt):
        sys.__excepthook__(exc_type, exc_value, exc_tb)
        return
    logger.critical("Uncaught exception", exc_info=(exc_type, exc_value, exc_tb))


def make_loop_exception_handler(
    exit_func: Callable[[int], None] = _terminate,
) -> Callable[[asyncio.AbstractEventLoop, Dict[str, Any]], None]:
    """Create an event loop handler that logs unhandled task errors and exits."""

    def handler(loop: asyncio.AbstractEventLoop, context: Dict[str, Any]) -> None:
        message = context.get("message", "unknown")
        exc = context.get("exception")
        if exc is None:
            logger.error(f"Event loop error: {message}")
            return
        logger.critical(
            f"Unhandled error in event loop: {message}",
            exc_info=(type(exc), exc, exc.__traceback__),
        )
        exit_func(1)

    return handler


def create_app(
    app_settings: Optional[Settings] = None,
    provider: Optional[GroqProvider] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        app_settings: Settings to use (defaults to the global settings)
        provider: Upstream provider to use instead of building one from settings

    Returns:
        Configured FastAPI application instance
    """
    cfg = app_settings or settings
    setup_logging(cfg)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Build the dispatcher on startup; drain and tear down on shutdown."""
        cfg.require_credentials()

        async with init_http_client(cfg) as http_client:
            upstream = provider or GroqProvider(
                api_key=cfg.groq_api_key,
                base_url=cfg.groq_base_url,
                http_client=http_client,
                timeout=cfg.upstream_timeout,
            )

            exporter = None
            if cfg.metrics_export and cfg.metrics_endpoint:
                exporter = build_http_exporter(http_client, cfg.metrics_endpoint)

            dispatcher = build_dispatcher(cfg, upstream, exporter)
            app.state.dispatcher = dispatcher
            app.state.provider = upstream

            loop = asyncio.get_running_loop()
            previous_handler = loop.get_exception_handler()
            loop.set_exception_handler(make_loop_exception_handler())
            dispatcher.metrics.start()

            logger.info(
                "Application startup complete",
                extra={
                    "tools": [tool.name for tool in dispatcher.registry],
                    "rate_limiting": dispatcher.limiter is not None,
                    "caching": dispatcher.cache is not None,
                    "metrics_export": exporter is not None,
                },
            )

            try:
                yield
            finally:
                await dispatcher.shutdown(cfg.shutdown_grace_seconds)
                loop.set_exception_handler(previous_handler)
                logger.info("Application shutdown complete")

    app = FastAPI(
        title="Tool Gateway",
        description="Tool-dispatch gateway for the Groq API with rate limiting, caching and retries",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.cors_origins,
        allow_credentials="*" not in cfg.cors_origins,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
        max_age=600,
    )
    app.add_middleware(RequestIdMiddleware)

    app.include_router(tools_router)
    app.include_router(metrics_router)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Log unhandled exceptions server-side; never return a traceback."""
        request_id = getattr(request.state, "request_id", "unknown")
        logger.exception(
            f"Unhandled exception [request_id={request_id}]",
            extra={
                "request_id": request_id,
                "exception_type": type(exc).__name__,
            },
        )
        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_error",
                "message": "Internal server error",
                "request_id": request_id,
            },
        )

    return app


def run() -> None:
    """Console entry point: validate configuration and serve with uvicorn."""
    sys.excepthook = handle_uncaught_exception
    setup_logging(settings)

    try:
        settings.require_credentials()
    except MissingCredentialError as e:
        logger.critical(str(e))
        sys.exit(1)

    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_config=None,
    )


# Create the application instance
app = create_app()
