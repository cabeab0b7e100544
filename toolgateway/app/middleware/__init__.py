"""Middleware package for the gateway."""

from toolgateway.app.middleware.request_id import RequestIdMiddleware, get_request_id

__all__ = ["RequestIdMiddleware", "get_request_id"]
