"""Request ID middleware.

Adds a request ID to each incoming request so that a tool invocation can be
followed through the logs. The ID is taken from the ``X-Request-ID`` header
when present, generated otherwise, and echoed back on the response.
"""

import uuid

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint


class RequestIdMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, header_name: str = "X-Request-ID"):
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get(self.header_name) or str(uuid.uuid4())
        request.state.request_id = request_id

        response = await call_next(request)
        response.headers[self.header_name] = request_id
        return response


def get_request_id(request: Request) -> str:
    """Get the request ID from request state ("unknown" outside the middleware)."""
    return getattr(request.state, "request_id", "unknown")
