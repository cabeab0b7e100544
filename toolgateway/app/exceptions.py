"""Custom exceptions for the gateway application."""

from typing import Optional

# Upstream failures worth retrying, by HTTP status and by error code.
RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})
RETRYABLE_ERROR_CODES = frozenset({
    "rate_limit_exceeded",
    "server_error",
    "timeout",
    "connection_error",
})


class GatewayException(Exception):
    """Base class for gateway exceptions with HTTP status code.

    All custom exceptions should inherit from this class and define
    their specific status_code, error_code and retryable flag for consistent
    response handling.
    """
    status_code: int = 500
    error_code: str = "internal_error"
    retryable: bool = False

    def __init__(self, message: str = "Gateway error"):
        self.message = message
        super().__init__(message)


class ValidationError(GatewayException):
    """Raised when tool arguments do not match the tool's input schema.

    Maps to HTTP 400 Bad Request.
    """
    status_code = 400
    error_code = "validation_error"

    def __init__(self, message: str = "Request validation failed", errors: Optional[list] = None):
        self.errors = errors or []
        super().__init__(message)


class RateLimitExceeded(GatewayException):
    """Raised when a resource's request or token budget is exhausted.

    Carries the number of seconds until the exhausted window resets.
    Maps to HTTP 429 Too Many Requests.
    """
    status_code = 429
    error_code = "rate_limit_exceeded"

    def __init__(self, retry_after: int, resource_key: Optional[str] = None, dimension: str = "requests"):
        self.retry_after = retry_after
        self.resource_key = resource_key
        self.dimension = dimension
        super().__init__(f"Rate limit exceeded. Retry in {retry_after} seconds.")


class UpstreamError(GatewayException):
    """Raised when the upstream inference API fails.

    Retryable when the status is one of RETRYABLE_STATUS_CODES or the error
    code is one of RETRYABLE_ERROR_CODES; fatal for the invocation otherwise.
    Maps to HTTP 502 Bad Gateway.
    """
    status_code = 502
    error_code = "upstream_error"

    def __init__(self, message: str, status: Optional[int] = None, code: Optional[str] = None):
        self.status = status
        self.code = code
        self.retryable = status in RETRYABLE_STATUS_CODES or code in RETRYABLE_ERROR_CODES
        super().__init__(message)


class UnknownToolError(GatewayException):
    """Raised when an invocation names a tool that is not registered.

    Maps to HTTP 404 Not Found.
    """
    status_code = 404
    error_code = "unknown_tool"

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unknown tool: {name}")


class ShuttingDownError(GatewayException):
    """Raised for invocations received while the server is draining.

    Transient: the caller should retry later or against another instance.
    Maps to HTTP 503 Service Unavailable.
    """
    status_code = 503
    error_code = "shutting_down"
    retryable = True

    def __init__(self, message: str = "Server is shutting down"):
        super().__init__(message)


def is_retryable(exc: BaseException) -> bool:
    """Decide whether a failed tool execution should be attempted again.

    Gateway exceptions carry their own classification; anything else
    (an unexpected error inside a tool) is retried.
    """
    if isinstance(exc, GatewayException):
        return exc.retryable
    return True
