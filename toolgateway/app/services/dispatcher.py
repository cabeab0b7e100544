"""Tool dispatch: admission, caching, retries and result envelopes.

Every invocation goes through the same pipeline::

    shutdown check -> resolve tool -> validate arguments -> rate limit
        -> cache lookup -> execute with retries -> record -> envelope

Failures at any stage are caught here and returned as an error envelope;
nothing raised by a tool escapes to the transport.
"""

import asyncio
import json
import time
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from toolgateway.app.core.cache import TTLCache
from toolgateway.app.core.logging import get_log_context, get_logger
from toolgateway.app.core.security import redact_arguments
from toolgateway.app.exceptions import (
    GatewayException,
    RateLimitExceeded,
    ShuttingDownError,
    UnknownToolError,
    is_retryable,
)
from toolgateway.app.providers.retry import RetryPolicy, retry_call
from toolgateway.app.services.metrics import MetricsTracker
from toolgateway.app.services.rate_limiter import RateLimiter
from toolgateway.app.tools.base import Tool, ToolRegistry

logger = get_logger(__name__)

NO_RESULT = "No result returned"


class TextContent(BaseModel):
    type: Literal["text"] = "text"
    text: str


class CallToolResult(BaseModel):
    """Uniform envelope returned for every invocation."""

    model_config = ConfigDict(populate_by_name=True)

    content: List[TextContent]
    is_error: Optional[bool] = Field(default=None, alias="isError")

    @classmethod
    def text(cls, text: str) -> "CallToolResult":
        return cls(content=[TextContent(text=text)])

    @classmethod
    def error(cls, message: str) -> "CallToolResult":
        return cls(content=[TextContent(text=message)], is_error=True)


class ToolInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    description: str
    input_schema: Dict[str, Any] = Field(alias="inputSchema")


class ListToolsResult(BaseModel):
    tools: List[ToolInfo]


def format_result(result: Any) -> str:
    """Render a tool result as text: strings as-is, everything else as JSON."""
    if isinstance(result, str):
        return result
    if result is None:
        return NO_RESULT
    try:
        return json.dumps(result, indent=2, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return str(result)


def error_type_of(exc: BaseException) -> str:
    if isinstance(exc, GatewayException):
        return exc.error_code
    return type(exc).__name__


class Dispatcher:
    """Owns the tool registry and the admission/orchestration state.

    Args:
        registry: Frozen tool registry
        metrics: Metrics tracker
        limiter: Rate limiter; None disables rate limiting
        cache: Result cache; None disables caching
        retry_policy: Retry policy for tool execution. Defaults to three
            attempts, skipping errors classified as non-retryable.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        metrics: MetricsTracker,
        limiter: Optional[RateLimiter] = None,
        cache: Optional[TTLCache] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.registry = registry
        self.metrics = metrics
        self.limiter = limiter
        self.cache = cache
        self.retry_policy = retry_policy or RetryPolicy(max_attempts=3, retry_if=is_retryable)
        self._shutting_down = False
        self._shutdown_complete = False
        self._in_flight = 0
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def is_shutting_down(self) -> bool:
        return self._shutting_down

    @property
    def in_flight(self) -> int:
        return self._in_flight

    def list_tools(self) -> ListToolsResult:
        return ListToolsResult(
            tools=[
                ToolInfo(name=tool.name, description=tool.description, input_schema=tool.input_schema)
                for tool in self.registry
            ]
        )

    async def call_tool(
        self,
        name: str,
        arguments: Optional[Dict[str, Any]] = None,
        request_id: Optional[str] = None,
    ) -> CallToolResult:
        """Invoke a tool by name and wrap the outcome in an envelope."""
        start = time.perf_counter()
        arguments = arguments or {}
        tool: Optional[Tool] = None
        resource_key: Optional[str] = None

        logger.info(
            f"Executing tool: {name}",
            extra=get_log_context(request_id=request_id, tool=name, arguments=redact_arguments(arguments)),
        )

        try:
            if self._shutting_down:
                raise ShuttingDownError()

            tool = self.registry.get(name)
            if tool is None:
                raise UnknownToolError(name)

            self._enter()
            try:
                self.metrics.increment_tool_usage(name)
                params = tool.parse(arguments)

                admission = tool.admission(params)
                resource_key = admission.resource_key
                if self.limiter is not None:
                    await self.limiter.check_limit(resource_key, admission.token_cost)

                cache_key = tool.cache_key(params) if self.cache is not None else None
                cached = self.cache.get(cache_key) if cache_key is not None else None

                if cached is not None:
                    self.metrics.record_cache_hit()
                    logger.info(
                        "Returning cached result",
                        extra=get_log_context(request_id=request_id, tool=name, resource_key=resource_key),
                    )
                    result = cached
                else:
                    if cache_key is not None:
                        self.metrics.record_cache_miss()
                    result = await retry_call(
                        lambda: tool.execute(params), self.retry_policy, name=name
                    )
                    if cache_key is not None and result is not None:
                        self.cache.set(cache_key, result, tool.cache_ttl)
            finally:
                self._exit()

        except Exception as e:
            duration_ms = (time.perf_counter() - start) * 1000
            message = e.message if isinstance(e, GatewayException) else str(e) or type(e).__name__
            logger.error(
                f"Tool {name} failed: {message}",
                extra=get_log_context(
                    request_id=request_id,
                    tool=name,
                    resource_key=resource_key,
                    duration_ms=round(duration_ms, 2),
                    error_type=error_type_of(e),
                    arguments=redact_arguments(arguments),
                ),
            )
            if tool is not None:
                self.metrics.record_error(name, error_type_of(e))
                if isinstance(e, RateLimitExceeded):
                    self.metrics.record_rate_limit_hit(e.resource_key or resource_key or name)
            return CallToolResult.error(f"Error executing {name}: {message}")

        duration_ms = (time.perf_counter() - start) * 1000
        self.metrics.record_success()
        self.metrics.record_response_time(name, duration_ms)
        logger.info(
            f"Tool {name} executed successfully",
            extra=get_log_context(request_id=request_id, tool=name, duration_ms=round(duration_ms, 2)),
        )
        return CallToolResult.text(format_result(result))

    def _enter(self) -> None:
        self._in_flight += 1
        self._idle.clear()

    def _exit(self) -> None:
        self._in_flight -= 1
        if self._in_flight == 0:
            self._idle.set()

    async def get_limits(self, resource_key: str) -> Dict[str, Any]:
        """Configured limits and remaining points for a resource key."""
        if self.limiter is None or not self.limiter.has_limit(resource_key):
            return {"resource_key": resource_key, "limited": False}

        limit = self.limiter.get_limit(resource_key)
        return {
            "resource_key": resource_key,
            "limited": True,
            "requests_per_minute": limit.requests_per_minute,
            "tokens_per_minute": limit.tokens_per_minute,
            "remaining": await self.limiter.get_remaining(resource_key),
        }

    def begin_shutdown(self) -> None:
        """Reject new invocations from now on."""
        if not self._shutting_down:
            logger.info("Shutdown requested, rejecting new tool invocations")
        self._shutting_down = True

    async def shutdown(self, grace_seconds: float = 2.0) -> None:
        """Drain and tear down.

        Sets the shutdown flag, waits up to ``grace_seconds`` for in-flight
        invocations to finish, then clears the cache and destroys the
        metrics tracker. Calling it again is a no-op.
        """
        if self._shutdown_complete:
            return
        self.begin_shutdown()

        if self._in_flight > 0 and grace_seconds > 0:
            logger.info(f"Waiting up to {grace_seconds}s for {self._in_flight} in-flight invocations")
            try:
                await asyncio.wait_for(self._idle.wait(), timeout=grace_seconds)
            except asyncio.TimeoutError:
                logger.warning(f"Grace period elapsed with {self._in_flight} invocations still running")

        if self.cache is not None:
            self.cache.clear()
        self.metrics.destroy()
        await self.metrics.wait_closed()
        self._shutdown_complete = True
        logger.info("Dispatcher shutdown complete")
