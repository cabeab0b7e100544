"""Core utilities for the gateway application."""

from toolgateway.app.core.cache import TTLCache, make_cache_key
from toolgateway.app.core.config import Settings, settings
from toolgateway.app.core.logging import get_logger, setup_logging
from toolgateway.app.core.rate_limits import RATE_LIMITS, RateLimit, load_rate_limits
from toolgateway.app.core.security import redact_arguments
from toolgateway.app.core.tokenizer import count_message_tokens, count_tokens

__all__ = [
    "TTLCache",
    "make_cache_key",
    "Settings",
    "settings",
    "get_logger",
    "setup_logging",
    "RATE_LIMITS",
    "RateLimit",
    "load_rate_limits",
    "redact_arguments",
    "count_tokens",
    "count_message_tokens",
]
