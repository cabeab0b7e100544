"""Upstream providers package.

This package provides:
- The Groq API client (GroqProvider)
- Retry mechanism (RetryPolicy, retry_call, with_retry)
"""

from toolgateway.app.providers.groq import GroqProvider
from toolgateway.app.providers.retry import RetryPolicy, retry_call, with_retry

__all__ = [
    "GroqProvider",
    "RetryPolicy",
    "retry_call",
    "with_retry",
]
