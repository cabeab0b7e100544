"""Secret redaction for anything that reaches the logs."""

from typing import Any, Mapping

REDACTED = "[REDACTED]"

# Compared case-insensitively; "apikey" covers apiKey.
SENSITIVE_KEYS = frozenset({"password", "token", "apikey", "api_key", "secret", "key"})


def is_sensitive_key(key: Any) -> bool:
    return isinstance(key, str) and key.lower() in SENSITIVE_KEYS


def redact_arguments(value: Any) -> Any:
    """Return a copy of ``value`` with sensitive mapping entries masked.

    Nested mappings and lists are walked recursively; the input is never
    modified.

    Example:
        >>> redact_arguments({"prompt": "hi", "apiKey": "sk-1"})
        {'prompt': 'hi', 'apiKey': '[REDACTED]'}
    """
    if isinstance(value, Mapping):
        return {
            k: REDACTED if is_sensitive_key(k) else redact_arguments(v)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [redact_arguments(v) for v in value]
    return value
