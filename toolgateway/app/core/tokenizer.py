"""Token counting utility using tiktoken.

Groq models do not publish tiktoken encodings, so counts are an estimate
made with the ``cl100k_base`` encoding. They are used to charge the
tokens-per-minute dimension before a request is sent upstream.
"""

from typing import Any, Dict, List, Optional

import tiktoken

DEFAULT_ENCODING = "cl100k_base"

# Per-message framing overhead of chat formats
TOKENS_PER_MESSAGE = 3
TOKENS_PER_REPLY = 3

_encoding_cache: Dict[str, Any] = {}


def get_encoding(model: Optional[str] = None) -> Any:
    """Get a tiktoken encoding, falling back to the default for unknown models."""
    cache_key = model or DEFAULT_ENCODING
    if cache_key in _encoding_cache:
        return _encoding_cache[cache_key]

    try:
        if model:
            encoding = tiktoken.encoding_for_model(model)
        else:
            encoding = tiktoken.get_encoding(DEFAULT_ENCODING)
    except KeyError:
        encoding = tiktoken.get_encoding(DEFAULT_ENCODING)

    _encoding_cache[cache_key] = encoding
    return encoding


def count_tokens(text: str, model: Optional[str] = None) -> int:
    """Count tokens in the given text."""
    if not text:
        return 0
    return len(get_encoding(model).encode(text))


def count_message_tokens(messages: List[Dict[str, str]], model: Optional[str] = None) -> int:
    """Count tokens in a list of chat messages, including framing overhead."""
    if not messages:
        return 0

    encoding = get_encoding(model)
    num_tokens = 0
    for message in messages:
        num_tokens += TOKENS_PER_MESSAGE
        for value in message.values():
            num_tokens += len(encoding.encode(str(value)))
    return num_tokens + TOKENS_PER_REPLY


def estimate_request_tokens(
    messages: List[Dict[str, str]],
    max_tokens: Optional[int] = None,
    model: Optional[str] = None,
) -> int:
    """Estimate the total tokens a chat request may consume.

    Prompt tokens plus the completion budget; without a budget the
    completion is assumed to be about as long as the prompt.
    """
    prompt_tokens = count_message_tokens(messages, model)
    if max_tokens:
        return prompt_tokens + max_tokens
    return prompt_tokens * 2
