"""Tests for token estimation.

The encoding is replaced with a whitespace tokenizer so the tests do not
depend on tiktoken downloading its encoding files.
"""

from unittest.mock import patch

import pytest

from toolgateway.app.core import tokenizer
from toolgateway.app.core.tokenizer import (
    count_message_tokens,
    count_tokens,
    estimate_request_tokens,
    get_encoding,
)


class WhitespaceEncoding:
    def encode(self, text):
        return text.split()


@pytest.fixture(autouse=True)
def fake_encoding():
    with patch.object(tokenizer, "get_encoding", return_value=WhitespaceEncoding()) as mock:
        yield mock


def test_count_tokens():
    assert count_tokens("one two three") == 3
    assert count_tokens("") == 0


def test_count_message_tokens_includes_framing():
    messages = [
        {"role": "system", "content": "be brief"},
        {"role": "user", "content": "say hello"},
    ]
    # 2 messages x (3 framing + role + 2 content words) + 3 reply priming
    assert count_message_tokens(messages) == 2 * (3 + 1 + 2) + 3


def test_count_message_tokens_empty():
    assert count_message_tokens([]) == 0


def test_estimate_with_completion_budget():
    messages = [{"role": "user", "content": "hi"}]
    assert estimate_request_tokens(messages, max_tokens=100) == 3 + 2 + 3 + 100


def test_estimate_without_budget_doubles_prompt():
    messages = [{"role": "user", "content": "hi"}]
    assert estimate_request_tokens(messages) == (3 + 2 + 3) * 2


def test_get_encoding_falls_back_for_unknown_model():
    sentinel = object()
    with patch.object(tokenizer, "_encoding_cache", {}), \
            patch("toolgateway.app.core.tokenizer.tiktoken.encoding_for_model", side_effect=KeyError("x")), \
            patch("toolgateway.app.core.tokenizer.tiktoken.get_encoding", return_value=sentinel) as get:
        assert get_encoding("llama-3.1-8b-instant") is sentinel
        assert get_encoding("llama-3.1-8b-instant") is sentinel

    get.assert_called_once_with("cl100k_base")
