"""Tests for argument redaction."""

import pytest

from toolgateway.app.core.security import REDACTED, is_sensitive_key, redact_arguments


@pytest.mark.parametrize("key", ["password", "token", "apiKey", "API_KEY", "Secret", "key"])
def test_sensitive_keys(key):
    assert is_sensitive_key(key)


@pytest.mark.parametrize("key", ["prompt", "keyboard", "tokens", "model", 1, None])
def test_non_sensitive_keys(key):
    assert not is_sensitive_key(key)


def test_redacts_top_level_entries():
    assert redact_arguments({"prompt": "hi", "apiKey": "sk-1", "password": "p"}) == {
        "prompt": "hi",
        "apiKey": REDACTED,
        "password": REDACTED,
    }


def test_redacts_nested_structures():
    arguments = {
        "requests": [
            {"body": {"model": "m", "token": "t-1"}},
            {"body": {"model": "m", "auth": {"secret": "s"}}},
        ],
        "metadata": ({"key": "k"},),
    }

    assert redact_arguments(arguments) == {
        "requests": [
            {"body": {"model": "m", "token": REDACTED}},
            {"body": {"model": "m", "auth": {"secret": REDACTED}}},
        ],
        "metadata": [{"key": REDACTED}],
    }


def test_whole_value_replaced_for_sensitive_key():
    assert redact_arguments({"secret": {"nested": "value"}}) == {"secret": REDACTED}


def test_input_not_modified():
    arguments = {"token": "t", "inner": {"password": "p"}}

    redact_arguments(arguments)

    assert arguments == {"token": "t", "inner": {"password": "p"}}


def test_scalars_pass_through():
    assert redact_arguments("plain") == "plain"
    assert redact_arguments(None) is None
