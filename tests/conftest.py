"""Shared fixtures for the gateway tests."""

import pytest

from toolgateway.app.core.config import Settings


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def app_settings():
    """Settings isolated from the environment and any .env file."""
    return Settings(
        _env_file=None,
        groq_api_key="test-groq-key",
        shutdown_grace_seconds=0,
        retry_initial_delay=0,
        cors_origins="*",
    )
