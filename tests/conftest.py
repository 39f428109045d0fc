"""Shared fixtures for the test suite."""

import pytest

from ykbuddy.app.core.config import Settings


class FakeClock:
    """Manually advanced epoch clock."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def test_settings() -> Settings:
    """Settings isolated from the environment and any .env file."""
    return Settings(
        _env_file=None,
        redis_enabled=False,
        admin_token="test-admin-token",
        log_level="WARNING",
        retry_initial_delay=0.01,
        retry_max_delay=0.05,
    )
