import pytest
from pydantic import ValidationError

from ykbuddy.app.core.config import Settings


def test_defaults() -> None:
    settings = Settings(_env_file=None)

    assert settings.rate_limit_enabled is True
    assert settings.rate_limit_strategy == "fixed_window"
    assert settings.cache_default_ttl == 300
    assert settings.retry_max_retries == 3
    assert settings.admin_token == ""


def test_policy_limits_from_env(monkeypatch) -> None:
    monkeypatch.setenv("RATE_LIMIT_WRITE_MAX_REQUESTS", "10")
    monkeypatch.setenv("RATE_LIMIT_WRITE_WINDOW_SECONDS", "30")

    settings = Settings(_env_file=None)
    assert settings.rate_limit_write_max_requests == 10
    assert settings.rate_limit_write_window_seconds == 30


def test_admin_token_is_stripped(monkeypatch) -> None:
    monkeypatch.setenv("ADMIN_TOKEN", "secret-token\n")

    settings = Settings(_env_file=None)
    assert settings.admin_token == "secret-token"


@pytest.mark.parametrize(
    ("field", "value"),
    [
        ("rate_limit_api_max_requests", 0),
        ("rate_limit_auth_window_seconds", 0),
        ("retry_max_retries", -1),
        ("retry_backoff_multiplier", 0.5),
        ("rate_limit_strategy", "token_bucket"),
    ],
)
def test_invalid_values_rejected(field: str, value) -> None:
    with pytest.raises(ValidationError):
        Settings(_env_file=None, **{field: value})


def test_strategy_normalized() -> None:
    assert Settings(_env_file=None, rate_limit_strategy=" Sliding_Window ").rate_limit_strategy == "sliding_window"


def test_zero_retries_allowed() -> None:
    assert Settings(_env_file=None, retry_max_retries=0).retry_max_retries == 0


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ('["http://localhost:3000"]', ["http://localhost:3000"]),
        ("https://ykbuddy.com, https://www.ykbuddy.com", ["https://ykbuddy.com", "https://www.ykbuddy.com"]),
        ("*", ["*"]),
        ("[]", []),
        ("", []),
    ],
)
def test_cors_origins_parsing_variants(monkeypatch, raw: str, expected: list[str]) -> None:
    monkeypatch.setenv("CORS_ORIGINS", raw)

    settings = Settings(_env_file=None)
    assert settings.cors_origins == expected
