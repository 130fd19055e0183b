import pytest

from pool_alert_bot import config
from pool_alert_bot.config import load_settings


@pytest.fixture(autouse=True)
def _no_dotenv(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, "load_dotenv", lambda: None)


def test_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "abc")
    for name in ("REDIS_URL", "POLL_INTERVAL_SECONDS", "GECKO_NETWORK", "LOG_LEVEL", "GECKO_API_KEY"):
        monkeypatch.delenv(name, raising=False)

    settings = load_settings()
    assert settings.telegram_bot_token == "abc"
    assert settings.gecko_network == "besc-hyperchain"
    assert settings.redis_url is None
    assert settings.gecko_api_key is None
    assert settings.poll_interval_seconds == 2.0
    assert settings.pool_refresh_interval_seconds == 10.0
    assert settings.contest_sweep_interval_seconds == 30.0
    assert settings.dedup_ttl_seconds == 7200
    assert settings.backoff_max_seconds == 60.0
    assert settings.log_level == "INFO"


def test_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "abc")
    monkeypatch.setenv("REDIS_URL", "redis://localhost:6379/0")
    monkeypatch.setenv("POLL_INTERVAL_SECONDS", "0.5")
    monkeypatch.setenv("DELIVERY_CONCURRENCY", "8")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    settings = load_settings()
    assert settings.redis_url == "redis://localhost:6379/0"
    assert settings.poll_interval_seconds == 0.5
    assert settings.delivery_concurrency == 8
    assert settings.log_level == "DEBUG"


def test_missing_token_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("TELEGRAM_BOT_TOKEN", raising=False)
    with pytest.raises(ValueError, match="TELEGRAM_BOT_TOKEN"):
        load_settings()


def test_non_positive_interval_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "abc")
    monkeypatch.setenv("POLL_INTERVAL_SECONDS", "0")
    with pytest.raises(ValueError, match="POLL_INTERVAL_SECONDS"):
        load_settings()
