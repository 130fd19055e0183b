from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv


@dataclass(frozen=True)
class Settings:
    telegram_bot_token: str
    gecko_api_base: str
    gecko_network: str
    gecko_api_key: str | None
    explorer_tx_url: str
    chart_base_url: str
    redis_url: str | None
    poll_interval_seconds: float
    pool_refresh_interval_seconds: float
    contest_sweep_interval_seconds: float
    health_log_interval_seconds: int
    trades_limit: int
    trades_cache_ttl_seconds: float
    enrichment_cache_ttl_seconds: float
    enrichment_timeout_seconds: float
    feed_timeout_seconds: float
    feed_max_retries: int
    backoff_base_seconds: float
    backoff_max_seconds: float
    dedup_ttl_seconds: int
    max_poll_backlog: int
    delivery_concurrency: int
    log_level: str


def _required(name: str) -> str:
    value = os.getenv(name, "").strip()
    if not value:
        raise ValueError(f"Missing required environment variable: {name}")
    return value


def _optional_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


def _optional_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return float(raw)


def _positive(name: str, value: float) -> float:
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {value}")
    return value


def load_settings() -> Settings:
    load_dotenv()
    return Settings(
        telegram_bot_token=_required("TELEGRAM_BOT_TOKEN"),
        gecko_api_base=os.getenv(
            "GECKO_API_BASE", "https://api.geckoterminal.com/api/v2"
        ).strip(),
        gecko_network=os.getenv("GECKO_NETWORK", "besc-hyperchain").strip(),
        gecko_api_key=os.getenv("GECKO_API_KEY", "").strip() or None,
        explorer_tx_url=os.getenv(
            "EXPLORER_TX_URL", "https://explorer.beschyperchain.com/tx/"
        ).strip(),
        chart_base_url=os.getenv("CHART_BASE_URL", "https://www.geckoterminal.com").strip(),
        redis_url=os.getenv("REDIS_URL", "").strip() or None,
        poll_interval_seconds=_positive(
            "POLL_INTERVAL_SECONDS", _optional_float("POLL_INTERVAL_SECONDS", 2.0)
        ),
        pool_refresh_interval_seconds=_positive(
            "POOL_REFRESH_INTERVAL_SECONDS",
            _optional_float("POOL_REFRESH_INTERVAL_SECONDS", 10.0),
        ),
        contest_sweep_interval_seconds=_positive(
            "CONTEST_SWEEP_INTERVAL_SECONDS",
            _optional_float("CONTEST_SWEEP_INTERVAL_SECONDS", 30.0),
        ),
        health_log_interval_seconds=_optional_int("HEALTH_LOG_INTERVAL_SECONDS", 60),
        trades_limit=_optional_int("TRADES_LIMIT", 5),
        trades_cache_ttl_seconds=_optional_float("TRADES_CACHE_TTL_SECONDS", 1.0),
        enrichment_cache_ttl_seconds=_optional_float("ENRICHMENT_CACHE_TTL_SECONDS", 60.0),
        enrichment_timeout_seconds=_optional_float("ENRICHMENT_TIMEOUT_SECONDS", 5.0),
        feed_timeout_seconds=_optional_float("FEED_TIMEOUT_SECONDS", 15.0),
        feed_max_retries=_optional_int("FEED_MAX_RETRIES", 3),
        backoff_base_seconds=_optional_float("BACKOFF_BASE_SECONDS", 1.0),
        backoff_max_seconds=_optional_float("BACKOFF_MAX_SECONDS", 60.0),
        dedup_ttl_seconds=_optional_int("DEDUP_TTL_SECONDS", 7200),
        max_poll_backlog=_optional_int("MAX_POLL_BACKLOG", 1),
        delivery_concurrency=_optional_int("DELIVERY_CONCURRENCY", 20),
        log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper(),
    )
