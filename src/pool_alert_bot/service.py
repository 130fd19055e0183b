from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from redis.asyncio import Redis

from .aggregator import PoolSetAggregator
from .broadcaster import FanoutBroadcaster
from .config import Settings
from .contest import ContestAggregator
from .dedupe import RedisTradeDeduper, TradeDeduper
from .feed_client import RateLimitedFeedClient
from .geckoterminal import GeckoTerminalApi, api_headers
from .registry import InMemorySubscriberRegistry, RedisSubscriberRegistry, SubscriberRegistry
from .scheduler import PollScheduler
from .telegram_notifier import TelegramNotifier
from .types import SubscriberConfig, TopPool

logger = logging.getLogger(__name__)


class AlertService:
    def __init__(self, settings: Settings, registry: SubscriberRegistry | None = None) -> None:
        self.settings = settings
        self.redis: Redis | None = None
        if settings.redis_url:
            self.redis = Redis.from_url(settings.redis_url, decode_responses=True)

        if registry is not None:
            self.registry = registry
        elif self.redis is not None:
            self.registry = RedisSubscriberRegistry(self.redis)
        else:
            self.registry = InMemorySubscriberRegistry()

        if self.redis is not None:
            self.deduper = RedisTradeDeduper(self.redis, settings.dedup_ttl_seconds)
        else:
            self.deduper = TradeDeduper(settings.dedup_ttl_seconds)

        self.feed_client = RateLimitedFeedClient(
            headers=api_headers(settings.gecko_api_key),
            timeout=settings.feed_timeout_seconds,
            max_retries=settings.feed_max_retries,
            backoff_base=settings.backoff_base_seconds,
            backoff_max=settings.backoff_max_seconds,
        )
        self.api = GeckoTerminalApi(
            self.feed_client,
            api_base=settings.gecko_api_base,
            network=settings.gecko_network,
            trades_ttl=settings.trades_cache_ttl_seconds,
            metadata_ttl=settings.enrichment_cache_ttl_seconds,
        )
        self.notifier = TelegramNotifier(settings.telegram_bot_token)
        self.broadcaster = FanoutBroadcaster(
            self.registry,
            self.notifier,
            self.api,
            network=settings.gecko_network,
            explorer_tx_url=settings.explorer_tx_url,
            chart_base_url=settings.chart_base_url,
            concurrency=settings.delivery_concurrency,
            enrichment_timeout=settings.enrichment_timeout_seconds,
        )
        self.aggregator = PoolSetAggregator(self.registry)
        self.scheduler = PollScheduler(
            self.api,
            self.deduper,
            self.broadcaster,
            trades_limit=settings.trades_limit,
            max_backlog=settings.max_poll_backlog,
        )
        self.contests = ContestAggregator(self.registry, self.notifier)

    async def run(self) -> None:
        logger.info("Pool alert bot started on network %s", self.settings.gecko_network)
        tasks = [
            asyncio.create_task(
                self._every(self.settings.pool_refresh_interval_seconds, self.refresh_pools, "pool refresh")
            ),
            asyncio.create_task(
                self._every(self.settings.poll_interval_seconds, self._poll_tick, "poll tick")
            ),
            asyncio.create_task(
                self._every(
                    self.settings.contest_sweep_interval_seconds, self.contests.sweep, "contest sweep"
                )
            ),
            asyncio.create_task(self._health_loop()),
        ]
        try:
            await asyncio.gather(*tasks)
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            await self.close()

    async def close(self) -> None:
        await self.notifier.close()
        await self.feed_client.close()
        await self.registry.close()
        if self.redis is not None and not isinstance(self.registry, RedisSubscriberRegistry):
            await self.redis.aclose()

    async def refresh_pools(self) -> list[str]:
        pools = await self.aggregator.refresh()
        self.scheduler.replace_feeds(pools)
        return pools

    async def watch_token(self, subscriber_id: str, token_address: str) -> TopPool | None:
        """Resolve a token's top pool and add it to the subscriber's watch list."""
        top = await self.api.fetch_top_pool(token_address)
        if top is None:
            return None

        def add(config: SubscriberConfig) -> bool:
            if top.pool_id not in config.pools:
                config.pools.append(top.pool_id)
            config.token_symbols[top.pool_id] = top.symbol
            return True

        await self.registry.update(subscriber_id, add, create=True)
        logger.info("Subscriber %s now tracking %s (%s)", subscriber_id, top.symbol, top.pool_id)
        return top

    async def unwatch_token(self, subscriber_id: str, token_address: str) -> TopPool | None:
        top = await self.api.fetch_top_pool(token_address)
        if top is None:
            return None

        def remove(config: SubscriberConfig) -> bool:
            config.pools = [p for p in config.pools if p != top.pool_id]
            config.token_symbols.pop(top.pool_id, None)
            return True

        await self.registry.update(subscriber_id, remove)
        return top

    async def _poll_tick(self) -> None:
        self.scheduler.schedule()

    @staticmethod
    async def _every(interval: float, job: Callable[[], Awaitable[object]], name: str) -> None:
        while True:
            try:
                await job()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Periodic %s failed", name)
            await asyncio.sleep(interval)

    async def _health_loop(self) -> None:
        while True:
            await asyncio.sleep(self.settings.health_log_interval_seconds)
            stats = self.broadcaster.stats
            logger.info(
                (
                    "health pools=%d ticks=%d skipped=%d poll_failures=%d new_trades=%d "
                    "alerts_sent=%d alerts_failed=%d evicted=%d cooldown=%.1fs requests=%d"
                ),
                len(self.scheduler.feeds),
                self.scheduler.ticks_run,
                self.scheduler.ticks_skipped,
                self.scheduler.polls_failed,
                self.scheduler.trades_new,
                stats.alerts_sent,
                stats.alerts_failed,
                stats.subscribers_evicted,
                self.feed_client.cooldown_remaining(),
                self.feed_client.requests_sent,
            )
