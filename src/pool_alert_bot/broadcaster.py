from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from typing import Any

from .contest import credit_trade, qualifies
from .formatting import (
    alert_buttons,
    build_chart_link,
    build_tx_link,
    format_alert_message,
    format_feed_gone_message,
    tier_emoji,
)
from .registry import InvalidSubscriberConfig, SubscriberRegistry
from .types import (
    AlertPayload,
    DeliveryResult,
    MarketSnapshot,
    MediaRef,
    MediaStatus,
    SubscriberConfig,
    TradeEvent,
)

logger = logging.getLogger(__name__)

SnapshotGetter = Callable[[], Awaitable[MarketSnapshot | None]]


@dataclass
class BroadcastStats:
    trades_broadcast: int = 0
    alerts_sent: int = 0
    alerts_failed: int = 0
    alerts_filtered: int = 0
    contest_credits: int = 0
    subscribers_evicted: int = 0
    enrichment_failures: int = 0


class FanoutBroadcaster:
    def __init__(
        self,
        registry: SubscriberRegistry,
        notifier: Any,
        api: Any,
        network: str,
        explorer_tx_url: str,
        chart_base_url: str,
        concurrency: int = 20,
        enrichment_timeout: float = 5.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.registry = registry
        self.notifier = notifier
        self.api = api
        self.network = network
        self.explorer_tx_url = explorer_tx_url
        self.chart_base_url = chart_base_url
        self.enrichment_timeout = enrichment_timeout
        self.stats = BroadcastStats()
        self._clock = clock
        self._semaphore = asyncio.Semaphore(max(1, concurrency))

    async def broadcast(self, feed_id: str, trade: TradeEvent) -> None:
        self.stats.trades_broadcast += 1
        subscriber_ids = await self.registry.list_all()

        # Market data is fetched at most once per trade, and only if someone gets an alert.
        snapshot_task: asyncio.Task[MarketSnapshot | None] | None = None

        async def snapshot() -> MarketSnapshot | None:
            nonlocal snapshot_task
            if snapshot_task is None:
                snapshot_task = asyncio.create_task(self._enrich(feed_id, trade))
            return await snapshot_task

        async def run(subscriber_id: str) -> None:
            async with self._semaphore:
                try:
                    await self._deliver_to(subscriber_id, feed_id, trade, snapshot)
                except Exception:
                    self.stats.alerts_failed += 1
                    logger.exception(
                        "Broadcast to subscriber %s failed for trade %s", subscriber_id, trade.trade_id
                    )

        await asyncio.gather(*(run(subscriber_id) for subscriber_id in subscriber_ids))

    async def _deliver_to(
        self,
        subscriber_id: str,
        feed_id: str,
        trade: TradeEvent,
        snapshot: SnapshotGetter,
    ) -> None:
        async with self.registry.lock(subscriber_id):
            try:
                config = await self.registry.get(subscriber_id)
            except InvalidSubscriberConfig as exc:
                logger.warning("Skipping subscriber record during broadcast: %s", exc)
                return
            if config is None or not config.watches(feed_id):
                return
            if not passes_filters(config, trade):
                self.stats.alerts_filtered += 1
                return

            now = self._clock()
            contest = config.contest
            if contest is not None and trade.actor and qualifies(contest, trade, now):
                credit_trade(contest, trade.actor, trade.usd, now)
                await self.registry.set(subscriber_id, config)
                self.stats.contest_credits += 1

        payload = self.compose(config, feed_id, trade, await snapshot())
        result = await self._send(subscriber_id, payload)

        if result is DeliveryResult.MEDIA_REJECTED and payload.media is not None:
            logger.warning("Media rejected for subscriber %s; demoting and resending", subscriber_id)
            await self._set_media_status(subscriber_id, payload.media, MediaStatus.INVALID)
            result = await self._send(subscriber_id, replace(payload, media=None))
        elif (
            result is DeliveryResult.DELIVERED
            and payload.media is not None
            and payload.media.status is MediaStatus.UNKNOWN
        ):
            await self._set_media_status(subscriber_id, payload.media, MediaStatus.VALID)

        await self._handle_result(subscriber_id, trade, result)

    def compose(
        self,
        config: SubscriberConfig,
        feed_id: str,
        trade: TradeEvent,
        snapshot: MarketSnapshot | None,
    ) -> AlertPayload:
        tx_url = build_tx_link(self.explorer_tx_url, trade.tx_hash)
        chart_url = build_chart_link(self.chart_base_url, self.network, feed_id)
        text = format_alert_message(
            trade,
            symbol=config.symbol_for(feed_id),
            emoji=tier_emoji(config, trade),
            snapshot=snapshot,
            tx_url=tx_url,
        )
        media = config.media if config.media is not None and config.media.sendable else None
        return AlertPayload(text=text, media=media, buttons=alert_buttons(chart_url, tx_url))

    async def notify_feed_gone(self, feed_id: str) -> list[str]:
        """Drop a vanished pool from every subscriber watching it and tell them."""
        notified: list[str] = []
        for subscriber_id in await self.registry.list_all():
            try:
                if await self._drop_feed_for(subscriber_id, feed_id):
                    notified.append(subscriber_id)
            except InvalidSubscriberConfig as exc:
                logger.warning("Skipping subscriber record while removing pool: %s", exc)
            except Exception:
                logger.exception("Failed to remove pool %s for subscriber %s", feed_id, subscriber_id)
        logger.info("Pool %s removed upstream; notified %d subscribers", feed_id, len(notified))
        return notified

    async def _drop_feed_for(self, subscriber_id: str, feed_id: str) -> bool:
        async with self.registry.lock(subscriber_id):
            config = await self.registry.get(subscriber_id)
            if config is None or not config.watches(feed_id):
                return False
            symbol = config.symbol_for(feed_id)
            config.pools = [p for p in config.pools if p != feed_id]
            config.token_symbols.pop(feed_id, None)
            await self.registry.set(subscriber_id, config)

        result = await self._send(
            subscriber_id, AlertPayload(text=format_feed_gone_message(feed_id, symbol))
        )
        if result is DeliveryResult.GONE:
            await self._evict(subscriber_id)
        return True

    async def _enrich(self, feed_id: str, trade: TradeEvent) -> MarketSnapshot | None:
        if self.api is None:
            return None
        try:
            return await asyncio.wait_for(
                self.api.fetch_snapshot(feed_id, trade), timeout=self.enrichment_timeout
            )
        except Exception as exc:
            self.stats.enrichment_failures += 1
            logger.warning("Market data enrichment failed for pool %s: %r", feed_id, exc)
            return None

    async def _send(self, subscriber_id: str, payload: AlertPayload) -> DeliveryResult:
        try:
            return await self.notifier.deliver(subscriber_id, payload)
        except Exception:
            logger.exception("Delivery to %s raised", subscriber_id)
            return DeliveryResult.FAILED

    async def _handle_result(
        self, subscriber_id: str, trade: TradeEvent, result: DeliveryResult
    ) -> None:
        if result is DeliveryResult.DELIVERED:
            self.stats.alerts_sent += 1
            logger.info(
                "Alert sent subscriber=%s trade_id=%s side=%s amount=%.2f",
                subscriber_id,
                trade.trade_id,
                trade.side,
                trade.usd,
            )
            return
        self.stats.alerts_failed += 1
        if result is DeliveryResult.GONE:
            await self._evict(subscriber_id)
        else:
            logger.warning(
                "Alert for trade %s not delivered to %s (%s)",
                trade.trade_id,
                subscriber_id,
                result.value,
            )

    async def _evict(self, subscriber_id: str) -> None:
        logger.info("Subscriber %s unreachable; removing record", subscriber_id)
        async with self.registry.lock(subscriber_id):
            await self.registry.delete(subscriber_id)
        self.stats.subscribers_evicted += 1

    async def _set_media_status(
        self, subscriber_id: str, media: MediaRef, status: MediaStatus
    ) -> None:
        def mutate(config: SubscriberConfig) -> bool:
            # Only touch the media this alert was sent with; it may have been replaced since.
            if config.media is None or config.media.reference != media.reference:
                return False
            config.media = replace(config.media, status=status)
            return True

        await self.registry.update(subscriber_id, mutate)


def passes_filters(config: SubscriberConfig, trade: TradeEvent) -> bool:
    if trade.is_sell and not config.show_sells:
        return False
    if trade.usd < config.min_buy_usd:
        return False
    return True
