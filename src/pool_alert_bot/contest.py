from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

from .formatting import format_leaderboard_message
from .registry import InvalidSubscriberConfig, SubscriberRegistry
from .types import AlertPayload, Contest, DeliveryResult, LeaderboardEntry, TradeEvent

logger = logging.getLogger(__name__)

DEFAULT_TOP_N = 10


def qualifies(contest: Contest, trade: TradeEvent, now: float) -> bool:
    return (
        not contest.is_expired(now)
        and not trade.is_sell
        and bool(trade.actor)
        and trade.usd >= contest.min_usd
    )


def credit_trade(contest: Contest, actor: str, usd: float, at: float) -> LeaderboardEntry:
    entry = contest.leaderboard.get(actor)
    if entry is None:
        entry = LeaderboardEntry(usd=0.0, first_qualified_at=at)
        contest.leaderboard[actor] = entry
    entry.usd += usd
    return entry


def rank_leaderboard(contest: Contest) -> list[tuple[str, LeaderboardEntry]]:
    # Equal totals rank by who qualified first, then by address.
    return sorted(
        contest.leaderboard.items(),
        key=lambda item: (-item[1].usd, item[1].first_qualified_at, item[0]),
    )


class ContestAggregator:
    def __init__(
        self,
        registry: SubscriberRegistry,
        notifier: Any,
        clock: Callable[[], float] = time.time,
        top_n: int = DEFAULT_TOP_N,
    ) -> None:
        self.registry = registry
        self.notifier = notifier
        self.top_n = top_n
        self._clock = clock

    async def sweep(self) -> list[str]:
        now = self._clock()
        ended: list[str] = []
        for subscriber_id in await self.registry.list_all():
            try:
                config = await self.registry.get(subscriber_id)
            except InvalidSubscriberConfig as exc:
                logger.warning("Skipping subscriber record during contest sweep: %s", exc)
                continue
            if config is None or config.contest is None or not config.contest.is_expired(now):
                continue
            try:
                if await self._finish(subscriber_id, require_expired=True):
                    ended.append(subscriber_id)
            except Exception:
                logger.exception("Failed to close contest for subscriber %s", subscriber_id)
        return ended

    async def end_contest(self, subscriber_id: str) -> bool:
        """Announce and clear a contest right away, expired or not."""
        return await self._finish(subscriber_id, require_expired=False)

    async def _finish(self, subscriber_id: str, require_expired: bool) -> bool:
        async with self.registry.lock(subscriber_id):
            config = await self.registry.get(subscriber_id)
            if config is None or config.contest is None:
                return False
            contest = config.contest
            if require_expired and not contest.is_expired(self._clock()):
                return False

            ranking = rank_leaderboard(contest)[: self.top_n]
            text = format_leaderboard_message(contest, ranking)
            try:
                result = await self.notifier.deliver(subscriber_id, AlertPayload(text=text))
            except Exception:
                logger.exception("Leaderboard announcement raised for %s", subscriber_id)
                result = DeliveryResult.FAILED

            if result is DeliveryResult.GONE:
                logger.info("Subscriber %s unreachable; removing record", subscriber_id)
                await self.registry.delete(subscriber_id)
                return True
            if result is not DeliveryResult.DELIVERED:
                logger.warning(
                    "Leaderboard announcement for %s not delivered (%s)", subscriber_id, result.value
                )

            config.contest = None
            await self.registry.set(subscriber_id, config)
            logger.info(
                "Contest closed subscriber=%s entrants=%d", subscriber_id, len(contest.leaderboard)
            )
            return True
