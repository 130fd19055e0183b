from __future__ import annotations

import time
from collections import OrderedDict
from collections.abc import Callable
from typing import Any


class TradeDeduper:
    """Remembers the newest delivered trade id per pool.

    Records expire after ``ttl_seconds`` of inactivity; an expired pool simply
    treats its next trade as new again.
    """

    def __init__(self, ttl_seconds: int, clock: Callable[[], float] = time.time) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._last: OrderedDict[str, tuple[str, float]] = OrderedDict()

    async def is_new_trade(self, feed_id: str, trade_id: str) -> bool:
        if not trade_id:
            return False
        now = self._clock()
        self._purge(now)
        previous = self._last.get(feed_id)
        if previous is not None and previous[0] == trade_id:
            self._last[feed_id] = (trade_id, now)
            self._last.move_to_end(feed_id)
            return False
        self._last[feed_id] = (trade_id, now)
        self._last.move_to_end(feed_id)
        return True

    def _purge(self, now: float) -> None:
        cutoff = now - self.ttl_seconds
        while self._last:
            first_key = next(iter(self._last))
            if self._last[first_key][1] >= cutoff:
                break
            self._last.popitem(last=False)


class RedisTradeDeduper:
    def __init__(self, redis: Any, ttl_seconds: int) -> None:
        self.redis = redis
        self.ttl_seconds = ttl_seconds

    @staticmethod
    def _key(feed_id: str) -> str:
        return f"pool:{feed_id}:lastTradeId"

    async def is_new_trade(self, feed_id: str, trade_id: str) -> bool:
        if not trade_id:
            return False
        key = self._key(feed_id)
        # SET ... GET hands back the previous value in the same command.
        previous = await self.redis.set(key, trade_id, ex=self.ttl_seconds, get=True)
        if isinstance(previous, bytes):
            previous = previous.decode()
        return previous != trade_id
