from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Iterable
from typing import Any

from .feed_client import FeedError, FeedNotFoundError, FeedThrottledError

logger = logging.getLogger(__name__)


class PollScheduler:
    """Round-robin poller: one pool per tick, newest trade only.

    ``schedule`` is what the timer calls. It refuses to queue another tick
    while ``max_backlog`` ticks are still pending, so a slow upstream delays
    alerts instead of growing an unbounded queue.
    """

    def __init__(
        self,
        api: Any,
        deduper: Any,
        broadcaster: Any,
        trades_limit: int = 5,
        max_backlog: int = 1,
    ) -> None:
        self.api = api
        self.deduper = deduper
        self.broadcaster = broadcaster
        self.trades_limit = trades_limit
        self.max_backlog = max(1, max_backlog)
        self.ticks_run = 0
        self.ticks_skipped = 0
        self.polls_failed = 0
        self.trades_new = 0
        self._feeds: deque[str] = deque()
        self._pending: set[asyncio.Task[None]] = set()

    @property
    def feeds(self) -> list[str]:
        return list(self._feeds)

    @property
    def backlog(self) -> int:
        return len(self._pending)

    def replace_feeds(self, feeds: Iterable[str]) -> None:
        """Swap in a new polling set, keeping the rotation order of surviving pools."""
        incoming = list(dict.fromkeys(feeds))
        wanted = set(incoming)
        kept = [feed for feed in self._feeds if feed in wanted]
        known = set(kept)
        self._feeds = deque(kept + [feed for feed in incoming if feed not in known])

    def remove_feed(self, feed_id: str) -> None:
        try:
            self._feeds.remove(feed_id)
        except ValueError:
            pass

    def schedule(self) -> asyncio.Task[None] | None:
        if len(self._pending) >= self.max_backlog:
            self.ticks_skipped += 1
            logger.debug("Poll backlog full (%d); skipping tick", len(self._pending))
            return None
        task = asyncio.create_task(self.tick())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> None:
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    async def tick(self) -> None:
        if not self._feeds:
            return
        feed_id = self._feeds.popleft()
        self._feeds.append(feed_id)
        self.ticks_run += 1
        try:
            await self.poll(feed_id)
        except Exception:
            self.polls_failed += 1
            logger.exception("Unexpected failure while polling pool %s", feed_id)

    async def poll(self, feed_id: str) -> None:
        try:
            trades = await self.api.fetch_trades(feed_id, self.trades_limit)
        except FeedNotFoundError:
            logger.warning("Pool %s not found upstream; dropping it", feed_id)
            self.remove_feed(feed_id)
            await self.broadcaster.notify_feed_gone(feed_id)
            return
        except FeedThrottledError:
            self.polls_failed += 1
            logger.warning("Pool %s poll skipped: still throttled", feed_id)
            return
        except FeedError as exc:
            self.polls_failed += 1
            logger.warning("Pool %s poll failed: %s", feed_id, exc)
            return

        if not trades:
            return
        latest = trades[0]
        if not await self.deduper.is_new_trade(feed_id, latest.trade_id):
            return
        self.trades_new += 1
        await self.broadcaster.broadcast(feed_id, latest)
