from __future__ import annotations

import logging

from .registry import InvalidSubscriberConfig, SubscriberRegistry

logger = logging.getLogger(__name__)


class PoolSetAggregator:
    def __init__(self, registry: SubscriberRegistry) -> None:
        self.registry = registry
        self.last_pools: list[str] = []

    async def refresh(self) -> list[str]:
        """Union of every subscriber's pools, ordered by first appearance."""
        pools: dict[str, None] = {}
        for subscriber_id in await self.registry.list_all():
            try:
                config = await self.registry.get(subscriber_id)
            except InvalidSubscriberConfig as exc:
                logger.warning("Skipping subscriber record: %s", exc)
                continue
            if config is None:
                continue
            for pool in config.pools:
                pools.setdefault(pool, None)

        result = list(pools)
        if result != self.last_pools:
            logger.info("Polling set changed: %d pools (was %d)", len(result), len(self.last_pools))
        self.last_pools = result
        return result
