import asyncio

from pool_alert_bot.aggregator import PoolSetAggregator
from pool_alert_bot.registry import InMemorySubscriberRegistry
from pool_alert_bot.types import SubscriberConfig


def test_refresh_unions_pools_in_first_seen_order() -> None:
    registry = InMemorySubscriberRegistry()

    async def scenario():
        await registry.set("a", SubscriberConfig(pools=["p1", "p2"]))
        await registry.set("b", SubscriberConfig(pools=["p2", "p3"]))
        await registry.set("c", SubscriberConfig())
        return await PoolSetAggregator(registry).refresh()

    assert asyncio.run(scenario()) == ["p1", "p2", "p3"]


def test_refresh_skips_unparseable_records() -> None:
    registry = InMemorySubscriberRegistry()

    async def scenario():
        await registry.set("a", SubscriberConfig(pools=["p1"]))
        registry._store["broken"] = "not json at all"
        registry._store["wrong-shape"] = '{"pools": 7}'
        await registry.set("b", SubscriberConfig(pools=["p9"]))
        return await PoolSetAggregator(registry).refresh()

    assert asyncio.run(scenario()) == ["p1", "p9"]


def test_removed_pools_drop_out_on_next_refresh() -> None:
    registry = InMemorySubscriberRegistry()
    aggregator = PoolSetAggregator(registry)

    async def scenario():
        await registry.set("a", SubscriberConfig(pools=["p1", "p2"]))
        first = await aggregator.refresh()
        await registry.set("a", SubscriberConfig(pools=["p2"]))
        second = await aggregator.refresh()
        return first, second

    first, second = asyncio.run(scenario())
    assert first == ["p1", "p2"]
    assert second == ["p2"]
    assert aggregator.last_pools == ["p2"]
