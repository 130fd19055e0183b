import asyncio

from pool_alert_bot.dedupe import RedisTradeDeduper, TradeDeduper


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class FakeRedis:
    def __init__(self) -> None:
        self.values = {}
        self.expiry = {}

    async def set(self, key, value, ex=None, get=False):
        previous = self.values.get(key)
        self.values[key] = value
        self.expiry[key] = ex
        return previous if get else True


def test_same_trade_id_is_new_only_once() -> None:
    d = TradeDeduper(ttl_seconds=60)

    async def scenario() -> list[bool]:
        return [
            await d.is_new_trade("pool", "t1"),
            await d.is_new_trade("pool", "t1"),
            await d.is_new_trade("pool", "t1"),
        ]

    assert asyncio.run(scenario()) == [True, False, False]


def test_newer_trade_replaces_last_seen() -> None:
    d = TradeDeduper(ttl_seconds=60)

    async def scenario() -> list[bool]:
        return [
            await d.is_new_trade("pool", "t1"),
            await d.is_new_trade("pool", "t2"),
            await d.is_new_trade("pool", "t2"),
        ]

    assert asyncio.run(scenario()) == [True, True, False]


def test_pools_are_tracked_independently() -> None:
    d = TradeDeduper(ttl_seconds=60)

    async def scenario() -> list[bool]:
        return [await d.is_new_trade("a", "t1"), await d.is_new_trade("b", "t1")]

    assert asyncio.run(scenario()) == [True, True]


def test_empty_trade_id_is_never_new() -> None:
    d = TradeDeduper(ttl_seconds=60)
    assert asyncio.run(d.is_new_trade("pool", "")) is False


def test_record_expires_after_ttl() -> None:
    clock = FakeClock()
    d = TradeDeduper(ttl_seconds=10, clock=clock)

    async def scenario() -> list[bool]:
        first = await d.is_new_trade("pool", "t1")
        clock.now += 11
        second = await d.is_new_trade("pool", "t1")
        return [first, second]

    assert asyncio.run(scenario()) == [True, True]


def test_redis_deduper_compares_previous_value() -> None:
    redis = FakeRedis()
    d = RedisTradeDeduper(redis, ttl_seconds=7200)

    async def scenario() -> list[bool]:
        return [
            await d.is_new_trade("pool", "t1"),
            await d.is_new_trade("pool", "t1"),
            await d.is_new_trade("pool", "t2"),
        ]

    assert asyncio.run(scenario()) == [True, False, True]
    assert redis.values["pool:pool:lastTradeId"] == "t2"
    assert redis.expiry["pool:pool:lastTradeId"] == 7200
