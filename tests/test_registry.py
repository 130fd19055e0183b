import asyncio
import gc
import json

import pytest

from pool_alert_bot.registry import (
    InMemorySubscriberRegistry,
    InvalidSubscriberConfig,
    RedisSubscriberRegistry,
    SubscriberRegistry,
)
from pool_alert_bot.types import Contest, LeaderboardEntry, MediaStatus, SubscriberConfig


class FakeRedis:
    def __init__(self) -> None:
        self.values = {}

    async def get(self, key):
        return self.values.get(key)

    async def set(self, key, value):
        self.values[key] = value

    async def delete(self, key):
        self.values.pop(key, None)

    async def scan_iter(self, match=None):
        prefix, suffix = match.split("*")
        for key in list(self.values):
            if key.startswith(prefix) and key.endswith(suffix):
                yield key


def test_in_memory_round_trip_returns_independent_copies() -> None:
    registry = InMemorySubscriberRegistry()

    async def scenario():
        config = SubscriberConfig(pools=["p1"], min_buy_usd=25)
        await registry.set("1", config)
        loaded = await registry.get("1")
        loaded.pools.append("p2")
        again = await registry.get("1")
        return loaded, again

    loaded, again = asyncio.run(scenario())
    assert loaded.min_buy_usd == 25
    assert again.pools == ["p1"]


def test_missing_subscriber_returns_none() -> None:
    assert asyncio.run(InMemorySubscriberRegistry().get("nope")) is None


def test_invalid_record_raises() -> None:
    registry = InMemorySubscriberRegistry()

    async def scenario():
        registry._store["1"] = "{not json"
        await registry.get("1")

    with pytest.raises(InvalidSubscriberConfig):
        asyncio.run(scenario())


def test_update_persists_only_when_mutated() -> None:
    registry = InMemorySubscriberRegistry()

    async def scenario():
        created = await registry.update("1", lambda cfg: cfg.pools.append("p1") or True, create=True)
        untouched = await registry.update("2", lambda cfg: True)
        await registry.update("1", lambda cfg: cfg.pools.append("p2") or False)
        return created, untouched, await registry.get("1")

    created, untouched, stored = asyncio.run(scenario())
    assert created.pools == ["p1"]
    assert untouched is None
    assert stored.pools == ["p1"]


def test_redis_registry_uses_chat_keys() -> None:
    redis = FakeRedis()
    registry = RedisSubscriberRegistry(redis)

    async def scenario():
        await registry.set("-100123", SubscriberConfig(pools=["p1"]))
        redis.values["pool:p1:lastTradeId"] = "t1"
        ids = await registry.list_all()
        config = await registry.get("-100123")
        await registry.delete("-100123")
        return ids, config, await registry.list_all()

    ids, config, after = asyncio.run(scenario())
    assert ids == ["-100123"]
    assert config.pools == ["p1"]
    assert after == []


def test_legacy_camel_case_record_is_accepted() -> None:
    raw = {
        "pools": ["p1"],
        "minBuyUsd": 50,
        "showSells": True,
        "gifFileId": "file-1",
        "emoji": {"small": "🐟", "mid": "💎", "large": "🐋"},
        "tiers": {"small": 200, "large": 2000},
        "tokenSymbols": {"p1": "PEPE"},
    }
    registry = InMemorySubscriberRegistry()

    async def scenario():
        registry._store["1"] = json.dumps(raw)
        return await registry.get("1")

    config = asyncio.run(scenario())
    assert config.min_buy_usd == 50
    assert config.show_sells is True
    assert config.media.file_id == "file-1"
    assert config.media.status is MediaStatus.UNKNOWN
    assert config.emoji.small == "🐟"
    assert config.tiers.large == 2000
    assert config.symbol_for("p1") == "PEPE"
    assert config.symbol_for("p2") == "TOKEN"


def test_contest_survives_serialisation() -> None:
    contest = Contest(end_at=500.0, min_usd=10, prizes=["A"])
    contest.leaderboard["0xa"] = LeaderboardEntry(usd=12.5, first_qualified_at=42.0)
    config = SubscriberConfig(pools=["p1"], contest=contest)

    restored = SubscriberConfig.from_dict(json.loads(json.dumps(config.to_dict())))
    assert restored.contest.end_at == 500.0
    assert restored.contest.prizes == ["A"]
    assert restored.contest.leaderboard == {"0xa": LeaderboardEntry(usd=12.5, first_qualified_at=42.0)}


def test_bare_number_leaderboard_entries_are_upgraded() -> None:
    contest = Contest.from_dict({"end_at": 10, "leaderboard": {"0xa": 99}})
    assert contest.leaderboard["0xa"] == LeaderboardEntry(usd=99.0, first_qualified_at=0.0)


def test_bad_shapes_are_rejected() -> None:
    with pytest.raises(ValueError):
        SubscriberConfig.from_dict({"pools": "p1"})
    with pytest.raises(ValueError):
        SubscriberConfig.from_dict(["p1"])


def test_registry_base_cannot_be_instantiated() -> None:
    with pytest.raises(TypeError):
        SubscriberRegistry()


def test_subscriber_locks_are_released_after_use() -> None:
    registry = InMemorySubscriberRegistry()

    async def scenario():
        await registry.update("1", lambda cfg: cfg.pools.append("p1") or True, create=True)
        async with registry.lock("2"):
            await registry.delete("2")
        held = registry.lock("3")
        async with held:
            same = registry.lock("3") is held
        return same

    assert asyncio.run(scenario()) is True
    gc.collect()
    assert len(registry._locks) == 0


def test_non_boolean_show_sells_is_rejected() -> None:
    with pytest.raises(ValueError):
        SubscriberConfig.from_dict({"pools": ["p1"], "show_sells": "false"})
    with pytest.raises(ValueError):
        SubscriberConfig.from_dict({"pools": ["p1"], "showSells": 1})
    assert SubscriberConfig.from_dict({"pools": ["p1"], "show_sells": None}).show_sells is False


def test_string_show_sells_record_is_reported_invalid() -> None:
    registry = InMemorySubscriberRegistry()

    async def scenario():
        registry._store["1"] = json.dumps({"pools": ["p1"], "show_sells": "false"})
        await registry.get("1")

    with pytest.raises(InvalidSubscriberConfig):
        asyncio.run(scenario())
