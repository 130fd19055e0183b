from __future__ import annotations

import asyncio
import json
import weakref
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

from .types import SubscriberConfig


KEY_PREFIX = "chat:"
KEY_SUFFIX = ":config"


class InvalidSubscriberConfig(ValueError):
    def __init__(self, subscriber_id: str, reason: str) -> None:
        super().__init__(f"Invalid config for subscriber {subscriber_id}: {reason}")
        self.subscriber_id = subscriber_id


def _decode(subscriber_id: str, raw: Any) -> SubscriberConfig:
    try:
        if isinstance(raw, (str, bytes)):
            raw = json.loads(raw)
        return SubscriberConfig.from_dict(raw)
    except (TypeError, ValueError, KeyError) as exc:
        raise InvalidSubscriberConfig(subscriber_id, str(exc)) from exc


class SubscriberRegistry(ABC):
    """Whole-config storage for subscribers.

    ``lock`` hands out one lock per subscriber; any read-modify-write of a
    config must hold it so concurrent trades cannot lose each other's updates.
    """

    def __init__(self) -> None:
        # Entries vanish once no task holds or waits on the lock.
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def lock(self, subscriber_id: str) -> asyncio.Lock:
        lock = self._locks.get(subscriber_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[subscriber_id] = lock
        return lock

    @abstractmethod
    async def get(self, subscriber_id: str) -> SubscriberConfig | None:
        ...

    @abstractmethod
    async def set(self, subscriber_id: str, config: SubscriberConfig) -> None:
        ...

    @abstractmethod
    async def delete(self, subscriber_id: str) -> None:
        ...

    @abstractmethod
    async def list_all(self) -> list[str]:
        ...

    async def update(
        self,
        subscriber_id: str,
        mutate: Callable[[SubscriberConfig], bool],
        create: bool = False,
    ) -> SubscriberConfig | None:
        """Apply ``mutate`` under the subscriber lock; persist when it returns True."""
        async with self.lock(subscriber_id):
            config = await self.get(subscriber_id)
            if config is None:
                if not create:
                    return None
                config = SubscriberConfig()
            if mutate(config):
                await self.set(subscriber_id, config)
            return config

    async def close(self) -> None:
        return None


class InMemorySubscriberRegistry(SubscriberRegistry):
    def __init__(self) -> None:
        super().__init__()
        # Serialised records, so callers never share mutable config objects.
        self._store: dict[str, str] = {}

    async def get(self, subscriber_id: str) -> SubscriberConfig | None:
        raw = self._store.get(subscriber_id)
        if raw is None:
            return None
        return _decode(subscriber_id, raw)

    async def set(self, subscriber_id: str, config: SubscriberConfig) -> None:
        self._store[subscriber_id] = json.dumps(config.to_dict())

    async def delete(self, subscriber_id: str) -> None:
        self._store.pop(subscriber_id, None)

    async def list_all(self) -> list[str]:
        return list(self._store.keys())


class RedisSubscriberRegistry(SubscriberRegistry):
    def __init__(self, redis: Any) -> None:
        super().__init__()
        self.redis = redis

    @staticmethod
    def _key(subscriber_id: str) -> str:
        return f"{KEY_PREFIX}{subscriber_id}{KEY_SUFFIX}"

    async def get(self, subscriber_id: str) -> SubscriberConfig | None:
        raw = await self.redis.get(self._key(subscriber_id))
        if raw is None:
            return None
        return _decode(subscriber_id, raw)

    async def set(self, subscriber_id: str, config: SubscriberConfig) -> None:
        await self.redis.set(self._key(subscriber_id), json.dumps(config.to_dict()))

    async def delete(self, subscriber_id: str) -> None:
        await self.redis.delete(self._key(subscriber_id))

    async def list_all(self) -> list[str]:
        ids: list[str] = []
        async for key in self.redis.scan_iter(match=f"{KEY_PREFIX}*{KEY_SUFFIX}"):
            if isinstance(key, bytes):
                key = key.decode()
            ids.append(key[len(KEY_PREFIX) : -len(KEY_SUFFIX)])
        return ids

    async def close(self) -> None:
        await self.redis.aclose()
