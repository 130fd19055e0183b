from __future__ import annotations

import asyncio
import logging
import random
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from email.utils import parsedate_to_datetime
from typing import Any

import httpx

logger = logging.getLogger(__name__)

MAX_CACHE_ENTRIES = 1024


class FeedError(Exception):
    def __init__(self, message: str, url: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class FeedThrottledError(FeedError):
    """Still rate limited after the retry budget was spent."""


class FeedNotFoundError(FeedError):
    """The requested pool or token no longer exists upstream."""


class FeedRequestError(FeedError):
    """Non-retriable 4xx, unreadable body, or transient failures past the retry cap."""


@dataclass
class CooldownState:
    cooldown_until: float = 0.0
    streak: int = 0


def backoff_delay(
    streak: int, base: float, cap: float, retry_after: float | None = None
) -> float:
    if retry_after is not None:
        delay = retry_after
    else:
        delay = base * (2 ** max(streak - 1, 0))
    return max(0.0, min(delay, cap))


def parse_retry_after(value: str | None) -> float | None:
    if value is None or not value.strip():
        return None
    text = value.strip()
    try:
        return max(0.0, float(text))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(text)
    except (TypeError, ValueError):
        return None
    if when is None:
        return None
    return max(0.0, when.timestamp() - time.time())


class RateLimitedFeedClient:
    def __init__(
        self,
        headers: dict[str, str] | None = None,
        timeout: float = 15.0,
        max_retries: int = 3,
        backoff_base: float = 1.0,
        backoff_max: float = 60.0,
        max_jitter: float = 0.4,
        client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        jitter: Callable[[], float] | None = None,
    ) -> None:
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.cooldown = CooldownState()
        self.requests_sent = 0
        self._client = client or httpx.AsyncClient(timeout=timeout, headers=headers)
        self._clock = clock
        self._sleep = sleep
        self._jitter = jitter or (lambda: random.uniform(0.0, max_jitter))
        self._cache: dict[str, tuple[float, Any]] = {}
        self._inflight: dict[str, asyncio.Task[Any]] = {}
        self._lock = asyncio.Lock()

    async def close(self) -> None:
        await self._client.aclose()

    def cooldown_remaining(self) -> float:
        return max(0.0, self.cooldown.cooldown_until - self._clock())

    async def fetch(self, url: str, ttl: float) -> Any:
        cached = self._cache.get(url)
        if cached is not None:
            expires_at, data = cached
            if expires_at > self._clock():
                return data
            del self._cache[url]

        task = self._inflight.get(url)
        if task is None:
            task = asyncio.create_task(self._request(url))
            self._inflight[url] = task
            task.add_done_callback(lambda t: self._settle(url, ttl, t))
        return await asyncio.shield(task)

    def _settle(self, url: str, ttl: float, task: asyncio.Task[Any]) -> None:
        self._inflight.pop(url, None)
        if task.cancelled() or task.exception() is not None:
            return
        if ttl <= 0:
            return
        if len(self._cache) >= MAX_CACHE_ENTRIES:
            self._purge_cache()
        self._cache[url] = (self._clock() + ttl, task.result())

    def _purge_cache(self) -> None:
        now = self._clock()
        for key in [k for k, (expires_at, _) in self._cache.items() if expires_at <= now]:
            del self._cache[key]
        while len(self._cache) >= MAX_CACHE_ENTRIES:
            del self._cache[next(iter(self._cache))]

    async def _wait_for_cooldown(self) -> None:
        # Re-check after sleeping: another caller may have extended the cooldown.
        while True:
            remaining = self.cooldown_remaining()
            if remaining <= 0:
                return
            await self._sleep(remaining)

    async def _register_throttle(self, retry_after_header: str | None) -> float:
        async with self._lock:
            self.cooldown.streak += 1
            wait = backoff_delay(
                self.cooldown.streak,
                self.backoff_base,
                self.backoff_max,
                parse_retry_after(retry_after_header),
            ) + self._jitter()
            self.cooldown.cooldown_until = max(
                self.cooldown.cooldown_until, self._clock() + wait
            )
            return wait

    async def _register_success(self) -> None:
        async with self._lock:
            self.cooldown.streak = 0

    async def _request(self, url: str) -> Any:
        attempt = 0
        while True:
            await self._wait_for_cooldown()
            self.requests_sent += 1
            try:
                response = await self._client.get(url)
            except httpx.TransportError as exc:
                if attempt >= self.max_retries:
                    raise FeedRequestError(f"Request failed: {exc}", url) from exc
                attempt += 1
                await self._retry_pause(url, attempt, str(exc))
                continue

            status = response.status_code
            if status == 429:
                wait = await self._register_throttle(response.headers.get("retry-after"))
                logger.warning(
                    "Feed throttled (streak=%d). Cooling down %.2fs before next request",
                    self.cooldown.streak,
                    wait,
                )
                if attempt >= self.max_retries:
                    raise FeedThrottledError("Rate limited", url, status)
                attempt += 1
                continue
            if status == 404:
                raise FeedNotFoundError("Not found", url, status)
            if status >= 500:
                if attempt >= self.max_retries:
                    raise FeedRequestError(f"Server error {status}", url, status)
                attempt += 1
                await self._retry_pause(url, attempt, f"HTTP {status}")
                continue
            if status >= 400:
                raise FeedRequestError(f"Request rejected with {status}", url, status)

            await self._register_success()
            try:
                return response.json()
            except ValueError as exc:
                raise FeedRequestError("Response was not valid JSON", url, status) from exc

    async def _retry_pause(self, url: str, attempt: int, reason: str) -> None:
        delay = backoff_delay(attempt, self.backoff_base, self.backoff_max)
        logger.warning(
            "Feed request %s failed (%s), retry %d/%d in %.1fs",
            url,
            reason,
            attempt,
            self.max_retries,
            delay,
        )
        await self._sleep(delay)
