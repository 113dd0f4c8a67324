"""Sliding-window rate limiter keyed by (client address, session).

Each key owns a window of request timestamps. A request is accepted when
fewer than ``limit`` timestamps fall inside the trailing ``window``; the
check and the insert happen atomically per key.

Two window stores:
  - InMemoryWindowStore: per-key deque + asyncio.Lock, single process
  - RedisWindowStore: sorted set updated by a Lua script, shared by all
    gateway instances
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
import uuid
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Protocol

from app.gateway.errors import RateLimitExceeded

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    retry_after: int = 0  # whole seconds until the oldest entry leaves the window


class WindowStore(Protocol):
    async def hit(self, key: str, limit: int, window: float) -> RateLimitDecision: ...


@dataclass
class _Window:
    """Sliding window for a single key."""

    entries: deque[float] = field(default_factory=deque)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    def _prune(self, now: float, window: float) -> None:
        cutoff = now - window
        while self.entries and self.entries[0] <= cutoff:
            self.entries.popleft()


def _retry_after(oldest: float, window: float, now: float) -> int:
    return max(1, math.ceil(oldest + window - now))


class InMemoryWindowStore:
    """Process-local windows on a monotonic clock."""

    def __init__(self, clock: Callable[[], float] = time.monotonic, sweep_every: int = 1000):
        self._clock = clock
        self._windows: dict[str, _Window] = {}
        self._sweep_every = sweep_every
        self._hits = 0

    async def hit(self, key: str, limit: int, window: float) -> RateLimitDecision:
        bucket = self._windows.setdefault(key, _Window())
        async with bucket.lock:
            now = self._clock()
            bucket._prune(now, window)

            if len(bucket.entries) >= limit:
                return RateLimitDecision(
                    allowed=False,
                    limit=limit,
                    remaining=0,
                    retry_after=_retry_after(bucket.entries[0], window, now),
                )

            bucket.entries.append(now)
            decision = RateLimitDecision(allowed=True, limit=limit, remaining=limit - len(bucket.entries))

        self._hits += 1
        if self._hits % self._sweep_every == 0:
            self._sweep(window)
        return decision

    def _sweep(self, window: float) -> None:
        """Drop keys whose windows have fully expired."""
        now = self._clock()
        for key in list(self._windows):
            bucket = self._windows[key]
            if bucket.lock.locked():
                continue
            bucket._prune(now, window)
            if not bucket.entries:
                del self._windows[key]

    def __len__(self) -> int:
        return len(self._windows)


# KEYS[1] = window key; ARGV = window seconds, limit, unique member.
# Uses the server clock so every gateway instance shares one time source.
_SLIDING_WINDOW_LUA = """
local t = redis.call('TIME')
local now = tonumber(t[1]) + tonumber(t[2]) / 1000000
local window = tonumber(ARGV[1])
local limit = tonumber(ARGV[2])
redis.call('ZREMRANGEBYSCORE', KEYS[1], '-inf', now - window)
local count = redis.call('ZCARD', KEYS[1])
if count < limit then
  redis.call('ZADD', KEYS[1], now, ARGV[3])
  redis.call('PEXPIRE', KEYS[1], math.ceil(window * 1000))
  return {1, limit - count - 1, 0}
end
local oldest = redis.call('ZRANGE', KEYS[1], 0, 0, 'WITHSCORES')
local wait_ms = math.ceil((tonumber(oldest[2]) + window - now) * 1000)
return {0, 0, wait_ms}
"""


class RedisWindowStore:
    """Windows shared across instances through redis.asyncio."""

    def __init__(self, redis_client, prefix: str = "ratelimit:"):
        self._redis = redis_client
        self._prefix = prefix
        self._script = redis_client.register_script(_SLIDING_WINDOW_LUA)

    async def hit(self, key: str, limit: int, window: float) -> RateLimitDecision:
        allowed, remaining, wait_ms = await self._script(
            keys=[f"{self._prefix}{key}"],
            args=[window, limit, uuid.uuid4().hex],
        )
        if int(allowed):
            return RateLimitDecision(allowed=True, limit=limit, remaining=int(remaining))
        return RateLimitDecision(
            allowed=False,
            limit=limit,
            remaining=0,
            retry_after=max(1, math.ceil(int(wait_ms) / 1000)),
        )


class SlidingWindowRateLimiter:
    """Throttles chat requests per (client address, session).

    Usage:
        limiter = SlidingWindowRateLimiter(limit=30, window_seconds=60)

        decision = await limiter.hit(request.client.host, session_id)
        if not decision.allowed:
            ...  # 429 with decision.retry_after

        # or, raising:
        await limiter.check(address, session_id)
    """

    def __init__(self, limit: int = 30, window_seconds: float = 60.0, store: WindowStore | None = None):
        if limit < 1 or window_seconds <= 0:
            raise ValueError("limit and window_seconds must be positive")
        self.limit = limit
        self.window_seconds = window_seconds
        self.store = store if store is not None else InMemoryWindowStore()

    @staticmethod
    def key(client_address: str, session_id: str) -> str:
        return f"chat:{client_address or 'unknown'}:{session_id}"

    async def hit(self, client_address: str, session_id: str) -> RateLimitDecision:
        decision = await self.store.hit(self.key(client_address, session_id), self.limit, self.window_seconds)
        if not decision.allowed:
            logger.warning(
                "Rate limit exceeded for session %s (retry in %ds)",
                session_id,
                decision.retry_after,
            )
        return decision

    async def check(self, client_address: str, session_id: str) -> RateLimitDecision:
        decision = await self.hit(client_address, session_id)
        if not decision.allowed:
            raise RateLimitExceeded(decision.retry_after)
        return decision
