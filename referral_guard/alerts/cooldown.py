"""
Alert Cooldowns

Check-and-set cooldown windows per alert rule. ``try_acquire`` is
atomic: of several concurrent callers racing on one key, exactly one
gets True until the window expires.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from typing import Callable, Optional

import redis.asyncio as redis

from ..config import settings


class CooldownBackend(ABC):

    @abstractmethod
    async def try_acquire(self, key: str, ttl_seconds: float) -> bool:
        """Start a cooldown for ``key`` unless one is active. True when started."""

    @abstractmethod
    async def reset(self, key: str) -> None:
        ...


class MemoryCooldown(CooldownBackend):
    """In-process cooldowns (lock-protected dict of expiry times)."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._expires: dict[str, float] = {}
        self._lock = asyncio.Lock()

    async def try_acquire(self, key: str, ttl_seconds: float) -> bool:
        async with self._lock:
            now = self._clock()
            expires_at = self._expires.get(key)
            if expires_at is not None and expires_at > now:
                return False
            self._expires[key] = now + ttl_seconds
            return True

    async def reset(self, key: str) -> None:
        async with self._lock:
            self._expires.pop(key, None)


class RedisCooldown(CooldownBackend):
    """Cooldowns shared across engine instances (SET NX PX)."""

    def __init__(self, redis_client: redis.Redis, key_prefix: Optional[str] = None):
        self.redis = redis_client
        self.prefix = key_prefix if key_prefix is not None else settings.redis_key_prefix

    def _key(self, key: str) -> str:
        return f"{self.prefix}cooldown:{key}"

    async def try_acquire(self, key: str, ttl_seconds: float) -> bool:
        acquired = await self.redis.set(
            self._key(key), "1", nx=True, px=max(1, int(ttl_seconds * 1000))
        )
        return bool(acquired)

    async def reset(self, key: str) -> None:
        await self.redis.delete(self._key(key))
