"""
Sliding Window Counters

Uses Redis Sorted Sets (ZSETs) for sliding window counters.
ZSETs allow efficient:
- Adding events with timestamps as scores
- Counting events since an arbitrary point in time
- Cleaning up expired events

Key format: {prefix}{entity_type}:{entity_id}:{metric}
Example: referral:ip:1.2.3.4:attempts
"""

import time
from typing import Optional

import redis.asyncio as redis


class WindowCounter:
    """
    Sliding window counter using Redis ZSETs.

    Each counter is a ZSET where:
    - Members are unique event identifiers (attempt ids) or, for
      distinct counters, the values being counted (user ids)
    - Scores are Unix timestamps (milliseconds)
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        key_prefix: str = "referral:",
        default_ttl_seconds: int = 86400,  # 24 hours
    ):
        """
        Initialize window counter.

        Args:
            redis_client: Async Redis client
            key_prefix: Prefix for all Redis keys
            default_ttl_seconds: Default TTL for keys (24 hours)
        """
        self.redis = redis_client
        self.prefix = key_prefix
        self.default_ttl = default_ttl_seconds

    def make_key(self, entity_type: str, entity_id: str, metric: str) -> str:
        """
        Construct Redis key for a counter.

        Args:
            entity_type: Type of entity (ip, ua, domain, fingerprint)
            entity_id: Entity identifier
            metric: Metric name (attempts, users)

        Returns:
            Full Redis key
        """
        return f"{self.prefix}{entity_type}:{entity_id}:{metric}"

    async def increment(
        self,
        entity_type: str,
        entity_id: str,
        metric: str,
        event_id: str,
        timestamp_ms: Optional[int] = None,
        ttl_seconds: Optional[int] = None,
    ) -> int:
        """
        Add an event to the counter.

        Args:
            entity_type: Type of entity
            entity_id: Entity identifier
            metric: Metric name
            event_id: Unique event identifier (for deduplication)
            timestamp_ms: Event timestamp in milliseconds (default: now)
            ttl_seconds: TTL for the key (default: default_ttl)

        Returns:
            Number of elements added (0 if event_id already exists)
        """
        key = self.make_key(entity_type, entity_id, metric)
        ts = timestamp_ms or int(time.time() * 1000)
        ttl = ttl_seconds or self.default_ttl

        pipe = self.redis.pipeline()
        pipe.zadd(key, {event_id: ts})
        # TTL refreshed on each write
        pipe.expire(key, ttl)

        results = await pipe.execute()
        return results[0]

    async def count_since(
        self,
        entity_type: str,
        entity_id: str,
        metric: str,
        since_ms: int,
    ) -> int:
        """
        Count events with a timestamp at or after ``since_ms``.

        Args:
            entity_type: Type of entity
            entity_id: Entity identifier
            metric: Metric name
            since_ms: Window start in milliseconds

        Returns:
            Count of events in the window
        """
        key = self.make_key(entity_type, entity_id, metric)
        return await self.redis.zcount(key, since_ms, "+inf")

    async def add_distinct(
        self,
        entity_type: str,
        entity_id: str,
        metric: str,
        value: str,
        timestamp_ms: Optional[int] = None,
        ttl_seconds: Optional[int] = None,
    ) -> int:
        """
        Add a value to a distinct counter.

        Unlike increment(), this uses the value itself as the member,
        so the same value won't be counted twice.

        Returns:
            Number of elements added (0 if value already exists)
        """
        key = self.make_key(entity_type, entity_id, metric)
        ts = timestamp_ms or int(time.time() * 1000)
        ttl = ttl_seconds or self.default_ttl

        pipe = self.redis.pipeline()
        pipe.zadd(key, {value: ts})
        pipe.expire(key, ttl)

        results = await pipe.execute()
        return results[0]

    async def count_distinct(self, entity_type: str, entity_id: str, metric: str) -> int:
        """Count all distinct values in a counter."""
        key = self.make_key(entity_type, entity_id, metric)
        return await self.redis.zcard(key)

    async def cleanup_expired(
        self,
        entity_type: str,
        entity_id: str,
        metric: str,
        max_age_seconds: int,
    ) -> int:
        """
        Remove expired events from a counter.

        Called on write to prevent unbounded memory growth.

        Returns:
            Number of elements removed
        """
        key = self.make_key(entity_type, entity_id, metric)
        cutoff_ms = int(time.time() * 1000) - (max_age_seconds * 1000)

        # Remove all events with score < cutoff
        return await self.redis.zremrangebyscore(key, 0, cutoff_ms)
