"""
Redis Signal Store

Signal storage backed by Redis:
- Attempt windows (by IP, user agent, email domain) in ZSETs
- Device fingerprint -> distinct users in ZSETs
- User records in hashes
- Behavior samples in one ZSET per (user, pattern type)
- Suspicious-activity audit log in a capped list

Key format follows WindowCounter: {prefix}{entity_type}:{entity_id}:{metric}
"""

import hashlib
import logging
import time
from datetime import datetime, timedelta
from typing import Optional
from uuid import uuid4

import redis.asyncio as redis
from pydantic import ValidationError

from ..config import settings
from ..metrics import metrics
from ..schemas import (
    RegistrationAttempt,
    UserRecord,
    DeviceFingerprint,
    BehaviorPattern,
    PatternType,
    SuspiciousActivity,
)
from .base import SignalStore
from .velocity import WindowCounter

logger = logging.getLogger("referral_guard.store")


def _to_ms(ts: datetime) -> int:
    return int(ts.timestamp() * 1000)


def _short_hash(value: str) -> str:
    """Stable short key component for long values such as user agents."""
    return hashlib.sha1(value.encode("utf-8")).hexdigest()[:16]


class RedisSignalStore(SignalStore):
    """
    SignalStore backed by Redis.

    All counters reference the timestamps carried by the attempts and
    samples themselves, so windows are evaluated relative to the
    attempt being assessed.
    """

    AUDIT_LOG_CAP = 10_000

    def __init__(
        self,
        redis_client: redis.Redis,
        key_prefix: Optional[str] = None,
        attempt_retention_seconds: int = 86400,
        behavior_retention_hours: Optional[int] = None,
    ):
        """
        Initialize Redis signal store.

        Args:
            redis_client: Async Redis client (decode_responses=True)
            key_prefix: Prefix for all keys (default from settings)
            attempt_retention_seconds: How long attempt windows are kept
            behavior_retention_hours: Retention horizon for behavior samples
        """
        self.redis = redis_client
        self.prefix = key_prefix if key_prefix is not None else settings.redis_key_prefix
        self.attempt_retention = attempt_retention_seconds
        self.behavior_retention = timedelta(
            hours=behavior_retention_hours or settings.behavior_retention_hours
        )
        self.counter = WindowCounter(redis_client, self.prefix, attempt_retention_seconds)

    def _observe(self, operation: str, started_at: float) -> None:
        metrics.store_latency.labels(operation=operation).observe(
            (time.perf_counter() - started_at) * 1000
        )

    # =========================================================================
    # Attempts
    # =========================================================================

    def _attempt_dimensions(self, attempt: RegistrationAttempt) -> list[tuple[str, str]]:
        dimensions = [("ip", attempt.ip)]
        if attempt.user_agent:
            dimensions.append(("ua", _short_hash(attempt.user_agent)))
        if attempt.email_domain:
            dimensions.append(("domain", attempt.email_domain))
        return dimensions

    async def record_attempt(
        self,
        attempt: RegistrationAttempt,
        user_id: Optional[str] = None,
    ) -> None:
        started_at = time.perf_counter()
        attempt_id = uuid4().hex
        ts = _to_ms(attempt.timestamp)

        for entity_type, entity_id in self._attempt_dimensions(attempt):
            await self.counter.increment(entity_type, entity_id, "attempts", attempt_id, ts)
            await self.counter.cleanup_expired(
                entity_type, entity_id, "attempts", self.attempt_retention
            )

        if attempt.device_fingerprint:
            owner = user_id or attempt.email.lower()
            # Fingerprint ownership is not windowed; keep it for 30 days
            await self.counter.add_distinct(
                "fingerprint",
                attempt.device_fingerprint.hash,
                "users",
                owner,
                ts,
                ttl_seconds=30 * 86400,
            )

        self._observe("record_attempt", started_at)

    async def _count(self, entity_type: str, entity_id: str, since: datetime) -> int:
        started_at = time.perf_counter()
        count = await self.counter.count_since(entity_type, entity_id, "attempts", _to_ms(since))
        self._observe(f"count_{entity_type}", started_at)
        return count

    async def count_by_ip_since(self, ip: str, since: datetime) -> int:
        return await self._count("ip", ip, since)

    async def count_by_user_agent_since(self, user_agent: str, since: datetime) -> int:
        return await self._count("ua", _short_hash(user_agent), since)

    async def count_by_email_domain_since(self, domain: str, since: datetime) -> int:
        return await self._count("domain", domain.lower(), since)

    async def count_distinct_users_by_fingerprint(self, fingerprint_hash: str) -> int:
        started_at = time.perf_counter()
        count = await self.counter.count_distinct("fingerprint", fingerprint_hash, "users")
        self._observe("count_fingerprint", started_at)
        return count

    # =========================================================================
    # Users
    # =========================================================================

    def _user_key(self, user_id: str) -> str:
        return f"{self.prefix}profile:user:{user_id}"

    async def get_user(self, user_id: str) -> Optional[UserRecord]:
        """Get user record from Redis hash."""
        data = await self.redis.hgetall(self._user_key(user_id))  # type: ignore[misc]

        if not data:
            return None

        fingerprint = None
        if data.get("device_fingerprint"):
            try:
                fingerprint = DeviceFingerprint.model_validate_json(data["device_fingerprint"])
            except ValidationError as e:
                logger.warning("Malformed fingerprint for user %s ignored: %s", user_id, e)

        user = UserRecord(
            id=user_id,
            email=data.get("email", ""),
            registration_ip=data.get("registration_ip") or None,
            user_agent=data.get("user_agent") or None,
            device_fingerprint=fingerprint,
        )
        if data.get("created_at"):
            user.created_at = datetime.fromisoformat(data["created_at"])
        return user

    async def save_user(self, user: UserRecord) -> None:
        mapping = {
            "email": user.email,
            "registration_ip": user.registration_ip or "",
            "user_agent": user.user_agent or "",
            "device_fingerprint": user.device_fingerprint.model_dump_json() if user.device_fingerprint else "",
            "created_at": user.created_at.isoformat(),
        }
        await self.redis.hset(self._user_key(user.id), mapping=mapping)  # type: ignore[misc]

        if user.device_fingerprint:
            await self.counter.add_distinct(
                "fingerprint",
                user.device_fingerprint.hash,
                "users",
                user.id,
                _to_ms(user.created_at),
                ttl_seconds=30 * 86400,
            )

    # =========================================================================
    # Behavior samples
    # =========================================================================

    def _behavior_key(self, user_id: str, pattern_type: PatternType) -> str:
        return f"{self.prefix}behavior:{user_id}:{pattern_type.value}"

    def _parse_sample(self, raw: str) -> Optional[BehaviorPattern]:
        try:
            return BehaviorPattern.model_validate_json(raw)
        except ValidationError as e:
            logger.warning("Malformed behavior sample skipped: %s", e)
            return None

    async def append_behavior_sample(self, pattern: BehaviorPattern) -> None:
        started_at = time.perf_counter()
        key = self._behavior_key(pattern.user_id, pattern.pattern_type)
        ts = _to_ms(pattern.timestamp)
        cutoff = ts - int(self.behavior_retention.total_seconds() * 1000)

        pipe = self.redis.pipeline()
        pipe.zadd(key, {pattern.model_dump_json(): ts})
        # Retention is relative to the newest sample
        pipe.zremrangebyscore(key, 0, f"({cutoff}")
        pipe.expire(key, int(self.behavior_retention.total_seconds()))
        await pipe.execute()
        self._observe("append_behavior", started_at)

    async def query_behavior_samples(
        self,
        user_id: str,
        start: datetime,
        end: datetime,
        pattern_type: Optional[PatternType] = None,
    ) -> list[BehaviorPattern]:
        types = [pattern_type] if pattern_type else list(PatternType)

        pipe = self.redis.pipeline()
        for t in types:
            pipe.zrangebyscore(self._behavior_key(user_id, t), _to_ms(start), _to_ms(end))
        results = await pipe.execute()

        samples = [
            sample
            for raw_list in results
            for raw in raw_list
            if (sample := self._parse_sample(raw)) is not None
        ]
        samples.sort(key=lambda s: s.timestamp)
        return samples

    async def recent_behavior_samples(
        self,
        user_id: str,
        pattern_type: PatternType,
        limit: int,
    ) -> list[BehaviorPattern]:
        if limit <= 0:
            return []
        raws = await self.redis.zrange(
            self._behavior_key(user_id, pattern_type), -limit, -1
        )
        return [s for raw in raws if (s := self._parse_sample(raw)) is not None]

    # =========================================================================
    # Audit log
    # =========================================================================

    def _audit_key(self) -> str:
        return f"{self.prefix}audit:suspicious"

    async def record_suspicious_activity(self, entry: SuspiciousActivity) -> None:
        pipe = self.redis.pipeline()
        pipe.lpush(self._audit_key(), entry.model_dump_json())
        pipe.ltrim(self._audit_key(), 0, self.AUDIT_LOG_CAP - 1)
        await pipe.execute()

    async def list_suspicious_activities(self, limit: int = 100) -> list[SuspiciousActivity]:
        raws = await self.redis.lrange(self._audit_key(), 0, limit - 1)  # type: ignore[misc]
        entries = []
        for raw in raws:
            try:
                entries.append(SuspiciousActivity.model_validate_json(raw))
            except ValidationError as e:
                logger.warning("Malformed audit entry skipped: %s", e)
        return entries
