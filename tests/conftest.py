"""
Pytest Configuration and Fixtures - Referral Risk Engine

Provides shared fixtures: in-memory stores, wired managers and engine,
sample attempts, and Redis/API clients.
"""

from datetime import datetime, timedelta, UTC
from typing import AsyncGenerator, Callable

import pytest
import pytest_asyncio
import redis.asyncio as redis
from httpx import AsyncClient, ASGITransport

from referral_guard.config import settings
from referral_guard.alerts import AlertManager, MemoryCooldown
from referral_guard.engine import RiskEngine
from referral_guard.enforcement import AccountEnforcement
from referral_guard.notifications import NotificationService
from referral_guard.review import ReviewCaseManager
from referral_guard.schemas import DeviceFingerprint, RegistrationAttempt, UserRecord
from referral_guard.store import MemorySignalStore, MemoryStore


# Fixed reference time (a Wednesday, business hours)
BASE_TIME = datetime(2026, 3, 4, 12, 0, tzinfo=UTC)


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: unit tests (no infrastructure)")
    config.addinivalue_line("markers", "integration: integration tests (requires Redis)")


@pytest.fixture
def signal_store() -> MemorySignalStore:
    return MemorySignalStore()


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def notifier(store) -> NotificationService:
    return NotificationService(store)


@pytest.fixture
def alert_manager(store, notifier) -> AlertManager:
    return AlertManager(store, notifier=notifier, cooldown=MemoryCooldown())


@pytest.fixture
def enforcement(store, notifier) -> AccountEnforcement:
    return AccountEnforcement(store, case_store=store, notifier=notifier)


@pytest.fixture
def case_manager(store, enforcement) -> ReviewCaseManager:
    return ReviewCaseManager(store, enforcement=enforcement)


@pytest.fixture
def engine(signal_store, alert_manager, case_manager, enforcement) -> RiskEngine:
    return RiskEngine(
        signal_store,
        alerts=alert_manager,
        cases=case_manager,
        enforcement=enforcement,
    )


@pytest.fixture
def sample_fingerprint() -> DeviceFingerprint:
    return DeviceFingerprint(
        user_agent="Mozilla/5.0 (Macintosh; Intel Mac OS X 14_3) Safari/605.1.15",
        screen_resolution="1512x982",
        timezone="Europe/Berlin",
        language="de-DE",
        platform="MacIntel",
        cookie_enabled=True,
    )


@pytest.fixture
def make_attempt() -> Callable[..., RegistrationAttempt]:
    """Factory for registration attempts at BASE_TIME (+ offset seconds)."""

    def _make(
        email: str = "new.user@example.com",
        ip: str = "203.0.113.10",
        user_agent: str = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) Chrome/122.0",
        offset_seconds: float = 0,
        **kwargs,
    ) -> RegistrationAttempt:
        return RegistrationAttempt(
            ip=ip,
            user_agent=user_agent,
            email=email,
            timestamp=BASE_TIME + timedelta(seconds=offset_seconds),
            **kwargs,
        )

    return _make


@pytest.fixture
def inviter(sample_fingerprint) -> UserRecord:
    return UserRecord(
        id="user_inviter",
        email="john.doe@example.com",
        registration_ip="198.51.100.7",
        user_agent=sample_fingerprint.user_agent,
        device_fingerprint=sample_fingerprint,
        created_at=BASE_TIME - timedelta(days=30),
    )


@pytest_asyncio.fixture
async def redis_client() -> AsyncGenerator[redis.Redis, None]:
    """
    Get Redis client for tests.

    Uses test-specific key prefix to avoid conflicts.
    """
    client = redis.Redis(
        host=settings.redis_host,
        port=settings.redis_port,
        db=settings.redis_db,
        decode_responses=True,
    )

    try:
        await client.ping()
    except Exception:
        await client.aclose()
        pytest.skip("Redis not available")

    yield client

    keys = await client.keys("test:referral:*")
    if keys:
        await client.delete(*keys)
    await client.aclose()


@pytest_asyncio.fixture
async def api_client(monkeypatch) -> AsyncGenerator[AsyncClient, None]:
    """
    Get async HTTP client for API tests.

    Runs the app lifespan on the in-memory backend without the scheduler.
    """
    from referral_guard.api.main import app, lifespan

    monkeypatch.setattr(settings, "storage_backend", "memory")
    monkeypatch.setattr(settings, "scheduler_enabled", False)
    monkeypatch.setattr(settings, "metrics_external_enabled", False)
    monkeypatch.setattr(settings, "api_token", None)
    monkeypatch.setattr(settings, "admin_token", None)
    monkeypatch.setattr(settings, "metrics_token", None)

    async with lifespan(app):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            yield client
