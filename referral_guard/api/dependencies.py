"""
API Dependencies

Builds the engine and its collaborators for the configured storage
backend, and exposes them to route handlers.
"""

from dataclasses import dataclass
from typing import Optional

import httpx
import redis.asyncio as redis
from fastapi import HTTPException, Request

from ..alerts import AlertManager, MemoryCooldown, RedisCooldown
from ..config import settings
from ..engine import RiskEngine
from ..enforcement import AccountEnforcement
from ..notifications import NotificationScheduler, NotificationService, WebhookChannel
from ..review import ReviewCaseManager
from ..schemas import NotificationChannelType
from ..store import (
    AlertStore,
    CaseStore,
    EnforcementStore,
    MemorySignalStore,
    MemoryStore,
    NotificationStore,
    PostgresStore,
    RedisSignalStore,
    SignalStore,
)


@dataclass
class Services:
    """Everything a request handler needs, built once per application."""
    signals: SignalStore
    alert_store: AlertStore
    case_store: CaseStore
    enforcement_store: EnforcementStore
    notification_store: NotificationStore
    notifier: NotificationService
    alerts: AlertManager
    enforcement: AccountEnforcement
    cases: ReviewCaseManager
    engine: RiskEngine
    scheduler: NotificationScheduler
    http_client: httpx.AsyncClient
    redis_client: Optional[redis.Redis] = None
    postgres: Optional[PostgresStore] = None


def create_redis_client() -> redis.Redis:
    """Redis client backed by a shared connection pool."""
    pool = redis.ConnectionPool.from_url(
        settings.redis_url,
        decode_responses=True,
        max_connections=20,
    )
    return redis.Redis(connection_pool=pool)


async def build_services(backend: Optional[str] = None) -> Services:
    """
    Wire stores, managers and the engine.

    Args:
        backend: "memory" or "redis" (Redis signals + PostgreSQL workflow
            tables); defaults to settings.storage_backend

    Returns:
        Services container (scheduler not started)
    """
    backend = backend or settings.storage_backend
    http_client = httpx.AsyncClient(timeout=settings.alert_webhook_timeout_seconds)

    redis_client = None
    postgres = None
    if backend == "redis":
        redis_client = create_redis_client()
        signals: SignalStore = RedisSignalStore(redis_client)
        postgres = PostgresStore(settings.postgres_url)
        await postgres.initialize()
        workflow = postgres
        cooldown = RedisCooldown(redis_client)
    else:
        signals = MemorySignalStore()
        workflow = MemoryStore()
        cooldown = MemoryCooldown()

    notifier = NotificationService(
        workflow,
        channels={
            NotificationChannelType.WEBHOOK: WebhookChannel(
                http_client,
                default_url=settings.alert_webhook_url,
                timeout_seconds=settings.alert_webhook_timeout_seconds,
            ),
        },
    )
    alerts = AlertManager(workflow, notifier=notifier, cooldown=cooldown, http_client=http_client)
    enforcement = AccountEnforcement(workflow, case_store=workflow, notifier=notifier)
    cases = ReviewCaseManager(workflow, enforcement=enforcement)
    engine = RiskEngine(signals, alerts=alerts, cases=cases, enforcement=enforcement)
    scheduler = NotificationScheduler(
        notifier,
        workflow,
        alert_store=workflow,
        case_store=workflow,
    )

    return Services(
        signals=signals,
        alert_store=workflow,
        case_store=workflow,
        enforcement_store=workflow,
        notification_store=workflow,
        notifier=notifier,
        alerts=alerts,
        enforcement=enforcement,
        cases=cases,
        engine=engine,
        scheduler=scheduler,
        http_client=http_client,
        redis_client=redis_client,
        postgres=postgres,
    )


async def close_services(services: Services) -> None:
    await services.scheduler.stop()
    await services.http_client.aclose()
    if services.redis_client is not None:
        await services.redis_client.aclose()
    if services.postgres is not None:
        await services.postgres.close()


def get_services(request: Request) -> Services:
    """Services of the running application (503 before startup)."""
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Service not initialized")
    return services
