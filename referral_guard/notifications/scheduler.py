"""
Notification Scheduler

Hourly background loop for time-based notification jobs:

    dispatch        every day at the dispatch hour
    weekly digest   Mondays at the digest hour
    monthly digest  1st of the month at the digest hour
    cleanup         every day at the cleanup hour
    invite expiry   every tick

Hours are evaluated in the configured timezone. Each daily job runs at
most once per local date even if the tick interval is shortened.
"""

import asyncio
import logging
import math
from datetime import date, datetime, timedelta, UTC
from typing import Optional
from zoneinfo import ZoneInfo

from ..config import settings
from ..metrics import metrics
from ..schemas import (
    ACTIVE_ALERT_STATUSES,
    OPEN_CASE_STATUSES,
    InviteCode,
    NotificationChannelType,
    NotificationRequest,
    NotificationType,
)
from ..store import AlertStore, CaseStore, NotificationStore
from .service import NotificationService

logger = logging.getLogger("referral_guard.scheduler")

# Upper bound for digest counts
DIGEST_COUNT_LIMIT = 10_000


class NotificationScheduler:
    """
    Periodic notification jobs.

    Usage:
        scheduler = NotificationScheduler(service, store, alert_store, case_store)
        scheduler.start()
        ...
        await scheduler.stop()
    """

    def __init__(
        self,
        service: NotificationService,
        store: NotificationStore,
        alert_store: Optional[AlertStore] = None,
        case_store: Optional[CaseStore] = None,
        tick_seconds: int = None,
        timezone: str = None,
        admin_user_id: str = None,
    ):
        self.service = service
        self.store = store
        self.alert_store = alert_store
        self.case_store = case_store
        self.tick_seconds = tick_seconds or settings.scheduler_tick_seconds
        self.timezone = ZoneInfo(timezone or settings.scheduler_timezone)
        self.admin_user_id = admin_user_id or settings.alert_admin_user_id

        self._task: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()
        self._last_runs: dict[str, date] = {}
        self.last_tick_at: Optional[datetime] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the loop; the first tick runs immediately."""
        if self.is_running:
            return
        self._task = asyncio.create_task(self._loop(), name="notification-scheduler")
        metrics.scheduler_running.set(1)
        logger.info("Notification scheduler started (tick every %ds)", self.tick_seconds)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        metrics.scheduler_running.set(0)
        logger.info("Notification scheduler stopped")

    def status(self) -> dict:
        return {
            "running": self.is_running,
            "tick_seconds": self.tick_seconds,
            "timezone": str(self.timezone),
            "last_tick_at": self.last_tick_at.isoformat() if self.last_tick_at else None,
            "last_runs": {job: day.isoformat() for job, day in self._last_runs.items()},
        }

    async def _loop(self) -> None:
        while True:
            await self.run_tick()
            await asyncio.sleep(self.tick_seconds)

    async def run_tick(self, now: Optional[datetime] = None) -> None:
        """
        Run every job that is due at ``now``.

        A failing job is logged and counted; the remaining jobs still run.
        """
        now = now or datetime.now(UTC)
        local = now.astimezone(self.timezone)

        async with self._lock:
            metrics.scheduler_ticks.inc()
            self.last_tick_at = now

            if self._due("dispatch", local, settings.scheduler_dispatch_hour):
                await self._run("dispatch", self.service.dispatch_pending(now))

            if local.weekday() == 0 and self._due("weekly_digest", local, settings.scheduler_digest_hour):
                await self._run("weekly_digest", self.send_digest("weekly", now))

            if local.day == 1 and self._due("monthly_digest", local, settings.scheduler_digest_hour):
                await self._run("monthly_digest", self.send_digest("monthly", now))

            if self._due("cleanup", local, settings.scheduler_cleanup_hour):
                await self._run("cleanup", self.service.cleanup(now=now))

            await self._run("invite_expiry", self.send_invite_expiry_reminders(now))

    def _due(self, job: str, local: datetime, hour: int) -> bool:
        if local.hour != hour or self._last_runs.get(job) == local.date():
            return False
        self._last_runs[job] = local.date()
        return True

    async def _run(self, job: str, coro) -> None:
        try:
            await coro
        except Exception as e:
            logger.error("Scheduled job %s failed: %s", job, e)
            metrics.scheduler_failures.labels(task=job).inc()

    # =========================================================================
    # Jobs
    # =========================================================================

    async def send_digest(self, period: str, now: datetime) -> str:
        """Queue a security digest for the admin user."""
        active_alerts = 0
        if self.alert_store is not None:
            alerts = await self.alert_store.list_alerts(
                set(ACTIVE_ALERT_STATUSES), None, DIGEST_COUNT_LIMIT
            )
            active_alerts = len(alerts)

        open_cases = 0
        if self.case_store is not None:
            for status in OPEN_CASE_STATUSES:
                cases = await self.case_store.list_cases(status=status, limit=DIGEST_COUNT_LIMIT)
                open_cases += len(cases)

        return await self.service.send_notification(
            NotificationRequest(
                user_id=self.admin_user_id,
                type=NotificationType.SECURITY_DIGEST,
                title=f"{period.capitalize()} security digest",
                content=(
                    f"{active_alerts} active alerts, "
                    f"{open_cases} open review cases as of {now.date().isoformat()}"
                ),
                channel=NotificationChannelType.EMAIL,
                metadata={
                    "period": period,
                    "active_alerts": active_alerts,
                    "open_cases": open_cases,
                },
            )
        )

    async def send_invite_expiry_reminders(self, now: datetime) -> int:
        """
        Remind inviters about invite codes expiring soon.

        One reminder per code per 24 hours; codes with a day or less left
        also get an email.
        """
        until = now + timedelta(days=settings.invite_expiry_lookahead_days)
        codes = await self.store.list_expiring_invite_codes(now, until)

        sent = 0
        for invite in codes:
            already = await self.store.has_notification_since(
                NotificationType.INVITE_EXPIRING,
                "invite_code_id",
                invite.id,
                now - timedelta(hours=24),
            )
            if already:
                continue
            for request in self._invite_reminders(invite, now):
                await self.service.send_notification(request)
                sent += 1

        if sent:
            logger.info("Queued %d invite expiry reminders", sent)
        return sent

    @staticmethod
    def _invite_reminders(invite: InviteCode, now: datetime) -> list[NotificationRequest]:
        days_left = max(1, math.ceil((invite.expires_at - now) / timedelta(days=1)))
        unit = "day" if days_left == 1 else "days"
        channels = [NotificationChannelType.IN_APP]
        if days_left <= 1:
            channels.append(NotificationChannelType.EMAIL)
        return [
            NotificationRequest(
                user_id=invite.inviter_id,
                type=NotificationType.INVITE_EXPIRING,
                title="Your invite code is expiring",
                content=f"Invite code {invite.code} expires in {days_left} {unit}.",
                channel=channel,
                metadata={"invite_code_id": invite.id, "days_left": days_left},
            )
            for channel in channels
        ]
