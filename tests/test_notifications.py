"""
Notification Tests

Tests for the notification service, delivery channels and the
notification scheduler.
"""

import asyncio
from datetime import datetime, timedelta, UTC
from unittest.mock import AsyncMock

import httpx
import pytest

from referral_guard.errors import NotificationDeliveryError
from referral_guard.notifications import (
    NotificationChannel,
    NotificationScheduler,
    NotificationService,
    WebhookChannel,
)
from referral_guard.schemas import (
    AlertDraft,
    AlertSeverity,
    AlertType,
    CaseType,
    InviteCode,
    NetworkEvidence,
    Notification,
    NotificationChannelType,
    NotificationRequest,
    NotificationStatus,
    NotificationType,
    RiskLevel,
)


def _request(**kwargs):
    defaults = dict(
        user_id="user_1",
        type=NotificationType.SECURITY_ALERT,
        title="Security alert",
        content="Something happened",
    )
    defaults.update(kwargs)
    return NotificationRequest(**defaults)


class FailingChannel(NotificationChannel):
    """Channel whose provider is always down."""

    def __init__(self):
        self.calls = 0

    async def deliver(self, notification):
        self.calls += 1
        raise NotificationDeliveryError("provider unavailable")


class TestNotificationService:
    """Tests for queueing and dispatch."""

    @pytest.mark.asyncio
    async def test_queued_notification_is_pending(self, store):
        service = NotificationService(store)

        notification_id = await service.send_notification(_request())

        assert notification_id.startswith("ntf_")
        assert store.notifications[notification_id].status == NotificationStatus.PENDING

    @pytest.mark.asyncio
    async def test_immediate_delivery(self, store):
        service = NotificationService(store)

        notification_id = await service.send_notification(_request(), immediate=True)

        notification = store.notifications[notification_id]
        assert notification.status == NotificationStatus.SENT
        assert notification.attempts == 1
        assert notification.sent_at is not None

    @pytest.mark.asyncio
    async def test_failed_delivery_is_recorded(self, store):
        channel = FailingChannel()
        service = NotificationService(store, channels={NotificationChannelType.EMAIL: channel})

        notification_id = await service.send_notification(
            _request(channel=NotificationChannelType.EMAIL), immediate=True
        )

        notification = store.notifications[notification_id]
        assert notification.status == NotificationStatus.FAILED
        assert notification.attempts == 1
        assert notification.last_error == "provider unavailable"

    @pytest.mark.asyncio
    async def test_failed_notifications_retried_until_max_attempts(self, store):
        channel = FailingChannel()
        service = NotificationService(
            store, channels={NotificationChannelType.EMAIL: channel}, max_attempts=2
        )
        await service.send_notification(_request(channel=NotificationChannelType.EMAIL))

        assert await service.dispatch_pending() == (0, 1)
        assert await service.dispatch_pending() == (0, 1)
        assert await service.dispatch_pending() == (0, 0)
        assert channel.calls == 2

    @pytest.mark.asyncio
    async def test_one_failure_does_not_stop_batch(self, store):
        service = NotificationService(store, channels={NotificationChannelType.EMAIL: FailingChannel()})
        await service.send_notification(_request(channel=NotificationChannelType.EMAIL))
        await service.send_notification(_request(channel=NotificationChannelType.IN_APP))

        assert await service.dispatch_pending() == (1, 1)

    @pytest.mark.asyncio
    async def test_scheduled_notification_waits(self, store):
        service = NotificationService(store)
        later = datetime.now(UTC) + timedelta(hours=2)
        await service.send_notification(_request(scheduled_at=later))

        assert await service.dispatch_pending() == (0, 0)
        assert await service.dispatch_pending(now=later) == (1, 0)

    @pytest.mark.asyncio
    async def test_cleanup_keeps_pending(self, store):
        service = NotificationService(store)
        await service.send_notification(_request(), immediate=True)
        pending_id = await service.send_notification(_request())

        removed = await service.cleanup(retention_days=30, now=datetime.now(UTC) + timedelta(days=31))

        assert removed == 1
        assert list(store.notifications) == [pending_id]


class TestWebhookChannel:
    """Tests for webhook delivery."""

    def _notification(self, **metadata):
        return Notification(id="ntf_1", metadata=metadata, **_request().model_dump(exclude={"metadata"}))

    @pytest.mark.asyncio
    async def test_posts_json(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(204)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            channel = WebhookChannel(client, default_url="https://hooks.example.com/notify")
            await channel.deliver(self._notification())

        assert str(seen[0].url) == "https://hooks.example.com/notify"
        assert b'"ntf_1"' in seen[0].content

    @pytest.mark.asyncio
    async def test_metadata_url_wins(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(str(request.url))
            return httpx.Response(200)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            channel = WebhookChannel(client, default_url="https://hooks.example.com/notify")
            await channel.deliver(self._notification(webhook_url="https://other.example.com/in"))

        assert seen == ["https://other.example.com/in"]

    @pytest.mark.asyncio
    async def test_error_status_raises(self):
        async with httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(500))) as client:
            channel = WebhookChannel(client, default_url="https://hooks.example.com/notify")
            with pytest.raises(NotificationDeliveryError, match="500"):
                await channel.deliver(self._notification())

    @pytest.mark.asyncio
    async def test_missing_url_raises(self):
        channel = WebhookChannel(AsyncMock())
        with pytest.raises(NotificationDeliveryError):
            await channel.deliver(self._notification())


class TestNotificationScheduler:
    """Tests for scheduler ticks and jobs."""

    @pytest.fixture
    def service(self):
        service = AsyncMock()
        service.dispatch_pending.return_value = (0, 0)
        service.cleanup.return_value = 0
        return service

    @pytest.fixture
    def scheduler(self, service, store):
        return NotificationScheduler(service, store, alert_store=store, case_store=store, timezone="UTC")

    @pytest.mark.asyncio
    async def test_dispatch_runs_once_per_day(self, scheduler, service):
        nine = datetime(2026, 3, 4, 9, 0, tzinfo=UTC)

        await scheduler.run_tick(nine)
        await scheduler.run_tick(nine + timedelta(minutes=30))
        await scheduler.run_tick(nine + timedelta(days=1))

        assert service.dispatch_pending.await_count == 2

    @pytest.mark.asyncio
    async def test_nothing_due_outside_job_hours(self, scheduler, service):
        await scheduler.run_tick(datetime(2026, 3, 4, 15, 0, tzinfo=UTC))

        service.dispatch_pending.assert_not_awaited()
        service.cleanup.assert_not_awaited()
        service.send_notification.assert_not_awaited()
        assert scheduler.last_tick_at is not None

    @pytest.mark.asyncio
    async def test_cleanup_at_cleanup_hour(self, scheduler, service):
        await scheduler.run_tick(datetime(2026, 3, 4, 2, 0, tzinfo=UTC))
        service.cleanup.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_weekly_digest_on_monday(self, scheduler, service):
        monday = datetime(2026, 3, 2, 10, 0, tzinfo=UTC)

        await scheduler.run_tick(monday)

        request = service.send_notification.await_args.args[0]
        assert request.type == NotificationType.SECURITY_DIGEST
        assert request.channel == NotificationChannelType.EMAIL
        assert request.metadata["period"] == "weekly"

    @pytest.mark.asyncio
    async def test_monthly_digest_on_first(self, scheduler, service):
        await scheduler.run_tick(datetime(2026, 4, 1, 10, 0, tzinfo=UTC))

        periods = [c.args[0].metadata["period"] for c in service.send_notification.await_args_list]
        assert periods == ["monthly"]

    @pytest.mark.asyncio
    async def test_local_timezone(self, service, store):
        scheduler = NotificationScheduler(service, store, timezone="America/New_York")

        # 14:00 UTC is 09:00 in New York (EST)
        await scheduler.run_tick(datetime(2026, 3, 4, 14, 0, tzinfo=UTC))

        service.dispatch_pending.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failing_job_does_not_stop_tick(self, scheduler, service, store):
        service.dispatch_pending.side_effect = RuntimeError("store down")
        now = datetime.now(UTC).replace(hour=9, minute=0)
        await store.save_invite_code(
            InviteCode(id="inv_1", code="FRIEND-42", inviter_id="user_1", expires_at=now + timedelta(days=2))
        )

        await scheduler.run_tick(now)

        service.send_notification.assert_awaited()
        assert scheduler.status()["last_runs"]["dispatch"] == now.date().isoformat()

    @pytest.mark.asyncio
    async def test_digest_counts(self, store, alert_manager, case_manager):
        await alert_manager.create_alert(AlertDraft(
            user_id="user_1",
            alert_type=AlertType.NETWORK_ABUSE,
            severity=AlertSeverity.HIGH,
            description="Blocked registration",
            evidence=NetworkEvidence(ip="203.0.113.10"),
        ))
        await case_manager.create_case("user_1", CaseType.FRAUD_DETECTION, RiskLevel.HIGH)
        service = NotificationService(store)
        scheduler = NotificationScheduler(service, store, alert_store=store, case_store=store)

        notification_id = await scheduler.send_digest("weekly", datetime(2026, 3, 2, 10, 0, tzinfo=UTC))

        digest = store.notifications[notification_id]
        assert digest.metadata["active_alerts"] == 1
        assert digest.metadata["open_cases"] == 1
        assert digest.content.startswith("1 active alerts, 1 open review cases")

    @pytest.mark.asyncio
    async def test_start_and_stop(self, scheduler):
        scheduler.start()
        await asyncio.sleep(0)

        assert scheduler.is_running
        assert scheduler.status()["running"]

        await scheduler.stop()

        assert not scheduler.is_running


class TestInviteExpiryReminders:
    """Tests for invite expiry reminders."""

    @pytest.fixture
    def scheduler(self, store):
        return NotificationScheduler(NotificationService(store), store)

    async def _invite(self, store, now, delta, invite_id="inv_1"):
        invite = InviteCode(id=invite_id, code="FRIEND-42", inviter_id="user_1", expires_at=now + delta)
        await store.save_invite_code(invite)
        return invite

    @pytest.mark.asyncio
    async def test_in_app_reminder(self, scheduler, store):
        now = datetime.now(UTC)
        await self._invite(store, now, timedelta(days=3))

        assert await scheduler.send_invite_expiry_reminders(now) == 1

        notification = next(iter(store.notifications.values()))
        assert notification.channel == NotificationChannelType.IN_APP
        assert notification.content == "Invite code FRIEND-42 expires in 3 days."
        assert notification.metadata["days_left"] == 3

    @pytest.mark.asyncio
    async def test_last_day_also_emails(self, scheduler, store):
        now = datetime.now(UTC)
        await self._invite(store, now, timedelta(hours=12))

        assert await scheduler.send_invite_expiry_reminders(now) == 2

        channels = {n.channel for n in store.notifications.values()}
        assert channels == {NotificationChannelType.IN_APP, NotificationChannelType.EMAIL}
        assert all(n.content.endswith("expires in 1 day.") for n in store.notifications.values())

    @pytest.mark.asyncio
    async def test_reminders_deduplicated(self, scheduler, store):
        now = datetime.now(UTC)
        await self._invite(store, now, timedelta(days=3))

        await scheduler.send_invite_expiry_reminders(now)

        assert await scheduler.send_invite_expiry_reminders(now + timedelta(hours=1)) == 0

    @pytest.mark.asyncio
    async def test_far_and_expired_codes_ignored(self, scheduler, store):
        now = datetime.now(UTC)
        await self._invite(store, now, timedelta(days=30), invite_id="inv_far")
        await self._invite(store, now, -timedelta(hours=1), invite_id="inv_expired")

        assert await scheduler.send_invite_expiry_reminders(now) == 0
