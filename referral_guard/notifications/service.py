"""
Notification Service

Queues notifications and delivers them through registered channels.

Every notification is stored first (status pending) and then either
delivered immediately or left for the scheduler's dispatch run.
Delivery outcomes are recorded per notification:
pending -> sent | failed (failed is retried until max attempts).
"""

import logging
from datetime import datetime, timedelta, UTC
from typing import Optional
from uuid import uuid4

from ..config import settings
from ..metrics import metrics
from ..schemas import (
    Notification,
    NotificationRequest,
    NotificationStatus,
    NotificationChannelType,
)
from ..store import NotificationStore
from .channels import NotificationChannel, LogChannel

logger = logging.getLogger("referral_guard.notifications")


class NotificationService:
    """
    Notification sender used by alerts, enforcement and the scheduler.

    Channels are looked up by the notification's channel type; types
    without a registered channel use the fallback (LogChannel by default).
    """

    def __init__(
        self,
        store: NotificationStore,
        channels: Optional[dict[NotificationChannelType, NotificationChannel]] = None,
        fallback: Optional[NotificationChannel] = None,
        max_attempts: int = None,
    ):
        """
        Initialize notification service.

        Args:
            store: Notification store
            channels: Delivery channel per channel type
            fallback: Channel for types without a registered channel
            max_attempts: Delivery attempts before a notification stays failed
        """
        self.store = store
        self.channels = dict(channels or {})
        self.fallback = fallback or LogChannel()
        self.max_attempts = max_attempts or settings.notification_max_attempts

    async def send_notification(
        self,
        request: NotificationRequest,
        immediate: bool = False,
    ) -> str:
        """
        Queue a notification.

        Args:
            request: What to send and to whom
            immediate: Deliver right away instead of waiting for the scheduler

        Returns:
            Notification id
        """
        notification = Notification(
            id=f"ntf_{uuid4().hex[:16]}",
            **request.model_dump(),
        )
        await self.store.save_notification(notification)

        if immediate:
            await self.dispatch(notification)

        return notification.id

    async def dispatch(self, notification: Notification) -> bool:
        """
        Deliver one notification and record the outcome.

        Never raises for delivery errors; returns True when sent.
        """
        channel = self.channels.get(notification.channel, self.fallback)
        attempts = notification.attempts + 1

        try:
            await channel.deliver(notification)
        except Exception as e:
            logger.warning(
                "Delivery of notification %s failed (attempt %d): %s",
                notification.id,
                attempts,
                e,
            )
            updated = notification.model_copy(update={
                "status": NotificationStatus.FAILED,
                "attempts": attempts,
                "last_error": str(e),
            })
            await self.store.save_notification(updated)
            metrics.notifications_total.labels(
                channel=notification.channel.value, status="failed"
            ).inc()
            return False

        updated = notification.model_copy(update={
            "status": NotificationStatus.SENT,
            "attempts": attempts,
            "sent_at": datetime.now(UTC),
            "last_error": None,
        })
        await self.store.save_notification(updated)
        metrics.notifications_total.labels(
            channel=notification.channel.value, status="sent"
        ).inc()
        return True

    async def dispatch_pending(self, now: Optional[datetime] = None) -> tuple[int, int]:
        """
        Deliver every due notification; one failure never stops the batch.

        Returns:
            Tuple of (sent, failed)
        """
        now = now or datetime.now(UTC)
        due = await self.store.list_dispatchable(now, self.max_attempts)

        sent = failed = 0
        for notification in due:
            try:
                delivered = await self.dispatch(notification)
            except Exception as e:
                logger.error("Could not record delivery of %s: %s", notification.id, e)
                delivered = False
            if delivered:
                sent += 1
            else:
                failed += 1

        if due:
            logger.info("Dispatched notifications: %d sent, %d failed", sent, failed)
        return sent, failed

    async def cleanup(self, retention_days: int = None, now: Optional[datetime] = None) -> int:
        """Delete sent/failed notifications older than the retention period."""
        now = now or datetime.now(UTC)
        days = retention_days or settings.notification_retention_days
        removed = await self.store.delete_notifications_before(now - timedelta(days=days))
        if removed:
            logger.info("Removed %d notifications older than %d days", removed, days)
        return removed
