"""
Notification Channels

Delivery adapters used by NotificationService. Real providers
(SMTP, push, SMS) live outside the engine; LogChannel stands in for
them, and WebhookChannel posts JSON over HTTP.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

import httpx

from ..errors import NotificationDeliveryError
from ..schemas import Notification

logger = logging.getLogger("referral_guard.notifications")


class NotificationChannel(ABC):
    """One delivery mechanism. ``deliver`` raises NotificationDeliveryError on failure."""

    @abstractmethod
    async def deliver(self, notification: Notification) -> None:
        ...


class LogChannel(NotificationChannel):
    """Writes the notification to the log. Used where no provider is wired in."""

    async def deliver(self, notification: Notification) -> None:
        logger.info(
            "Notification %s [%s/%s] to %s: %s",
            notification.id,
            notification.channel.value,
            notification.type.value,
            notification.user_id,
            notification.title,
        )


class WebhookChannel(NotificationChannel):
    """
    POSTs the notification as JSON.

    The URL comes from ``metadata["webhook_url"]`` when present, else
    from the channel default.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        default_url: Optional[str] = None,
        timeout_seconds: float = 5.0,
    ):
        self._client = client
        self._default_url = default_url
        self._timeout = timeout_seconds

    async def deliver(self, notification: Notification) -> None:
        url = notification.metadata.get("webhook_url") or self._default_url
        if not url:
            raise NotificationDeliveryError("No webhook URL configured")

        try:
            response = await self._client.post(
                url,
                json=notification.model_dump(mode="json"),
                timeout=self._timeout,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise NotificationDeliveryError(
                f"Webhook returned {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise NotificationDeliveryError(f"Webhook request failed: {e}") from e
