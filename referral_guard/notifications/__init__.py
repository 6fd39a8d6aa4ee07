# Notifications Module
from .channels import NotificationChannel, LogChannel, WebhookChannel
from .service import NotificationService
from .scheduler import NotificationScheduler

__all__ = [
    "NotificationChannel",
    "LogChannel",
    "WebhookChannel",
    "NotificationService",
    "NotificationScheduler",
]
