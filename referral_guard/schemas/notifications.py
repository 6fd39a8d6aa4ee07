"""
Notification Schemas

Queued user/admin notifications and the invite codes whose expiry
the scheduler reminds inviters about.
"""

from datetime import datetime, UTC
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


def _utc_now() -> datetime:
    """Return current UTC time (timezone-aware)."""
    return datetime.now(UTC)


class NotificationChannelType(str, Enum):
    EMAIL = "email"
    IN_APP = "in_app"
    PUSH = "push"
    SMS = "sms"
    WEBHOOK = "webhook"


class NotificationStatus(str, Enum):
    """pending -> sent | failed (failed is retried until max attempts)."""
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class NotificationType(str, Enum):
    ACCOUNT_FROZEN = "account_frozen"
    ACCOUNT_UNFROZEN = "account_unfrozen"
    ACCOUNT_BANNED = "account_banned"
    SECURITY_ALERT = "security_alert"
    SECURITY_DIGEST = "security_digest"
    CASE_DECISION = "case_decision"
    INVITE_EXPIRING = "invite_expiring"


class NotificationRequest(BaseModel):
    """What a caller asks to be delivered."""
    user_id: str = Field(
        ...,
        description="Recipient",
    )
    type: NotificationType = Field(
        ...,
    )
    title: str = Field(
        ...,
        min_length=1,
    )
    content: str = Field(
        default="",
    )
    channel: NotificationChannelType = Field(
        default=NotificationChannelType.IN_APP,
    )
    metadata: dict[str, Any] = Field(
        default_factory=dict,
    )
    scheduled_at: Optional[datetime] = Field(
        default=None,
        description="Earliest delivery time; immediate when omitted",
    )


class Notification(NotificationRequest):
    """A queued notification and its delivery bookkeeping."""
    id: str = Field(
        ...,
    )
    status: NotificationStatus = Field(
        default=NotificationStatus.PENDING,
    )
    attempts: int = Field(
        default=0,
        ge=0,
    )
    created_at: datetime = Field(
        default_factory=_utc_now,
    )
    sent_at: Optional[datetime] = Field(
        default=None,
    )
    last_error: Optional[str] = Field(
        default=None,
    )


class InviteCode(BaseModel):
    id: str
    code: str
    inviter_id: str
    expires_at: datetime
