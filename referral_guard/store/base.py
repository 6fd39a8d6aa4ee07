"""
Store Interfaces

Storage access for the risk engine sits behind these interfaces so
that any backing store can be substituted. The engine never issues
raw queries itself.

- SignalStore: attempts, fingerprint usage, users, behavior samples
  and the suspicious-activity audit log (Redis or in-memory)
- AlertStore / CaseStore / EnforcementStore / NotificationStore:
  workflow records (PostgreSQL or in-memory)
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

from ..schemas import (
    RegistrationAttempt,
    UserRecord,
    BehaviorPattern,
    PatternType,
    SuspiciousActivity,
    AnomalyAlert,
    AlertSeverity,
    AlertStatus,
    ReviewCase,
    CaseStatus,
    AccountFreeze,
    UserBan,
    RewardRecovery,
    RiskLevel,
    Notification,
    NotificationType,
    InviteCode,
)


class SignalStore(ABC):
    """Historical signals consumed by the detectors and the behavior analyzer."""

    @abstractmethod
    async def record_attempt(
        self,
        attempt: RegistrationAttempt,
        user_id: Optional[str] = None,
    ) -> None:
        """
        Record a registration attempt.

        Indexes the attempt by IP, user agent and email domain, and links
        its device fingerprint (if any) to ``user_id``, or to the attempt
        email when no user id is known yet.
        """

    @abstractmethod
    async def count_by_ip_since(self, ip: str, since: datetime) -> int:
        """Attempts from ``ip`` at or after ``since``."""

    @abstractmethod
    async def count_by_user_agent_since(self, user_agent: str, since: datetime) -> int:
        """Attempts with ``user_agent`` at or after ``since``."""

    @abstractmethod
    async def count_by_email_domain_since(self, domain: str, since: datetime) -> int:
        """Attempts for emails on ``domain`` at or after ``since``."""

    @abstractmethod
    async def count_distinct_users_by_fingerprint(self, fingerprint_hash: str) -> int:
        """Distinct users seen with a device fingerprint."""

    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[UserRecord]:
        ...

    @abstractmethod
    async def save_user(self, user: UserRecord) -> None:
        ...

    @abstractmethod
    async def append_behavior_sample(self, pattern: BehaviorPattern) -> None:
        """Append a sample; samples past the retention horizon are pruned."""

    @abstractmethod
    async def query_behavior_samples(
        self,
        user_id: str,
        start: datetime,
        end: datetime,
        pattern_type: Optional[PatternType] = None,
    ) -> list[BehaviorPattern]:
        """Samples in [start, end], oldest first."""

    @abstractmethod
    async def recent_behavior_samples(
        self,
        user_id: str,
        pattern_type: PatternType,
        limit: int,
    ) -> list[BehaviorPattern]:
        """The most recent ``limit`` samples of one type, oldest first."""

    @abstractmethod
    async def record_suspicious_activity(self, entry: SuspiciousActivity) -> None:
        ...

    @abstractmethod
    async def list_suspicious_activities(self, limit: int = 100) -> list[SuspiciousActivity]:
        """Audit entries, newest first."""


class AlertStore(ABC):

    @abstractmethod
    async def save_alert(self, alert: AnomalyAlert) -> None:
        """Insert or replace an alert."""

    @abstractmethod
    async def get_alert(self, alert_id: str) -> Optional[AnomalyAlert]:
        ...

    @abstractmethod
    async def list_alerts(
        self,
        statuses: Optional[set[AlertStatus]] = None,
        severity: Optional[AlertSeverity] = None,
        limit: int = 50,
    ) -> list[AnomalyAlert]:
        """Alerts newest first, optionally filtered."""


class CaseStore(ABC):

    @abstractmethod
    async def save_case(self, case: ReviewCase) -> None:
        """Insert or replace a review case."""

    @abstractmethod
    async def get_case(self, case_id: str) -> Optional[ReviewCase]:
        ...

    @abstractmethod
    async def list_cases(
        self,
        status: Optional[CaseStatus] = None,
        assigned_to: Optional[str] = None,
        user_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[ReviewCase]:
        """Cases newest first, optionally filtered."""


class EnforcementStore(ABC):

    @abstractmethod
    async def save_freeze(self, freeze: AccountFreeze) -> None:
        """Insert or replace a freeze entry."""

    @abstractmethod
    async def list_freezes(self, user_id: str) -> list[AccountFreeze]:
        """Freeze entries for a user, newest first."""

    @abstractmethod
    async def save_ban(self, ban: UserBan) -> None:
        ...

    @abstractmethod
    async def list_bans(self, user_id: str) -> list[UserBan]:
        """Ban entries for a user, newest first."""

    @abstractmethod
    async def save_recovery(self, recovery: RewardRecovery) -> None:
        ...

    @abstractmethod
    async def list_recoveries(self, user_id: str) -> list[RewardRecovery]:
        ...

    @abstractmethod
    async def get_risk_level(self, user_id: str) -> Optional[RiskLevel]:
        ...

    @abstractmethod
    async def set_risk_level(self, user_id: str, level: RiskLevel) -> None:
        ...


class NotificationStore(ABC):

    @abstractmethod
    async def save_notification(self, notification: Notification) -> None:
        """Insert or replace a notification."""

    @abstractmethod
    async def get_notification(self, notification_id: str) -> Optional[Notification]:
        ...

    @abstractmethod
    async def list_dispatchable(self, now: datetime, max_attempts: int) -> list[Notification]:
        """
        Notifications due for delivery, oldest first.

        Pending notifications whose ``scheduled_at`` has passed, plus failed
        notifications with fewer than ``max_attempts`` attempts.
        """

    @abstractmethod
    async def delete_notifications_before(self, cutoff: datetime) -> int:
        """Delete sent/failed notifications created before ``cutoff``; returns count."""

    @abstractmethod
    async def has_notification_since(
        self,
        notification_type: NotificationType,
        reference_key: str,
        reference_value: str,
        since: datetime,
    ) -> bool:
        """True when a notification of this type with metadata[key] == value exists since ``since``."""

    @abstractmethod
    async def save_invite_code(self, invite: InviteCode) -> None:
        ...

    @abstractmethod
    async def list_expiring_invite_codes(self, now: datetime, until: datetime) -> list[InviteCode]:
        """Invite codes with ``now < expires_at <= until``."""
