"""
In-Memory Stores

Process-local implementations of the store interfaces, used for
single-instance deployments (STORAGE_BACKEND=memory) and tests.
Every method completes without awaiting, so each call is atomic with
respect to other coroutines.
"""

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from ..config import settings
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
    NotificationStatus,
    NotificationType,
    InviteCode,
)
from .base import SignalStore, AlertStore, CaseStore, EnforcementStore, NotificationStore


@dataclass(frozen=True)
class _AttemptRow:
    timestamp: datetime
    ip: str
    user_agent: str
    email_domain: str


class MemorySignalStore(SignalStore):
    """SignalStore kept in process memory."""

    AUDIT_LOG_CAP = 10_000

    def __init__(
        self,
        attempt_retention_seconds: int = 86400,
        behavior_retention_hours: Optional[int] = None,
    ):
        self.attempt_retention = timedelta(seconds=attempt_retention_seconds)
        self.behavior_retention = timedelta(
            hours=behavior_retention_hours or settings.behavior_retention_hours
        )
        self._attempts: list[_AttemptRow] = []
        self._fingerprint_users: dict[str, set[str]] = defaultdict(set)
        self._users: dict[str, UserRecord] = {}
        self._samples: dict[tuple[str, PatternType], list[BehaviorPattern]] = defaultdict(list)
        self._audit: list[SuspiciousActivity] = []

    async def record_attempt(
        self,
        attempt: RegistrationAttempt,
        user_id: Optional[str] = None,
    ) -> None:
        cutoff = attempt.timestamp - self.attempt_retention
        self._attempts = [a for a in self._attempts if a.timestamp >= cutoff]
        self._attempts.append(
            _AttemptRow(
                timestamp=attempt.timestamp,
                ip=attempt.ip,
                user_agent=attempt.user_agent,
                email_domain=attempt.email_domain,
            )
        )
        if attempt.device_fingerprint:
            owner = user_id or attempt.email.lower()
            self._fingerprint_users[attempt.device_fingerprint.hash].add(owner)

    async def count_by_ip_since(self, ip: str, since: datetime) -> int:
        return sum(1 for a in self._attempts if a.ip == ip and a.timestamp >= since)

    async def count_by_user_agent_since(self, user_agent: str, since: datetime) -> int:
        if not user_agent:
            return 0
        return sum(
            1 for a in self._attempts
            if a.user_agent == user_agent and a.timestamp >= since
        )

    async def count_by_email_domain_since(self, domain: str, since: datetime) -> int:
        domain = domain.lower()
        if not domain:
            return 0
        return sum(
            1 for a in self._attempts
            if a.email_domain == domain and a.timestamp >= since
        )

    async def count_distinct_users_by_fingerprint(self, fingerprint_hash: str) -> int:
        return len(self._fingerprint_users.get(fingerprint_hash, ()))

    async def get_user(self, user_id: str) -> Optional[UserRecord]:
        return self._users.get(user_id)

    async def save_user(self, user: UserRecord) -> None:
        self._users[user.id] = user
        if user.device_fingerprint:
            self._fingerprint_users[user.device_fingerprint.hash].add(user.id)

    async def append_behavior_sample(self, pattern: BehaviorPattern) -> None:
        key = (pattern.user_id, pattern.pattern_type)
        cutoff = pattern.timestamp - self.behavior_retention
        samples = [s for s in self._samples[key] if s.timestamp >= cutoff]
        samples.append(pattern)
        samples.sort(key=lambda s: s.timestamp)
        self._samples[key] = samples

    async def query_behavior_samples(
        self,
        user_id: str,
        start: datetime,
        end: datetime,
        pattern_type: Optional[PatternType] = None,
    ) -> list[BehaviorPattern]:
        types = [pattern_type] if pattern_type else list(PatternType)
        samples = [
            s
            for t in types
            for s in self._samples.get((user_id, t), [])
            if start <= s.timestamp <= end
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
        return list(self._samples.get((user_id, pattern_type), [])[-limit:])

    async def record_suspicious_activity(self, entry: SuspiciousActivity) -> None:
        self._audit.append(entry)
        if len(self._audit) > self.AUDIT_LOG_CAP:
            del self._audit[: len(self._audit) - self.AUDIT_LOG_CAP]

    async def list_suspicious_activities(self, limit: int = 100) -> list[SuspiciousActivity]:
        return list(reversed(self._audit))[:limit]


class MemoryStore(AlertStore, CaseStore, EnforcementStore, NotificationStore):
    """Workflow records (alerts, cases, enforcement, notifications) kept in memory."""

    def __init__(self):
        self.alerts: dict[str, AnomalyAlert] = {}
        self.cases: dict[str, ReviewCase] = {}
        self.freezes: dict[str, AccountFreeze] = {}
        self.bans: dict[str, UserBan] = {}
        self.recoveries: dict[str, RewardRecovery] = {}
        self.risk_levels: dict[str, RiskLevel] = {}
        self.notifications: dict[str, Notification] = {}
        self.invite_codes: dict[str, InviteCode] = {}

    # =========================================================================
    # Alerts
    # =========================================================================

    async def save_alert(self, alert: AnomalyAlert) -> None:
        self.alerts[alert.id] = alert

    async def get_alert(self, alert_id: str) -> Optional[AnomalyAlert]:
        return self.alerts.get(alert_id)

    async def list_alerts(
        self,
        statuses: Optional[set[AlertStatus]] = None,
        severity: Optional[AlertSeverity] = None,
        limit: int = 50,
    ) -> list[AnomalyAlert]:
        alerts = [
            a for a in self.alerts.values()
            if (statuses is None or a.status in statuses)
            and (severity is None or a.severity == severity)
        ]
        alerts.sort(key=lambda a: a.created_at, reverse=True)
        return alerts[:limit]

    # =========================================================================
    # Cases
    # =========================================================================

    async def save_case(self, case: ReviewCase) -> None:
        self.cases[case.id] = case

    async def get_case(self, case_id: str) -> Optional[ReviewCase]:
        return self.cases.get(case_id)

    async def list_cases(
        self,
        status: Optional[CaseStatus] = None,
        assigned_to: Optional[str] = None,
        user_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[ReviewCase]:
        cases = [
            c for c in self.cases.values()
            if (status is None or c.status == status)
            and (assigned_to is None or c.assigned_to == assigned_to)
            and (user_id is None or c.user_id == user_id)
        ]
        cases.sort(key=lambda c: c.created_at, reverse=True)
        return cases[:limit] if limit is not None else cases

    # =========================================================================
    # Enforcement
    # =========================================================================

    async def save_freeze(self, freeze: AccountFreeze) -> None:
        self.freezes[freeze.id] = freeze

    async def list_freezes(self, user_id: str) -> list[AccountFreeze]:
        freezes = [f for f in self.freezes.values() if f.user_id == user_id]
        freezes.sort(key=lambda f: f.created_at, reverse=True)
        return freezes

    async def save_ban(self, ban: UserBan) -> None:
        self.bans[ban.id] = ban

    async def list_bans(self, user_id: str) -> list[UserBan]:
        bans = [b for b in self.bans.values() if b.user_id == user_id]
        bans.sort(key=lambda b: b.created_at, reverse=True)
        return bans

    async def save_recovery(self, recovery: RewardRecovery) -> None:
        self.recoveries[recovery.id] = recovery

    async def list_recoveries(self, user_id: str) -> list[RewardRecovery]:
        recoveries = [r for r in self.recoveries.values() if r.user_id == user_id]
        recoveries.sort(key=lambda r: r.created_at, reverse=True)
        return recoveries

    async def get_risk_level(self, user_id: str) -> Optional[RiskLevel]:
        return self.risk_levels.get(user_id)

    async def set_risk_level(self, user_id: str, level: RiskLevel) -> None:
        self.risk_levels[user_id] = level

    # =========================================================================
    # Notifications
    # =========================================================================

    async def save_notification(self, notification: Notification) -> None:
        self.notifications[notification.id] = notification

    async def get_notification(self, notification_id: str) -> Optional[Notification]:
        return self.notifications.get(notification_id)

    async def list_dispatchable(self, now: datetime, max_attempts: int) -> list[Notification]:
        due = [
            n for n in self.notifications.values()
            if (
                n.status == NotificationStatus.PENDING
                and (n.scheduled_at is None or n.scheduled_at <= now)
            )
            or (n.status == NotificationStatus.FAILED and n.attempts < max_attempts)
        ]
        due.sort(key=lambda n: n.created_at)
        return due

    async def delete_notifications_before(self, cutoff: datetime) -> int:
        expired = [
            n.id for n in self.notifications.values()
            if n.status != NotificationStatus.PENDING and n.created_at < cutoff
        ]
        for notification_id in expired:
            del self.notifications[notification_id]
        return len(expired)

    async def has_notification_since(
        self,
        notification_type: NotificationType,
        reference_key: str,
        reference_value: str,
        since: datetime,
    ) -> bool:
        return any(
            n.type == notification_type
            and n.created_at >= since
            and str(n.metadata.get(reference_key)) == reference_value
            for n in self.notifications.values()
        )

    async def save_invite_code(self, invite: InviteCode) -> None:
        self.invite_codes[invite.id] = invite

    async def list_expiring_invite_codes(self, now: datetime, until: datetime) -> list[InviteCode]:
        codes = [c for c in self.invite_codes.values() if now < c.expires_at <= until]
        codes.sort(key=lambda c: c.expires_at)
        return codes
