"""
Alert Schemas

Anomaly alerts raised by the behavior analyzer and the risk engine,
together with the rules that govern their cooldowns and actions.

Alert evidence is a tagged payload keyed by ``kind`` so that each
alert type carries a typed, versioned body instead of a free-form
JSON string.
"""

from datetime import datetime, UTC
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, model_validator


def _utc_now() -> datetime:
    """Return current UTC time (timezone-aware)."""
    return datetime.now(UTC)


class AlertType(str, Enum):
    """Alert categories."""
    BEHAVIOR_ANOMALY = "behavior_anomaly"
    PATTERN_DEVIATION = "pattern_deviation"
    VELOCITY_SPIKE = "velocity_spike"
    NETWORK_ABUSE = "network_abuse"


class AlertSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    AlertSeverity.LOW: 0,
    AlertSeverity.MEDIUM: 1,
    AlertSeverity.HIGH: 2,
    AlertSeverity.CRITICAL: 3,
}


class AlertStatus(str, Enum):
    """
    Alert lifecycle.

    pending -> investigating -> resolved | false_positive
    """
    PENDING = "pending"
    INVESTIGATING = "investigating"
    RESOLVED = "resolved"
    FALSE_POSITIVE = "false_positive"


TERMINAL_ALERT_STATUSES = frozenset({AlertStatus.RESOLVED, AlertStatus.FALSE_POSITIVE})
ACTIVE_ALERT_STATUSES = frozenset({AlertStatus.PENDING, AlertStatus.INVESTIGATING})


# =============================================================================
# Evidence payloads
# =============================================================================

class VelocityEvidence(BaseModel):
    kind: Literal["velocity"] = "velocity"
    schema_version: int = 1
    velocity: float = Field(..., description="Samples per hour")
    sample_count: int
    span_seconds: float = Field(..., description="Time between first and last sample")
    threshold: float


class DeviationEvidence(BaseModel):
    kind: Literal["deviation"] = "deviation"
    schema_version: int = 1
    deviation: float
    latest_score: float
    mean_score: float
    sample_count: int
    threshold: float


class NetworkEvidence(BaseModel):
    """Evidence for alerts raised from registration/invitation detectors."""
    kind: Literal["network"] = "network"
    schema_version: int = 1
    ip: Optional[str] = None
    email: Optional[str] = None
    detectors: list[str] = Field(default_factory=list)
    reasons: list[str] = Field(default_factory=list)


class BehaviorEvidence(BaseModel):
    kind: Literal["behavior"] = "behavior"
    schema_version: int = 1
    pattern_type: str
    risk_score: float
    features: dict[str, float] = Field(default_factory=dict)


AlertEvidence = Annotated[
    Union[VelocityEvidence, DeviationEvidence, NetworkEvidence, BehaviorEvidence],
    Field(discriminator="kind"),
]


# =============================================================================
# Alerts
# =============================================================================

class AlertDraft(BaseModel):
    """An alert that has been detected but not yet persisted."""
    user_id: str = Field(
        ...,
        description="User the alert is about",
    )
    alert_type: AlertType = Field(
        ...,
        description="Alert category",
    )
    severity: AlertSeverity = Field(
        ...,
        description="Alert severity",
    )
    description: str = Field(
        ...,
        min_length=1,
        description="Human-readable reason for the alert",
    )
    evidence: AlertEvidence = Field(
        ...,
        description="Typed evidence payload",
    )


class AnomalyAlert(AlertDraft):
    """
    A persisted anomaly alert.

    ``resolved_at`` is set if and only if the alert is in a terminal
    status (resolved or false_positive).
    """
    id: str = Field(
        ...,
        description="Alert identifier (alert_<hex>)",
    )
    status: AlertStatus = Field(
        default=AlertStatus.PENDING,
        description="Lifecycle status",
    )
    rule_id: Optional[str] = Field(
        default=None,
        description="Rule that produced the alert",
    )
    created_at: datetime = Field(
        default_factory=_utc_now,
    )
    resolved_at: Optional[datetime] = Field(
        default=None,
    )
    resolved_by: Optional[str] = Field(
        default=None,
    )

    @model_validator(mode="after")
    def _resolved_at_matches_status(self) -> "AnomalyAlert":
        terminal = self.status in TERMINAL_ALERT_STATUSES
        if terminal and self.resolved_at is None:
            raise ValueError(f"alert in status {self.status.value} must have resolved_at")
        if not terminal and self.resolved_at is not None:
            raise ValueError(f"alert in status {self.status.value} cannot have resolved_at")
        return self

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_ALERT_STATUSES


# =============================================================================
# Rules
# =============================================================================

class AlertActionType(str, Enum):
    LOG = "log"
    WEBHOOK = "webhook"
    NOTIFY_ADMIN = "notify_admin"


class AlertRule(BaseModel):
    """
    Alert rule.

    A rule matches alerts of its ``alert_type`` (and, when ``severity`` is
    set, of at least that severity). While the rule's cooldown is active,
    further matching alerts are suppressed. With ``per_user`` the cooldown
    is tracked per (rule, user) instead of per rule.
    """
    id: str = Field(
        ...,
        description="Rule identifier, also the cooldown key",
    )
    alert_type: AlertType = Field(
        ...,
    )
    severity: Optional[AlertSeverity] = Field(
        default=None,
        description="Minimum severity the rule applies to",
    )
    cooldown_minutes: int = Field(
        default=60,
        ge=0,
    )
    actions: list[AlertActionType] = Field(
        default_factory=lambda: [AlertActionType.LOG, AlertActionType.NOTIFY_ADMIN],
    )
    per_user: bool = Field(
        default=False,
    )
    enabled: bool = Field(
        default=True,
    )
    webhook_url: Optional[str] = Field(
        default=None,
        description="Overrides the global webhook URL for this rule",
    )

    def matches(self, draft: AlertDraft) -> bool:
        if not self.enabled or draft.alert_type != self.alert_type:
            return False
        if self.severity is not None and draft.severity.rank < self.severity.rank:
            return False
        return True

    def cooldown_key(self, user_id: str) -> str:
        return f"{self.id}:{user_id}" if self.per_user else self.id
