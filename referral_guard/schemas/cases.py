"""
Review Case Schemas

Human-review workflow items. State machine:

    pending -> in_review -> approved | rejected | escalated
    escalated -> in_review (new assignment)

approved and rejected are terminal and always carry a ReviewDecision.
"""

from datetime import datetime, UTC
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, model_validator


def _utc_now() -> datetime:
    """Return current UTC time (timezone-aware)."""
    return datetime.now(UTC)


class CaseType(str, Enum):
    SUSPICIOUS_BEHAVIOR = "suspicious_behavior"
    FRAUD_DETECTION = "fraud_detection"
    REWARD_DISPUTE = "reward_dispute"
    ACCOUNT_VERIFICATION = "account_verification"


class CasePriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"

    def bumped(self) -> "CasePriority":
        """Next priority up (urgent stays urgent)."""
        order = list(CasePriority)
        return order[min(order.index(self) + 1, len(order) - 1)]


class CaseStatus(str, Enum):
    PENDING = "pending"
    IN_REVIEW = "in_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    ESCALATED = "escalated"


TERMINAL_CASE_STATUSES = frozenset({CaseStatus.APPROVED, CaseStatus.REJECTED})
OPEN_CASE_STATUSES = frozenset({CaseStatus.PENDING, CaseStatus.IN_REVIEW, CaseStatus.ESCALATED})


class DecisionAction(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    FREEZE = "freeze"
    BAN = "ban"
    RECOVER_REWARDS = "recover_rewards"
    REQUIRE_VERIFICATION = "require_verification"


# Status a case ends in for each decision action
DECISION_STATUS: dict[DecisionAction, CaseStatus] = {
    DecisionAction.APPROVE: CaseStatus.APPROVED,
    DecisionAction.REQUIRE_VERIFICATION: CaseStatus.APPROVED,
    DecisionAction.REJECT: CaseStatus.REJECTED,
    DecisionAction.FREEZE: CaseStatus.REJECTED,
    DecisionAction.BAN: CaseStatus.REJECTED,
    DecisionAction.RECOVER_REWARDS: CaseStatus.REJECTED,
}


# =============================================================================
# Evidence payloads
# =============================================================================

class DetectionEvidence(BaseModel):
    """A detector verdict attached to a case."""
    type: Literal["detection"] = "detection"
    schema_version: int = 1
    detector: str
    risk_level: str
    reasons: list[str] = Field(default_factory=list)
    details: dict[str, Union[int, float, str, bool, None]] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utc_now)


class AlertReferenceEvidence(BaseModel):
    type: Literal["alert"] = "alert"
    schema_version: int = 1
    alert_id: str
    alert_type: str
    severity: str
    created_at: datetime = Field(default_factory=_utc_now)


class BehaviorSnapshotEvidence(BaseModel):
    type: Literal["behavior"] = "behavior"
    schema_version: int = 1
    pattern_type: str
    risk_score: float
    features: dict[str, float] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utc_now)


class ManualNoteEvidence(BaseModel):
    """Free-text note added by a reviewer (also used for escalations)."""
    type: Literal["manual_note"] = "manual_note"
    schema_version: int = 1
    author: str
    note: str = Field(..., min_length=1)
    created_at: datetime = Field(default_factory=_utc_now)


ReviewEvidence = Annotated[
    Union[DetectionEvidence, AlertReferenceEvidence, BehaviorSnapshotEvidence, ManualNoteEvidence],
    Field(discriminator="type"),
]


# =============================================================================
# Decision and case
# =============================================================================

class ReviewDecision(BaseModel):
    """Final reviewer decision on a case."""
    action: DecisionAction = Field(
        ...,
        description="Decision action",
    )
    reason: str = Field(
        ...,
        min_length=1,
        description="Why the reviewer decided this",
    )
    reviewer_id: str = Field(
        ...,
        description="Reviewer who made the decision",
    )
    timestamp: datetime = Field(
        default_factory=_utc_now,
    )
    notes: Optional[str] = Field(
        default=None,
    )
    recovery_amount: Optional[float] = Field(
        default=None,
        ge=0,
        description="Amount to claw back (recover_rewards only)",
    )
    freeze_duration_minutes: Optional[int] = Field(
        default=None,
        gt=0,
        description="Freeze/ban duration; unlimited when omitted",
    )

    @model_validator(mode="after")
    def _recovery_has_amount(self) -> "ReviewDecision":
        if self.action == DecisionAction.RECOVER_REWARDS and self.recovery_amount is None:
            raise ValueError("recover_rewards decision requires recovery_amount")
        return self


class ReviewCase(BaseModel):
    """
    A human-review case.

    A case carries a decision if and only if it is in a terminal status,
    and the decision's action must map to that status.
    """
    id: str = Field(
        ...,
        description="Case identifier (case_<hex>)",
    )
    user_id: str = Field(
        ...,
    )
    case_type: CaseType = Field(
        ...,
    )
    priority: CasePriority = Field(
        default=CasePriority.MEDIUM,
    )
    status: CaseStatus = Field(
        default=CaseStatus.PENDING,
    )
    assigned_to: Optional[str] = Field(
        default=None,
    )
    evidence: list[ReviewEvidence] = Field(
        default_factory=list,
    )
    decision: Optional[ReviewDecision] = Field(
        default=None,
    )
    created_at: datetime = Field(
        default_factory=_utc_now,
    )
    updated_at: datetime = Field(
        default_factory=_utc_now,
    )

    @model_validator(mode="after")
    def _decision_matches_status(self) -> "ReviewCase":
        terminal = self.status in TERMINAL_CASE_STATUSES
        if self.decision is None:
            if terminal:
                raise ValueError(f"case in status {self.status.value} must carry a decision")
            return self
        if not terminal:
            raise ValueError(f"case in status {self.status.value} cannot carry a decision")
        if DECISION_STATUS[self.decision.action] != self.status:
            raise ValueError(
                f"decision {self.decision.action.value} does not match status {self.status.value}"
            )
        return self

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_CASE_STATUSES
