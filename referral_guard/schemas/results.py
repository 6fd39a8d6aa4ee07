"""
Result Schemas

Defines per-detector verdicts and the aggregated decision returned
to the calling layer. Decisions follow a hierarchy:
ALLOW < WARN < REVIEW < BLOCK
"""

from datetime import datetime, UTC
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, model_validator


def _utc_now() -> datetime:
    """Return current UTC time (timezone-aware)."""
    return datetime.now(UTC)


class RiskLevel(str, Enum):
    """Tri-state severity assigned to a detection result."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class FraudActionType(str, Enum):
    """Action a detector recommends to the caller."""
    BLOCK = "block"
    REVIEW = "review"
    WARN = "warn"
    MONITOR = "monitor"


class Decision(str, Enum):
    """
    Aggregated decision outcomes.

    - ALLOW: Proceed
    - WARN: Proceed, but the attempt is monitored
    - REVIEW: Accepted pending manual review (HTTP 202 semantics)
    - BLOCK: Reject the attempt
    """
    ALLOW = "allow"
    WARN = "warn"
    REVIEW = "review"
    BLOCK = "block"


class FraudAction(BaseModel):
    """Recommended action attached to a detection result."""
    type: FraudActionType = Field(
        ...,
        description="Action type",
    )
    description: str = Field(
        ...,
        description="Human-readable description of the action",
    )
    duration_minutes: Optional[int] = Field(
        default=None,
        ge=0,
        description="How long the action applies (e.g., a 60 minute block)",
    )


class DetectionResult(BaseModel):
    """
    Partial verdict from a single detector.

    An invalid result always carries at least one reason.
    """
    detector: str = Field(
        default="",
        description="Name of the detector that produced the result",
    )
    is_valid: bool = Field(
        default=True,
        description="False when the attempt should not proceed",
    )
    risk_level: RiskLevel = Field(
        default=RiskLevel.LOW,
        description="Risk level assigned by the detector",
    )
    reasons: list[str] = Field(
        default_factory=list,
        description="Human-readable reasons",
    )
    actions: list[FraudAction] = Field(
        default_factory=list,
        description="Recommended actions",
    )
    failed_open: bool = Field(
        default=False,
        description="True when the detector errored or timed out and defaulted to low risk",
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Observed values behind the verdict (counts, thresholds)",
    )

    @model_validator(mode="after")
    def _invalid_needs_reason(self) -> "DetectionResult":
        if not self.is_valid and not self.reasons:
            raise ValueError("an invalid detection result must carry at least one reason")
        return self

    @classmethod
    def unavailable(cls, detector: str) -> "DetectionResult":
        """Fail-open result used when a detector errors or times out."""
        return cls(
            detector=detector,
            is_valid=True,
            risk_level=RiskLevel.LOW,
            reasons=["detection unavailable"],
            failed_open=True,
        )

    @property
    def has_review_action(self) -> bool:
        return any(a.type == FraudActionType.REVIEW for a in self.actions)


class RiskDecision(BaseModel):
    """
    Aggregated decision for a single registration or invitation attempt.

    Combines all detector verdicts. Reasons and actions are the union of
    the sub-results, in detector order.
    """
    decision: Decision = Field(
        ...,
        description="Final decision",
    )
    is_valid: bool = Field(
        ...,
        description="False when the attempt is blocked",
    )
    risk_level: RiskLevel = Field(
        ...,
        description="Final risk level",
    )
    reasons: list[str] = Field(
        default_factory=list,
        description="Union of the sub-result reasons",
    )
    actions: list[FraudAction] = Field(
        default_factory=list,
        description="Union of the sub-result actions",
    )
    detector_results: dict[str, DetectionResult] = Field(
        default_factory=dict,
        description="Sub-results by detector name",
    )
    degraded: bool = Field(
        default=False,
        description="True when at least one detector failed open",
    )
    alert_ids: list[str] = Field(
        default_factory=list,
        description="Alerts raised while assessing this attempt",
    )
    review_case_id: Optional[str] = Field(
        default=None,
        description="Review case opened for this attempt, if any",
    )
    assessed_at: datetime = Field(
        default_factory=_utc_now,
        description="When the decision was made",
    )

    @model_validator(mode="after")
    def _blocked_needs_reason(self) -> "RiskDecision":
        if not self.is_valid and not self.reasons:
            raise ValueError("a blocked decision must carry at least one reason")
        return self

    @property
    def accepted_pending(self) -> bool:
        """Accepted, pending manual review."""
        return self.decision == Decision.REVIEW
