"""
Behavior Schemas

Time-series behavior samples and the result of analyzing one.
"""

from datetime import datetime, UTC
from enum import Enum

from pydantic import BaseModel, Field

from .alerts import AlertDraft


def _utc_now() -> datetime:
    """Return current UTC time (timezone-aware)."""
    return datetime.now(UTC)


class PatternType(str, Enum):
    """Activity types tracked by the behavior analyzer."""
    REGISTRATION = "registration"
    INVITATION = "invitation"
    ACTIVITY = "activity"
    REWARD_CLAIM = "reward_claim"


class BehaviorPattern(BaseModel):
    """
    One behavior sample.

    Append-only time series per (user_id, pattern_type).
    """
    user_id: str = Field(
        ...,
        description="User the sample belongs to",
    )
    pattern_type: PatternType = Field(
        ...,
        description="Activity type",
    )
    features: dict[str, float] = Field(
        default_factory=dict,
        description="Extracted numeric features",
    )
    timestamp: datetime = Field(
        default_factory=_utc_now,
        description="When the activity happened",
    )
    risk_score: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        description="Behavior risk score",
    )


class BehaviorAnalysis(BaseModel):
    """Recorded sample plus any anomaly alerts it triggered."""
    pattern: BehaviorPattern
    alerts: list[AlertDraft] = Field(default_factory=list)
