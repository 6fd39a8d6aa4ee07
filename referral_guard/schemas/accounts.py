"""
Account Schemas

Enforcement records (freezes, bans, reward recoveries), the derived
account status read model, and the suspicious-activity audit entry.
"""

from datetime import datetime, UTC
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from .results import RiskLevel


def _utc_now() -> datetime:
    """Return current UTC time (timezone-aware)."""
    return datetime.now(UTC)


ALL_FEATURES = "all"


class AccountFreeze(BaseModel):
    """A freeze entry. Expired or released freezes stay on record."""
    id: str = Field(
        ...,
    )
    user_id: str = Field(
        ...,
    )
    reason: str = Field(
        ...,
        min_length=1,
    )
    frozen_features: list[str] = Field(
        default_factory=lambda: [ALL_FEATURES],
        description="Features the user cannot use ('all' for the whole account)",
    )
    created_by: str = Field(
        ...,
        description="Reviewer or system component that froze the account",
    )
    created_at: datetime = Field(
        default_factory=_utc_now,
    )
    expires_at: Optional[datetime] = Field(
        default=None,
        description="Freeze end; permanent when omitted",
    )
    is_active: bool = Field(
        default=True,
    )

    def is_effective(self, now: datetime) -> bool:
        """Active and not yet expired."""
        return self.is_active and (self.expires_at is None or self.expires_at > now)


class UserBan(BaseModel):
    id: str
    user_id: str
    reason: str = Field(..., min_length=1)
    created_at: datetime = Field(default_factory=_utc_now)
    expires_at: Optional[datetime] = None
    is_active: bool = True

    def is_effective(self, now: datetime) -> bool:
        return self.is_active and (self.expires_at is None or self.expires_at > now)


class RecoveryStatus(str, Enum):
    PENDING = "pending"
    RECOVERED = "recovered"
    FAILED = "failed"


class RewardRecovery(BaseModel):
    """
    A reward clawback entry.

    Only the recovery record is kept here; moving funds is the job of
    the reward ledger.
    """
    id: str = Field(
        ...,
    )
    user_id: str = Field(
        ...,
    )
    amount: float = Field(
        ...,
        ge=0,
    )
    reason: str = Field(
        ...,
    )
    case_id: Optional[str] = Field(
        default=None,
        description="Review case that ordered the recovery",
    )
    created_by: str = Field(
        ...,
    )
    status: RecoveryStatus = Field(
        default=RecoveryStatus.PENDING,
    )
    created_at: datetime = Field(
        default_factory=_utc_now,
    )


class AccountStatus(BaseModel):
    """
    Account status read model.

    Recomputed on every read from freezes, bans, recoveries and
    review cases. Never stored.
    """
    user_id: str
    is_frozen: bool = False
    frozen_features: list[str] = Field(default_factory=list)
    freeze_reason: Optional[str] = None
    freeze_expires_at: Optional[datetime] = None
    is_banned: bool = False
    risk_level: RiskLevel = RiskLevel.LOW
    total_recovered_rewards: float = 0.0
    active_review_cases: int = 0


class SuspiciousActivityType(str, Enum):
    IP_FREQUENCY = "ip_frequency"
    DEVICE_REUSE = "device_reuse"
    SELF_INVITATION = "self_invitation"
    BATCH_REGISTRATION = "batch_registration"
    PATTERN_ANOMALY = "pattern_anomaly"


class SuspiciousActivity(BaseModel):
    """
    Append-only audit log entry.

    ``metadata`` carries the full set of sub-results behind the entry.
    ``raw`` is an opaque escape hatch for audit payloads that do not fit
    the typed fields; it is serialized as base64 in JSON.
    """
    model_config = ConfigDict(ser_json_bytes="base64", val_json_bytes="base64")

    user_id: Optional[str] = Field(
        default=None,
    )
    ip: str = Field(
        ...,
    )
    type: SuspiciousActivityType = Field(
        ...,
    )
    description: str = Field(
        ...,
        min_length=1,
    )
    severity: RiskLevel = Field(
        ...,
    )
    metadata: dict[str, Any] = Field(
        default_factory=dict,
    )
    raw: Optional[bytes] = Field(
        default=None,
    )
    timestamp: datetime = Field(
        default_factory=_utc_now,
    )
