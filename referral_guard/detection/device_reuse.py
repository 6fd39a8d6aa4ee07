"""
Device Reuse Detection

Counts distinct users sharing one device fingerprint. A single
device driving several "new" accounts points to self-referral.
"""

from typing import Optional

from ..config import settings
from ..schemas import (
    RegistrationAttempt,
    DetectionResult,
    RiskLevel,
    FraudAction,
    FraudActionType,
)
from ..store import SignalStore
from .detector import BaseDetector, warning_threshold


class DeviceReuseDetector(BaseDetector):
    """
    Limits accounts per device fingerprint.

    Only runs when the attempt carries a fingerprint.
    """

    name = "device_reuse"

    def __init__(
        self,
        store: SignalStore,
        limit: int = None,
        warning_ratio: float = None,
    ):
        super().__init__(store)
        self.limit = limit or settings.device_reuse_limit
        self.warning_at = warning_threshold(self.limit, warning_ratio or settings.warning_ratio)

    def applies_to(self, attempt: RegistrationAttempt, inviter_id: Optional[str] = None) -> bool:
        return attempt.device_fingerprint is not None

    async def detect(
        self,
        attempt: RegistrationAttempt,
        inviter_id: Optional[str] = None,
    ) -> DetectionResult:
        if attempt.device_fingerprint is None:
            return DetectionResult()

        fingerprint_hash = attempt.device_fingerprint.hash
        users = await self.store.count_distinct_users_by_fingerprint(fingerprint_hash)
        details = {"fingerprint": fingerprint_hash[:16], "users": users, "limit": self.limit}

        if users >= self.limit:
            return DetectionResult(
                is_valid=False,
                risk_level=RiskLevel.HIGH,
                reasons=[f"Device already used by {users} accounts"],
                actions=[
                    FraudAction(
                        type=FraudActionType.BLOCK,
                        description="Block registrations from this device",
                    )
                ],
                details=details,
            )

        if users >= self.warning_at:
            return DetectionResult(
                risk_level=RiskLevel.MEDIUM,
                reasons=[f"Device shared by {users} accounts"],
                actions=[
                    FraudAction(
                        type=FraudActionType.REVIEW,
                        description="Review accounts sharing this device",
                    )
                ],
                details=details,
            )

        return DetectionResult(details=details)
