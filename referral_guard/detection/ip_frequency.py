"""
IP Frequency Detection

Counts registrations from the same IP in a trailing window (1 hour
by default). Farms of throwaway accounts created from one address
are the most common referral-abuse pattern.
"""

from datetime import timedelta
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


class IPFrequencyDetector(BaseDetector):
    """
    Limits registrations per IP.

    - count >= limit: block for the length of the window
    - count >= warning threshold: monitor (medium risk)
    """

    name = "ip_frequency"

    def __init__(
        self,
        store: SignalStore,
        limit: int = None,
        window_seconds: int = None,
        warning_ratio: float = None,
    ):
        super().__init__(store)
        self.limit = limit or settings.ip_frequency_limit
        self.window_seconds = window_seconds or settings.ip_frequency_window_seconds
        self.warning_at = warning_threshold(self.limit, warning_ratio or settings.warning_ratio)

    async def detect(
        self,
        attempt: RegistrationAttempt,
        inviter_id: Optional[str] = None,
    ) -> DetectionResult:
        since = attempt.timestamp - timedelta(seconds=self.window_seconds)
        count = await self.store.count_by_ip_since(attempt.ip, since)
        details = {"ip": attempt.ip, "count": count, "limit": self.limit}

        if count >= self.limit:
            return DetectionResult(
                is_valid=False,
                risk_level=RiskLevel.HIGH,
                reasons=[
                    f"Too many registrations from IP {attempt.ip} "
                    f"({count} in the last {self.window_seconds // 60} minutes)"
                ],
                actions=[
                    FraudAction(
                        type=FraudActionType.BLOCK,
                        description="Block registrations from this IP",
                        duration_minutes=self.window_seconds // 60,
                    )
                ],
                details=details,
            )

        if count >= self.warning_at:
            return DetectionResult(
                risk_level=RiskLevel.MEDIUM,
                reasons=[
                    f"IP {attempt.ip} is close to the registration limit "
                    f"({count}/{self.limit})"
                ],
                actions=[
                    FraudAction(
                        type=FraudActionType.MONITOR,
                        description="Monitor registrations from this IP",
                    )
                ],
                details=details,
            )

        return DetectionResult(details=details)
