"""
Batch Registration Detection

Detects scripted bursts: within a short window (300s by default),
independently counts registrations sharing the attempt's IP, user
agent and email domain.

- IP or user agent at/above the threshold: dimension is suspicious
- Email domain at/above 2x the threshold: dimension is suspicious
  (shared domains see more legitimate volume)

Two or more suspicious dimensions block; exactly one is monitored.
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
from .detector import BaseDetector


class BatchRegistrationDetector(BaseDetector):

    name = "batch_registration"

    def __init__(
        self,
        store: SignalStore,
        window_seconds: int = None,
        count_threshold: int = None,
    ):
        super().__init__(store)
        self.window_seconds = window_seconds or settings.batch_time_window_seconds
        self.count_threshold = count_threshold or settings.batch_count_threshold
        self.domain_threshold = self.count_threshold * 2

    async def detect(
        self,
        attempt: RegistrationAttempt,
        inviter_id: Optional[str] = None,
    ) -> DetectionResult:
        since = attempt.timestamp - timedelta(seconds=self.window_seconds)

        ip_count = await self.store.count_by_ip_since(attempt.ip, since)
        ua_count = (
            await self.store.count_by_user_agent_since(attempt.user_agent, since)
            if attempt.user_agent else 0
        )
        domain_count = (
            await self.store.count_by_email_domain_since(attempt.email_domain, since)
            if attempt.email_domain else 0
        )

        suspicious: list[str] = []
        if ip_count >= self.count_threshold:
            suspicious.append(f"{ip_count} registrations from the same IP")
        if ua_count >= self.count_threshold:
            suspicious.append(f"{ua_count} registrations with the same user agent")
        if domain_count >= self.domain_threshold:
            suspicious.append(f"{domain_count} registrations on domain {attempt.email_domain}")

        details = {
            "ip_count": ip_count,
            "user_agent_count": ua_count,
            "domain_count": domain_count,
            "window_seconds": self.window_seconds,
        }
        window = f"within {self.window_seconds} seconds"

        if len(suspicious) >= 2:
            return DetectionResult(
                is_valid=False,
                risk_level=RiskLevel.HIGH,
                reasons=[f"Batch registration pattern {window}: " + "; ".join(suspicious)],
                actions=[
                    FraudAction(
                        type=FraudActionType.BLOCK,
                        description="Block batch registrations",
                    )
                ],
                details=details,
            )

        if suspicious:
            return DetectionResult(
                risk_level=RiskLevel.MEDIUM,
                reasons=[f"Possible batch registration {window}: {suspicious[0]}"],
                actions=[
                    FraudAction(
                        type=FraudActionType.MONITOR,
                        description="Monitor for batch registrations",
                    )
                ],
                details=details,
            )

        return DetectionResult(details=details)
