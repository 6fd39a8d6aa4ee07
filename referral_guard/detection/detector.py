"""
Detector Base

Every risk detector is an independent check over one attempt plus the
history in the SignalStore. Detectors fail open: an internal error
(e.g., store unavailable) yields a low-risk "detection unavailable"
result instead of an exception, so a broken signal never blocks a
legitimate user.
"""

import logging
import math
from abc import ABC, abstractmethod
from typing import Optional

from ..metrics import metrics
from ..schemas import RegistrationAttempt, DetectionResult, RiskLevel
from ..store import SignalStore

logger = logging.getLogger("referral_guard.detection")


def warning_threshold(limit: int, ratio: float) -> int:
    """
    Count at which a check reports medium risk.

    ``ceil(limit * ratio)``, capped at ``limit - 1`` so the medium band is
    always reachable, and floored at 1. With the default ratio of 0.7 a
    limit of 5 warns at 4 and a limit of 3 warns at 2.
    """
    return max(1, min(math.ceil(limit * ratio), limit - 1))


class BaseDetector(ABC):
    """
    Base class for all referral-abuse detectors.

    Each detector focuses on a specific abuse pattern:
    - IPFrequencyDetector: Many registrations from one IP
    - DeviceReuseDetector: One device shared by many accounts
    - SelfInvitationDetector: Inviter inviting themselves
    - BatchRegistrationDetector: Scripted bursts sharing IP/UA/domain
    """

    name: str = "detector"

    def __init__(self, store: SignalStore):
        """
        Initialize detector.

        Args:
            store: Signal store to read history from
        """
        self.store = store

    @abstractmethod
    async def detect(
        self,
        attempt: RegistrationAttempt,
        inviter_id: Optional[str] = None,
    ) -> DetectionResult:
        """
        Run detection logic.

        Args:
            attempt: Attempt being assessed
            inviter_id: Inviting user, when the attempt came through an invite

        Returns:
            DetectionResult with risk level, reasons and actions
        """

    def applies_to(self, attempt: RegistrationAttempt, inviter_id: Optional[str] = None) -> bool:
        """Whether the detector has the inputs it needs for this attempt."""
        return True

    async def run(
        self,
        attempt: RegistrationAttempt,
        inviter_id: Optional[str] = None,
    ) -> DetectionResult:
        """Run ``detect`` and fail open on any error."""
        try:
            result = await self.detect(attempt, inviter_id)
        except Exception as e:
            logger.warning("Detector %s failed, defaulting to low risk: %s", self.name, e)
            metrics.detector_failures.labels(detector=self.name, reason="error").inc()
            return DetectionResult.unavailable(self.name)

        if result.risk_level != RiskLevel.LOW:
            metrics.detector_triggers.labels(
                detector=self.name, risk_level=result.risk_level.value
            ).inc()
        return result.model_copy(update={"detector": self.name})
