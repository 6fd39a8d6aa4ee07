"""
Self-Invitation Detection

Catches inviters inviting themselves to collect referral rewards:
1. Identical emails
2. Invitee registering from the inviter's registration IP
3. Alias emails on the same domain (john.doe+1@x.com vs johndoe@x.com)
4. Invitee device matching the inviter's stored fingerprint

Checks run in that order; the first hit decides.
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
from .detector import BaseDetector
from .similarity import split_email, is_similar_email_prefix, fingerprint_similarity


def _blocked(reason: str, action: str) -> DetectionResult:
    return DetectionResult(
        is_valid=False,
        risk_level=RiskLevel.HIGH,
        reasons=[reason],
        actions=[FraudAction(type=FraudActionType.BLOCK, description=action)],
    )


def _needs_review(reason: str, action: str, details: dict) -> DetectionResult:
    return DetectionResult(
        is_valid=False,
        risk_level=RiskLevel.MEDIUM,
        reasons=[reason],
        actions=[FraudAction(type=FraudActionType.REVIEW, description=action)],
        details=details,
    )


class SelfInvitationDetector(BaseDetector):
    """Compares the invitee with the stored inviter record. Only runs for invites."""

    name = "self_invitation"

    def __init__(self, store: SignalStore, similarity_threshold: float = None):
        super().__init__(store)
        self.similarity_threshold = similarity_threshold or settings.fingerprint_similarity_threshold

    def applies_to(self, attempt: RegistrationAttempt, inviter_id: Optional[str] = None) -> bool:
        return inviter_id is not None

    async def detect(
        self,
        attempt: RegistrationAttempt,
        inviter_id: Optional[str] = None,
    ) -> DetectionResult:
        if inviter_id is None:
            return DetectionResult()

        inviter = await self.store.get_user(inviter_id)
        if inviter is None:
            return _blocked("Inviter does not exist", "Reject invitation from unknown inviter")

        inviter_local, inviter_domain = split_email(inviter.email)
        invitee_local, invitee_domain = split_email(attempt.email)

        if inviter.email.strip().lower() == attempt.email.strip().lower():
            return _blocked(
                "Self-invitation detected",
                "Block self-invitation and record the violation",
            )

        if inviter.registration_ip and inviter.registration_ip == attempt.ip:
            return _blocked(
                "Inviter and invitee share the same IP",
                "Block invitation from the inviter's IP",
            )

        if inviter_domain and inviter_domain == invitee_domain:
            if is_similar_email_prefix(inviter_local, invitee_local):
                return _needs_review(
                    "Invitee email looks like an alias of the inviter's email",
                    "Manually review similar email addresses",
                    {"domain": invitee_domain},
                )

        if attempt.device_fingerprint and inviter.device_fingerprint:
            similarity = fingerprint_similarity(attempt.device_fingerprint, inviter.device_fingerprint)
            if similarity >= self.similarity_threshold:
                return _needs_review(
                    "Invitee device matches the inviter's device",
                    "Manually review shared device",
                    {"similarity": similarity},
                )

        return DetectionResult()
