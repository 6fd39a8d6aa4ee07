"""
API request bodies.
"""

from typing import Optional

from pydantic import BaseModel, Field

from .attempts import DeviceFingerprint, RegistrationAttempt


class RegistrationAssessmentRequest(BaseModel):
    """A registration attempt plus optional referral context."""
    ip: str = Field(..., description="Client IP address")
    user_agent: str = Field(default="", description="Client user agent")
    email: str = Field(..., description="Email being registered")
    invite_code: Optional[str] = Field(default=None)
    device_fingerprint: Optional[DeviceFingerprint] = Field(default=None)
    inviter_id: Optional[str] = Field(
        default=None,
        description="Inviting user, when registering through an invite",
    )
    user_id: Optional[str] = Field(
        default=None,
        description="Id assigned to the new user, if already known",
    )

    def to_attempt(self) -> RegistrationAttempt:
        return RegistrationAttempt(
            ip=self.ip,
            user_agent=self.user_agent,
            email=self.email,
            invite_code=self.invite_code,
            device_fingerprint=self.device_fingerprint,
        )


class InvitationAssessmentRequest(BaseModel):
    inviter_id: str
    invitee_email: str
    ip: str
    user_agent: str = ""
    device_fingerprint: Optional[DeviceFingerprint] = None


class ResolveAlertRequest(BaseModel):
    resolved_by: Optional[str] = None
    false_positive: bool = Field(
        default=False,
        description="Close as false positive instead of resolved",
    )


class AssignCaseRequest(BaseModel):
    reviewer_id: str = Field(..., min_length=1)


class EscalateCaseRequest(BaseModel):
    reason: str = Field(..., min_length=1)
    escalated_by: str = Field(..., min_length=1)
