"""
Attempt Schemas

Defines the inputs to the risk engine: a registration attempt as
seen by the web layer, the client device fingerprint that may
accompany it, and the stored user record of a known inviter.
"""

import hashlib
import json
from datetime import datetime, UTC
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


def _utc_now() -> datetime:
    """Return current UTC time (timezone-aware)."""
    return datetime.now(UTC)


class DeviceFingerprint(BaseModel):
    """
    Client device fingerprint.

    ``hash`` is a deterministic digest of the other fields. When the
    client does not supply one it is computed on validation, so two
    fingerprints built from the same attributes always hash alike.
    """
    user_agent: str = Field(
        default="",
        description="Browser user agent string",
    )
    screen_resolution: str = Field(
        default="",
        description="Screen resolution (e.g., '1920x1080')",
    )
    timezone: str = Field(
        default="",
        description="IANA timezone reported by the client",
    )
    language: str = Field(
        default="",
        description="Preferred language (e.g., 'en-US')",
    )
    platform: str = Field(
        default="",
        description="Client platform (e.g., 'MacIntel', 'Win32')",
    )
    cookie_enabled: bool = Field(
        default=True,
        description="Whether cookies are enabled",
    )
    extended: dict[str, str] = Field(
        default_factory=dict,
        description="Optional extended client attributes (canvas, webgl, fonts...)",
    )
    hash: str = Field(
        default="",
        description="Deterministic digest of the fingerprint attributes",
    )

    @model_validator(mode="after")
    def _fill_hash(self) -> "DeviceFingerprint":
        if not self.hash:
            self.hash = self.compute_hash()
        return self

    def compute_hash(self) -> str:
        """SHA-256 over a canonical JSON of every attribute except the hash."""
        payload = self.model_dump(exclude={"hash"})
        canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class RegistrationAttempt(BaseModel):
    """
    A registration attempt to be assessed.

    Immutable once created: produced by the caller, consumed by
    the detectors and recorded in the signal store.
    """
    model_config = ConfigDict(frozen=True)

    ip: str = Field(
        ...,
        description="Client IP address",
    )
    user_agent: str = Field(
        default="",
        description="Client user agent",
    )
    email: str = Field(
        ...,
        description="Email address being registered",
    )
    invite_code: Optional[str] = Field(
        default=None,
        description="Invite code used for the registration",
    )
    device_fingerprint: Optional[DeviceFingerprint] = Field(
        default=None,
        description="Client device fingerprint, if collected",
    )
    timestamp: datetime = Field(
        default_factory=_utc_now,
        description="When the attempt was made",
    )

    @property
    def email_domain(self) -> str:
        """Lowercased domain part of the email (empty if malformed)."""
        _, sep, domain = self.email.rpartition("@")
        return domain.lower() if sep else ""


class UserRecord(BaseModel):
    """
    A known user (typically an inviter).

    Holds the registration context needed by the self-invitation
    check: email, registration IP and device fingerprint.
    """
    id: str = Field(
        ...,
        description="User identifier",
    )
    email: str = Field(
        ...,
        description="Registered email address",
    )
    registration_ip: Optional[str] = Field(
        default=None,
        description="IP address used at registration",
    )
    user_agent: Optional[str] = Field(
        default=None,
        description="User agent used at registration",
    )
    device_fingerprint: Optional[DeviceFingerprint] = Field(
        default=None,
        description="Device fingerprint captured at registration",
    )
    created_at: datetime = Field(
        default_factory=_utc_now,
        description="When the user registered",
    )
