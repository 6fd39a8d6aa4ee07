"""
Schema Tests

Tests for data validation and schema behavior.
"""

import base64
from datetime import datetime, timedelta, UTC

import pytest
from pydantic import TypeAdapter, ValidationError

from referral_guard.schemas import (
    AccountFreeze,
    AlertDraft,
    AlertEvidence,
    AlertRule,
    AlertSeverity,
    AlertStatus,
    AlertType,
    AnomalyAlert,
    Decision,
    DetectionResult,
    DeviationEvidence,
    DeviceFingerprint,
    FraudAction,
    FraudActionType,
    NetworkEvidence,
    RegistrationAssessmentRequest,
    RegistrationAttempt,
    RiskDecision,
    RiskLevel,
    SuspiciousActivity,
    SuspiciousActivityType,
    UserBan,
    VelocityEvidence,
)


class TestRegistrationAttempt:
    """Tests for RegistrationAttempt schema."""

    def test_minimal_attempt(self):
        attempt = RegistrationAttempt(ip="203.0.113.10", email="maria@example.com")

        assert attempt.user_agent == ""
        assert attempt.device_fingerprint is None
        assert attempt.timestamp.tzinfo is not None

    def test_email_domain_lowercased(self):
        attempt = RegistrationAttempt(ip="203.0.113.10", email="Maria@Example.COM")
        assert attempt.email_domain == "example.com"

    def test_malformed_email_has_no_domain(self):
        attempt = RegistrationAttempt(ip="203.0.113.10", email="not-an-email")
        assert attempt.email_domain == ""

    def test_attempt_is_immutable(self):
        attempt = RegistrationAttempt(ip="203.0.113.10", email="maria@example.com")
        with pytest.raises(ValidationError):
            attempt.ip = "10.0.0.1"

    def test_missing_email_rejected(self):
        with pytest.raises(ValidationError):
            RegistrationAttempt(ip="203.0.113.10")


class TestDeviceFingerprint:
    """Tests for fingerprint hashing."""

    def test_hash_computed_when_missing(self):
        fingerprint = DeviceFingerprint(user_agent="Mozilla/5.0", platform="MacIntel")
        assert len(fingerprint.hash) == 64

    def test_supplied_hash_kept(self):
        fingerprint = DeviceFingerprint(user_agent="Mozilla/5.0", hash="client-hash")
        assert fingerprint.hash == "client-hash"

    def test_extended_attributes_change_hash(self):
        plain = DeviceFingerprint(user_agent="Mozilla/5.0")
        canvas = DeviceFingerprint(user_agent="Mozilla/5.0", extended={"canvas": "a1b2"})
        assert plain.hash != canvas.hash


class TestDetectionResult:
    """Tests for detector verdicts."""

    def test_defaults_are_low_and_valid(self):
        result = DetectionResult()

        assert result.is_valid
        assert result.risk_level == RiskLevel.LOW
        assert not result.failed_open

    def test_invalid_needs_reason(self):
        with pytest.raises(ValidationError):
            DetectionResult(is_valid=False, risk_level=RiskLevel.HIGH)

    def test_unavailable(self):
        result = DetectionResult.unavailable("device_reuse")

        assert result.detector == "device_reuse"
        assert result.is_valid
        assert result.failed_open
        assert result.reasons == ["detection unavailable"]

    def test_review_action(self):
        result = DetectionResult(
            risk_level=RiskLevel.MEDIUM,
            reasons=["Device shared by 2 accounts"],
            actions=[FraudAction(type=FraudActionType.REVIEW, description="Manual review")],
        )
        assert result.has_review_action

    def test_negative_action_duration_rejected(self):
        with pytest.raises(ValidationError):
            FraudAction(type=FraudActionType.BLOCK, description="Block", duration_minutes=-1)


class TestRiskDecision:
    """Tests for the aggregated decision."""

    def test_block_needs_reason(self):
        with pytest.raises(ValidationError):
            RiskDecision(decision=Decision.BLOCK, is_valid=False, risk_level=RiskLevel.HIGH)

    @pytest.mark.parametrize(
        "decision,pending",
        [(Decision.ALLOW, False), (Decision.WARN, False), (Decision.REVIEW, True)],
    )
    def test_accepted_pending(self, decision, pending):
        result = RiskDecision(decision=decision, is_valid=True, risk_level=RiskLevel.MEDIUM)
        assert result.accepted_pending is pending


class TestAlertSchemas:
    """Tests for alerts, evidence and rules."""

    def _draft(self, severity=AlertSeverity.HIGH, alert_type=AlertType.VELOCITY_SPIKE):
        return AlertDraft(
            user_id="user_1",
            alert_type=alert_type,
            severity=severity,
            description="Unusual activity velocity",
            evidence=VelocityEvidence(velocity=150.0, sample_count=10, span_seconds=240.0, threshold=100.0),
        )

    def test_evidence_discriminated_by_kind(self):
        adapter = TypeAdapter(AlertEvidence)

        evidence = adapter.validate_python(
            {"kind": "deviation", "deviation": 3.4, "latest_score": 0.9,
             "mean_score": 0.3, "sample_count": 12, "threshold": 2.0}
        )

        assert isinstance(evidence, DeviationEvidence)

    def test_unknown_evidence_kind_rejected(self):
        with pytest.raises(ValidationError):
            TypeAdapter(AlertEvidence).validate_python({"kind": "telepathy"})

    def test_alert_evidence_survives_json(self):
        alert = AnomalyAlert(id="alert_1", **self._draft().model_dump())

        restored = AnomalyAlert.model_validate_json(alert.model_dump_json())

        assert isinstance(restored.evidence, VelocityEvidence)
        assert restored.evidence.velocity == 150.0

    def test_resolved_alert_needs_resolved_at(self):
        with pytest.raises(ValidationError):
            AnomalyAlert(id="alert_1", status=AlertStatus.RESOLVED, **self._draft().model_dump())

    def test_pending_alert_cannot_have_resolved_at(self):
        with pytest.raises(ValidationError):
            AnomalyAlert(id="alert_1", resolved_at=datetime.now(UTC), **self._draft().model_dump())

    def test_severity_rank(self):
        ranks = [s.rank for s in AlertSeverity]
        assert ranks == sorted(ranks)

    def test_rule_minimum_severity(self):
        rule = AlertRule(id="velocity", alert_type=AlertType.VELOCITY_SPIKE, severity=AlertSeverity.HIGH)

        assert rule.matches(self._draft(AlertSeverity.CRITICAL))
        assert not rule.matches(self._draft(AlertSeverity.MEDIUM))
        assert not rule.matches(self._draft(alert_type=AlertType.NETWORK_ABUSE))

    def test_network_evidence_defaults(self):
        evidence = NetworkEvidence(ip="203.0.113.10")
        assert evidence.detectors == []
        assert evidence.schema_version == 1


class TestAccountSchemas:
    """Tests for enforcement records."""

    def test_freeze_defaults_to_whole_account(self):
        freeze = AccountFreeze(id="frz_1", user_id="user_1", reason="Fraud", created_by="reviewer_7")
        assert freeze.frozen_features == ["all"]

    def test_freeze_effective_window(self):
        now = datetime.now(UTC)
        freeze = AccountFreeze(
            id="frz_1", user_id="user_1", reason="Fraud", created_by="system",
            expires_at=now + timedelta(minutes=10),
        )

        assert freeze.is_effective(now)
        assert not freeze.is_effective(now + timedelta(minutes=11))
        assert not freeze.model_copy(update={"is_active": False}).is_effective(now)

    def test_ban_needs_reason(self):
        with pytest.raises(ValidationError):
            UserBan(id="ban_1", user_id="user_1", reason="")

    def test_suspicious_activity_raw_is_base64(self):
        activity = SuspiciousActivity(
            ip="1.2.3.4",
            type=SuspiciousActivityType.BATCH_REGISTRATION,
            description="Batch registration pattern",
            severity=RiskLevel.HIGH,
            raw=b"\x00\x01payload",
        )

        data = activity.model_dump(mode="json")
        assert base64.b64decode(data["raw"]) == b"\x00\x01payload"
        assert SuspiciousActivity.model_validate_json(activity.model_dump_json()).raw == b"\x00\x01payload"


class TestRequests:
    """Tests for API request bodies."""

    def test_registration_request_to_attempt(self):
        request = RegistrationAssessmentRequest(
            ip="203.0.113.10",
            email="maria@example.com",
            invite_code="FRIEND-42",
            inviter_id="user_inviter",
            device_fingerprint={"user_agent": "Mozilla/5.0", "platform": "Win32"},
        )

        attempt = request.to_attempt()

        assert attempt.invite_code == "FRIEND-42"
        assert attempt.device_fingerprint.hash
        assert not hasattr(attempt, "inviter_id")
