"""
Referral Risk Engine

Entry point for the web layer. Wires the control flow for one attempt:

    attempt -> detectors + behavior -> aggregator -> alerts / review case
            -> signal store

Only two operations are exposed to callers: ``assess_registration`` and
``assess_invitation``. Both always return a RiskDecision; detection and
side-effect failures are logged and never raised.
"""

import logging
import time
from typing import Optional

from .behavior import ActivityContext, BehaviorAnalyzer
from .detection import (
    BaseDetector,
    BatchRegistrationDetector,
    DeviceReuseDetector,
    IPFrequencyDetector,
    SelfInvitationDetector,
)
from .enforcement import AccountEnforcement
from .metrics import metrics
from .review import ReviewCaseManager, detection_evidence
from .alerts import AlertManager
from .schemas import (
    AlertDraft,
    AlertReferenceEvidence,
    AlertSeverity,
    AlertType,
    BehaviorAnalysis,
    CaseType,
    Decision,
    DetectionResult,
    DeviceFingerprint,
    NetworkEvidence,
    PatternType,
    RegistrationAttempt,
    RiskDecision,
    RiskLevel,
    UserRecord,
)
from .scoring import RiskAggregator
from .store import SignalStore

logger = logging.getLogger("referral_guard.engine")


def default_detectors(store: SignalStore) -> list[BaseDetector]:
    return [
        IPFrequencyDetector(store),
        DeviceReuseDetector(store),
        SelfInvitationDetector(store),
        BatchRegistrationDetector(store),
    ]


class RiskEngine:
    """
    Referral-abuse risk engine.

    Usage:
        engine = RiskEngine(signals, alerts=alert_manager, cases=case_manager)
        decision = await engine.assess_registration(attempt, inviter_id="user_1")
        if decision.decision == Decision.BLOCK:
            ...
    """

    def __init__(
        self,
        signals: SignalStore,
        detectors: Optional[list[BaseDetector]] = None,
        analyzer: Optional[BehaviorAnalyzer] = None,
        aggregator: Optional[RiskAggregator] = None,
        alerts: Optional[AlertManager] = None,
        cases: Optional[ReviewCaseManager] = None,
        enforcement: Optional[AccountEnforcement] = None,
    ):
        """
        Initialize engine.

        Args:
            signals: Signal store shared by detectors, analyzer and aggregator
            detectors: Detectors to run (the four standard checks by default)
            analyzer: Behavior analyzer for inviters and new users
            aggregator: Decision aggregator
            alerts: Alert manager (no alerts raised when omitted)
            cases: Review case manager (no cases opened when omitted)
            enforcement: Used to refuse banned or frozen inviters
        """
        self.signals = signals
        self.detectors = detectors if detectors is not None else default_detectors(signals)
        self.analyzer = analyzer or BehaviorAnalyzer(signals)
        self.aggregator = aggregator or RiskAggregator(signals)
        self.alerts = alerts
        self.cases = cases
        self.enforcement = enforcement

    async def assess_registration(
        self,
        attempt: RegistrationAttempt,
        inviter_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> RiskDecision:
        """
        Assess a registration attempt.

        Args:
            attempt: Registration attempt
            inviter_id: Inviting user, when registering through an invite
            user_id: Id assigned to the new user, when already known

        Returns:
            RiskDecision (allow / warn / review / block)
        """
        decision = await self._assess(attempt, inviter_id, user_id, endpoint="registration")

        try:
            await self.signals.record_attempt(attempt, user_id)
            if user_id is not None and decision.decision != Decision.BLOCK:
                await self.signals.save_user(
                    UserRecord(
                        id=user_id,
                        email=attempt.email,
                        registration_ip=attempt.ip,
                        user_agent=attempt.user_agent or None,
                        device_fingerprint=attempt.device_fingerprint,
                        created_at=attempt.timestamp,
                    )
                )
        except Exception as e:
            logger.error("Failed to record registration attempt from %s: %s", attempt.ip, e)

        return decision

    async def assess_invitation(
        self,
        inviter_id: str,
        invitee_email: str,
        ip: str,
        user_agent: str = "",
        device_fingerprint: Optional[DeviceFingerprint] = None,
    ) -> RiskDecision:
        """
        Assess an invitation before it is sent.

        The invitation is not a registration, so it is not counted
        toward the registration windows.
        """
        attempt = RegistrationAttempt(
            ip=ip,
            user_agent=user_agent,
            email=invitee_email,
            device_fingerprint=device_fingerprint,
        )
        return await self._assess(attempt, inviter_id, None, endpoint="invitation")

    async def _assess(
        self,
        attempt: RegistrationAttempt,
        inviter_id: Optional[str],
        user_id: Optional[str],
        endpoint: str,
    ) -> RiskDecision:
        start_time = time.perf_counter()
        # Self-invitation and behavior findings concern the inviter
        subject_id = inviter_id or user_id

        refused = await self._check_inviter_standing(inviter_id) if inviter_id else None
        if refused is not None:
            decision = refused
        else:
            analyses: list[BehaviorAnalysis] = []
            checks = {
                detector.name: detector.run(attempt, inviter_id)
                for detector in self.detectors
                if detector.applies_to(attempt, inviter_id)
            }
            if inviter_id is not None:
                checks["behavior"] = self._behavior_check(
                    inviter_id, PatternType.INVITATION, attempt, analyses
                )
            elif user_id is not None:
                checks["behavior"] = self._behavior_check(
                    user_id, PatternType.REGISTRATION, attempt, analyses
                )

            decision = await self.aggregator.decide(checks, ip=attempt.ip, user_id=subject_id)
            decision = await self._follow_up(decision, attempt, subject_id, analyses)

        elapsed = time.perf_counter() - start_time
        metrics.assessments_total.labels(endpoint=endpoint, decision=decision.decision.value).inc()
        metrics.assessment_latency.observe(elapsed)

        logger.info(
            "Assessed %s from %s: %s/%s%s (%.1fms)",
            endpoint,
            attempt.ip,
            decision.decision.value,
            decision.risk_level.value,
            " degraded" if decision.degraded else "",
            elapsed * 1000,
        )
        return decision

    async def _check_inviter_standing(self, inviter_id: str) -> Optional[RiskDecision]:
        """Block decision for banned or frozen inviters; None when in good standing."""
        if self.enforcement is None:
            return None
        try:
            if await self.enforcement.is_user_banned(inviter_id):
                reason = "Inviter is banned from the referral program"
            elif await self.enforcement.is_frozen(inviter_id, "referral"):
                reason = "Inviter account is frozen"
            else:
                return None
        except Exception as e:
            logger.warning("Inviter standing check failed for %s: %s", inviter_id, e)
            return None

        return RiskDecision(
            decision=Decision.BLOCK,
            is_valid=False,
            risk_level=RiskLevel.HIGH,
            reasons=[reason],
        )

    async def _behavior_check(
        self,
        user_id: str,
        pattern_type: PatternType,
        attempt: RegistrationAttempt,
        analyses: list[BehaviorAnalysis],
    ) -> DetectionResult:
        analysis = await self.analyzer.analyze(
            user_id,
            pattern_type,
            ActivityContext(ip=attempt.ip, user_agent=attempt.user_agent, timestamp=attempt.timestamp),
        )
        analyses.append(analysis)
        return self.analyzer.to_detection_result(analysis)

    async def _follow_up(
        self,
        decision: RiskDecision,
        attempt: RegistrationAttempt,
        subject_id: Optional[str],
        analyses: list[BehaviorAnalysis],
    ) -> RiskDecision:
        """Raise alerts and open a review case as the decision warrants."""
        drafts = [draft for analysis in analyses for draft in analysis.alerts]
        if decision.decision == Decision.BLOCK:
            drafts.append(self._network_abuse_draft(decision, attempt, subject_id))

        alert_ids: list[str] = []
        alert_refs: list[AlertReferenceEvidence] = []
        if self.alerts is not None:
            for draft in drafts:
                try:
                    alert_id = await self.alerts.create_alert(draft)
                except Exception as e:
                    logger.error("Failed to create %s alert: %s", draft.alert_type.value, e)
                    continue
                if alert_id is not None:
                    alert_ids.append(alert_id)
                    alert_refs.append(
                        AlertReferenceEvidence(
                            alert_id=alert_id,
                            alert_type=draft.alert_type.value,
                            severity=draft.severity.value,
                        )
                    )

        case_id = None
        if (
            self.cases is not None
            and subject_id is not None
            and decision.decision in (Decision.REVIEW, Decision.BLOCK)
        ):
            case_id = await self._open_case(decision, subject_id, alert_refs)

        return decision.model_copy(update={"alert_ids": alert_ids, "review_case_id": case_id})

    def _network_abuse_draft(
        self,
        decision: RiskDecision,
        attempt: RegistrationAttempt,
        subject_id: Optional[str],
    ) -> AlertDraft:
        flagged = [
            name for name, result in decision.detector_results.items()
            if not result.is_valid or result.risk_level != RiskLevel.LOW
        ]
        return AlertDraft(
            user_id=subject_id or attempt.email,
            alert_type=AlertType.NETWORK_ABUSE,
            severity=AlertSeverity.HIGH,
            description="; ".join(decision.reasons) or "Referral attempt blocked",
            evidence=NetworkEvidence(
                ip=attempt.ip,
                email=attempt.email,
                detectors=flagged,
                reasons=list(decision.reasons),
            ),
        )

    async def _open_case(
        self,
        decision: RiskDecision,
        subject_id: str,
        alert_refs: list[AlertReferenceEvidence],
    ) -> Optional[str]:
        try:
            existing = await self.cases.find_open_case(subject_id)
            if existing is not None:
                return existing.id

            evidence = [
                detection_evidence(result)
                for result in decision.detector_results.values()
                if not result.is_valid or result.risk_level != RiskLevel.LOW
            ]
            case = await self.cases.create_case(
                subject_id,
                CaseType.FRAUD_DETECTION if decision.decision == Decision.BLOCK else CaseType.SUSPICIOUS_BEHAVIOR,
                decision.risk_level,
                evidence=[*evidence, *alert_refs],
            )
            return case.id
        except Exception as e:
            logger.error("Failed to open review case for %s: %s", subject_id, e)
            return None
