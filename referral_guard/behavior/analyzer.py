"""
Behavior Analyzer

Keeps a rolling per-(user, activity type) history of behavior samples,
scores each new activity and detects three anomaly classes:

1. Velocity spike: too many activities per hour within the window
2. Pattern deviation: latest risk score far from the user's average
3. Behavior anomaly: the new activity itself scores at or above the
   anomaly threshold

Feature extraction and scoring are synchronous; only the store calls
suspend.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, UTC
from statistics import mean
from typing import Optional

from ..config import settings
from ..schemas import (
    BehaviorPattern,
    BehaviorAnalysis,
    PatternType,
    AlertDraft,
    AlertType,
    AlertSeverity,
    VelocityEvidence,
    DeviationEvidence,
    BehaviorEvidence,
    DetectionResult,
    RiskLevel,
    FraudAction,
    FraudActionType,
)
from ..store import SignalStore

logger = logging.getLogger("referral_guard.behavior")

# Scoring weights
BASE_SCORE = 0.3
NEW_USER_SCORE = 0.5
OFF_HOURS_WEIGHT = 0.2
HIGH_FREQUENCY_WEIGHT = 0.3
HISTORY_DEVIATION_WEIGHT = 0.2

ACTIVE_HOURS = (6, 22)
HIGH_DAILY_FREQUENCY = 10
HISTORY_DEVIATION_LIMIT = 0.3
MIN_VELOCITY_SPAN_SECONDS = 60
MIN_DEVIATION_SAMPLES = 3


def stable_hash(value: str) -> int:
    """
    Stable categorical proxy for a string, in [0, 1000).

    32-bit rolling string hash (h * 31 + c, two's-complement wrap),
    absolute value, mod 1000. Unlike ``hash()`` it does not change
    between processes.
    """
    h = 0
    for ch in value:
        h = ((h << 5) - h + ord(ch)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return abs(h) % 1000


@dataclass
class ActivityContext:
    """Where and when an activity happened."""
    ip: Optional[str] = None
    user_agent: Optional[str] = None
    timestamp: Optional[datetime] = None


class BehaviorAnalyzer:
    """
    Behavior analyzer over the SignalStore's behavior samples.

    Thresholds default to settings and can be overridden per instance.
    """

    def __init__(
        self,
        store: SignalStore,
        velocity_threshold: float = None,
        velocity_min_samples: int = None,
        deviation_threshold: float = None,
        deviation_critical: float = None,
        history_limit: int = None,
        retention_hours: int = None,
        anomaly_score: float = None,
    ):
        self.store = store
        self.velocity_threshold = velocity_threshold or settings.velocity_threshold_per_hour
        self.velocity_min_samples = velocity_min_samples or settings.velocity_min_samples
        self.deviation_threshold = deviation_threshold or settings.pattern_deviation_threshold
        self.deviation_critical = deviation_critical or settings.pattern_deviation_critical
        self.history_limit = history_limit or settings.behavior_history_limit
        self.retention = timedelta(hours=retention_hours or settings.behavior_retention_hours)
        self.anomaly_score = anomaly_score or settings.behavior_anomaly_score

    # =========================================================================
    # Features and scoring
    # =========================================================================

    def extract_features(
        self,
        context: ActivityContext,
        history: list[BehaviorPattern],
        now: datetime,
    ) -> dict[str, float]:
        """
        Extract numeric features for one activity.

        - hour_of_day: 0-23
        - day_of_week: 0-6, Sunday = 0
        - daily_frequency: same-type samples in the last 24h
        - ip_hash / user_agent_hash: stable hash mod 1000
        """
        day_start = now - timedelta(hours=24)
        features = {
            "hour_of_day": float(now.hour),
            "day_of_week": float((now.weekday() + 1) % 7),
            "daily_frequency": float(sum(1 for h in history if h.timestamp >= day_start)),
        }
        if context.ip:
            features["ip_hash"] = float(stable_hash(context.ip))
        if context.user_agent:
            features["user_agent_hash"] = float(stable_hash(context.user_agent))
        return features

    def score(self, features: dict[str, float], history: list[BehaviorPattern]) -> float:
        """Risk score in [0, 1]; 0.5 for users with no history."""
        if not history:
            return NEW_USER_SCORE

        score = BASE_SCORE

        hour = features.get("hour_of_day", 12.0)
        if hour < ACTIVE_HOURS[0] or hour > ACTIVE_HOURS[1]:
            score += OFF_HOURS_WEIGHT

        if features.get("daily_frequency", 0.0) > HIGH_DAILY_FREQUENCY:
            score += HIGH_FREQUENCY_WEIGHT

        average = mean(h.risk_score for h in history)
        if abs(score - average) > HISTORY_DEVIATION_LIMIT:
            score += HISTORY_DEVIATION_WEIGHT

        return max(0.0, min(1.0, score))

    # =========================================================================
    # Analysis
    # =========================================================================

    async def analyze(
        self,
        user_id: str,
        activity_type: PatternType,
        context: Optional[ActivityContext] = None,
    ) -> BehaviorAnalysis:
        """
        Score one activity, record it and check for anomalies.

        Args:
            user_id: Acting user
            activity_type: Activity type
            context: IP / user agent / time of the activity

        Returns:
            BehaviorAnalysis with the recorded sample and anomaly drafts
        """
        context = context or ActivityContext()
        now = context.timestamp or datetime.now(UTC)

        history = await self.store.recent_behavior_samples(user_id, activity_type, self.history_limit)
        history = [h for h in history if h.timestamp >= now - self.retention]

        features = self.extract_features(context, history, now)
        pattern = BehaviorPattern(
            user_id=user_id,
            pattern_type=activity_type,
            features=features,
            timestamp=now,
            risk_score=self.score(features, history),
        )
        await self.store.append_behavior_sample(pattern)

        alerts = await self.detect_anomalies(user_id, now=now)
        if pattern.risk_score >= self.anomaly_score:
            alerts.append(self._score_alert(pattern))
        if alerts:
            logger.info(
                "Behavior anomalies for user %s: %s",
                user_id,
                ", ".join(a.alert_type.value for a in alerts),
            )
        return BehaviorAnalysis(pattern=pattern, alerts=alerts)

    async def detect_anomalies(
        self,
        user_id: str,
        window: timedelta = timedelta(hours=24),
        now: Optional[datetime] = None,
    ) -> list[AlertDraft]:
        """Velocity-spike and pattern-deviation drafts for samples in the window."""
        now = now or datetime.now(UTC)
        samples = await self.store.query_behavior_samples(user_id, now - window, now)
        if len(samples) < 2:
            return []

        alerts = []
        velocity_alert = self._check_velocity(user_id, samples)
        if velocity_alert:
            alerts.append(velocity_alert)
        deviation_alert = self._check_deviation(user_id, samples)
        if deviation_alert:
            alerts.append(deviation_alert)
        return alerts

    def _check_velocity(self, user_id: str, samples: list[BehaviorPattern]) -> Optional[AlertDraft]:
        if len(samples) < self.velocity_min_samples:
            return None

        span_seconds = (samples[-1].timestamp - samples[0].timestamp).total_seconds()
        span_seconds = max(span_seconds, MIN_VELOCITY_SPAN_SECONDS)
        velocity = len(samples) / (span_seconds / 3600)

        if velocity <= self.velocity_threshold:
            return None

        return AlertDraft(
            user_id=user_id,
            alert_type=AlertType.VELOCITY_SPIKE,
            severity=AlertSeverity.HIGH,
            description=(
                f"Activity velocity {velocity:.1f}/hour exceeds "
                f"{self.velocity_threshold:g}/hour"
            ),
            evidence=VelocityEvidence(
                velocity=round(velocity, 2),
                sample_count=len(samples),
                span_seconds=span_seconds,
                threshold=self.velocity_threshold,
            ),
        )

    def _score_alert(self, pattern: BehaviorPattern) -> AlertDraft:
        return AlertDraft(
            user_id=pattern.user_id,
            alert_type=AlertType.BEHAVIOR_ANOMALY,
            severity=AlertSeverity.MEDIUM,
            description=(
                f"Behavior risk score {pattern.risk_score:.2f} reaches "
                f"{self.anomaly_score:g}"
            ),
            evidence=BehaviorEvidence(
                pattern_type=pattern.pattern_type.value,
                risk_score=pattern.risk_score,
                features=pattern.features,
            ),
        )

    def _check_deviation(self, user_id: str, samples: list[BehaviorPattern]) -> Optional[AlertDraft]:
        if len(samples) < MIN_DEVIATION_SAMPLES:
            return None

        latest = samples[-1].risk_score
        average = mean(s.risk_score for s in samples)
        deviation = abs(latest - average)

        if deviation <= self.deviation_threshold:
            return None

        severity = AlertSeverity.CRITICAL if deviation > self.deviation_critical else AlertSeverity.HIGH
        return AlertDraft(
            user_id=user_id,
            alert_type=AlertType.PATTERN_DEVIATION,
            severity=severity,
            description=f"Risk score deviates {deviation:.2f} from the user's average",
            evidence=DeviationEvidence(
                deviation=round(deviation, 4),
                latest_score=latest,
                mean_score=round(average, 4),
                sample_count=len(samples),
                threshold=self.deviation_threshold,
            ),
        )

    # =========================================================================
    # Aggregator bridge
    # =========================================================================

    def to_detection_result(self, analysis: BehaviorAnalysis) -> DetectionResult:
        """
        Soft signal for the aggregator. Always valid.

        - any critical anomaly: high
        - any anomaly, or score >= anomaly threshold: medium (monitor)
        - otherwise: low
        """
        score = analysis.pattern.risk_score
        reasons = [a.description for a in analysis.alerts]
        details = {"risk_score": score, "anomalies": len(analysis.alerts)}
        monitor = FraudAction(
            type=FraudActionType.MONITOR,
            description="Monitor user behavior",
        )

        if any(a.severity == AlertSeverity.CRITICAL for a in analysis.alerts):
            return DetectionResult(
                detector="behavior",
                risk_level=RiskLevel.HIGH,
                reasons=reasons,
                actions=[monitor],
                details=details,
            )

        if analysis.alerts or score >= self.anomaly_score:
            return DetectionResult(
                detector="behavior",
                risk_level=RiskLevel.MEDIUM,
                reasons=reasons or [f"Unusual behavior (risk score {score:.2f})"],
                actions=[monitor],
                details=details,
            )

        return DetectionResult(detector="behavior", details=details)
