"""
Behavior Analyzer Tests

Tests for feature extraction, scoring and anomaly detection.
"""

from datetime import timedelta

import pytest

from referral_guard.behavior import BehaviorAnalyzer, ActivityContext, stable_hash
from referral_guard.schemas import (
    AlertSeverity,
    AlertType,
    AlertDraft,
    BehaviorAnalysis,
    BehaviorPattern,
    BehaviorEvidence,
    DeviationEvidence,
    PatternType,
    RiskLevel,
)

from conftest import BASE_TIME


def _sample(user_id: str, score: float, offset_hours: float) -> BehaviorPattern:
    return BehaviorPattern(
        user_id=user_id,
        pattern_type=PatternType.INVITATION,
        risk_score=score,
        timestamp=BASE_TIME + timedelta(hours=offset_hours),
    )


class TestStableHash:
    """Tests for the process-independent string hash."""

    def test_known_values(self):
        assert stable_hash("") == 0
        assert stable_hash("a") == 97
        assert stable_hash("ab") == 105  # 97 * 31 + 98 = 3105

    def test_range(self):
        for value in ("203.0.113.10", "Mozilla/5.0", "x" * 500):
            assert 0 <= stable_hash(value) < 1000


class TestFeaturesAndScoring:
    """Tests for extract_features and score."""

    @pytest.fixture
    def analyzer(self, signal_store):
        return BehaviorAnalyzer(signal_store)

    def test_extract_features(self, analyzer):
        history = [_sample("u1", 0.3, -1), _sample("u1", 0.3, -30)]
        features = analyzer.extract_features(
            ActivityContext(ip="203.0.113.10", user_agent="curl/8.0"),
            history,
            BASE_TIME,
        )

        assert features["hour_of_day"] == 12.0
        assert features["day_of_week"] == 3.0  # Wednesday, Sunday = 0
        assert features["daily_frequency"] == 1.0
        assert features["ip_hash"] == float(stable_hash("203.0.113.10"))
        assert "user_agent_hash" in features

    def test_missing_context_skips_hashes(self, analyzer):
        features = analyzer.extract_features(ActivityContext(), [], BASE_TIME)
        assert "ip_hash" not in features
        assert "user_agent_hash" not in features

    def test_new_user_scores_half(self, analyzer):
        assert analyzer.score({"hour_of_day": 3.0}, []) == 0.5

    def test_daytime_activity_scores_base(self, analyzer):
        history = [_sample("u1", 0.3, -2)]
        assert analyzer.score({"hour_of_day": 12.0, "daily_frequency": 1.0}, history) == pytest.approx(0.3)

    def test_off_hours_and_frequency_add_up(self, analyzer):
        history = [_sample("u1", 0.3, -2)]
        score = analyzer.score({"hour_of_day": 3.0, "daily_frequency": 15.0}, history)
        # 0.3 base + 0.2 off hours + 0.3 frequency + 0.2 history deviation, clamped
        assert score == 1.0


class TestAnalyze:
    """Tests for analyze and anomaly detection."""

    @pytest.mark.asyncio
    async def test_first_activity_has_no_alerts(self, signal_store):
        analyzer = BehaviorAnalyzer(signal_store)

        analysis = await analyzer.analyze(
            "user_1", PatternType.INVITATION, ActivityContext(timestamp=BASE_TIME)
        )

        assert analysis.pattern.risk_score == 0.5
        assert analysis.alerts == []
        stored = await signal_store.recent_behavior_samples("user_1", PatternType.INVITATION, 10)
        assert len(stored) == 1

    @pytest.mark.asyncio
    async def test_burst_raises_velocity_spike(self, signal_store):
        analyzer = BehaviorAnalyzer(signal_store, velocity_threshold=10, velocity_min_samples=5)

        analyses = []
        for i in range(5):
            analyses.append(await analyzer.analyze(
                "user_1",
                PatternType.INVITATION,
                ActivityContext(ip="203.0.113.10", timestamp=BASE_TIME + timedelta(seconds=30 * i)),
            ))

        assert all(not a.alerts for a in analyses[:4])
        alert = analyses[-1].alerts[0]
        assert alert.alert_type == AlertType.VELOCITY_SPIKE
        assert alert.severity == AlertSeverity.HIGH
        assert alert.evidence.sample_count == 5
        # 120s span: 5 / (120 / 3600) = 150 per hour
        assert alert.evidence.velocity == pytest.approx(150.0)

    @pytest.mark.asyncio
    async def test_six_samples_over_eighteen_minutes(self, signal_store):
        analyzer = BehaviorAnalyzer(signal_store, velocity_threshold=10, velocity_min_samples=5)
        for i in range(6):
            await signal_store.append_behavior_sample(
                BehaviorPattern(
                    user_id="user_1",
                    pattern_type=PatternType.INVITATION,
                    timestamp=BASE_TIME - timedelta(seconds=216 * i),
                )
            )

        alerts = await analyzer.detect_anomalies("user_1", now=BASE_TIME)

        # 1080s span: 6 / (1080 / 3600) = 20 per hour
        assert [a.alert_type for a in alerts] == [AlertType.VELOCITY_SPIKE]
        assert alerts[0].evidence.velocity == pytest.approx(20.0)
        assert alerts[0].evidence.span_seconds == 1080.0

    @pytest.mark.asyncio
    async def test_short_span_is_floored(self, signal_store):
        analyzer = BehaviorAnalyzer(signal_store, velocity_threshold=1000, velocity_min_samples=5)
        for i in range(5):
            await signal_store.append_behavior_sample(
                BehaviorPattern(user_id="user_1", pattern_type=PatternType.ACTIVITY, timestamp=BASE_TIME)
            )

        # span 0 -> 60s: 5 / (60 / 3600) = 300 per hour, below 1000
        assert await analyzer.detect_anomalies("user_1", now=BASE_TIME) == []

    @pytest.mark.asyncio
    async def test_slow_activity_not_flagged(self, signal_store):
        analyzer = BehaviorAnalyzer(signal_store, velocity_threshold=10, velocity_min_samples=5)
        for i in range(6):
            await signal_store.append_behavior_sample(_sample("user_1", 0.3, -3 * i))

        assert await analyzer.detect_anomalies("user_1", now=BASE_TIME) == []

    @pytest.mark.asyncio
    async def test_deviation_high(self, signal_store):
        analyzer = BehaviorAnalyzer(signal_store, deviation_threshold=0.1, deviation_critical=0.4)
        for offset, score in ((-3, 0.1), (-2, 0.1), (-1, 0.1), (0, 0.4)):
            await signal_store.append_behavior_sample(_sample("user_1", score, offset))

        alerts = await analyzer.detect_anomalies("user_1", now=BASE_TIME)

        assert len(alerts) == 1
        assert alerts[0].alert_type == AlertType.PATTERN_DEVIATION
        assert alerts[0].severity == AlertSeverity.HIGH
        assert isinstance(alerts[0].evidence, DeviationEvidence)
        assert alerts[0].evidence.mean_score == pytest.approx(0.175)

    @pytest.mark.asyncio
    async def test_deviation_critical(self, signal_store):
        analyzer = BehaviorAnalyzer(signal_store, deviation_threshold=0.1, deviation_critical=0.4)
        for offset, score in ((-3, 0.1), (-2, 0.1), (-1, 0.1), (0, 0.9)):
            await signal_store.append_behavior_sample(_sample("user_1", score, offset))

        alerts = await analyzer.detect_anomalies("user_1", now=BASE_TIME)

        assert alerts[0].severity == AlertSeverity.CRITICAL

    @pytest.mark.asyncio
    async def test_deviation_needs_three_samples(self, signal_store):
        analyzer = BehaviorAnalyzer(signal_store, deviation_threshold=0.1)
        for offset, score in ((-1, 0.1), (0, 0.9)):
            await signal_store.append_behavior_sample(_sample("user_1", score, offset))

        assert await analyzer.detect_anomalies("user_1", now=BASE_TIME) == []

    @pytest.mark.asyncio
    async def test_high_score_raises_behavior_anomaly(self, signal_store):
        analyzer = BehaviorAnalyzer(signal_store, anomaly_score=0.8)
        night = BASE_TIME.replace(hour=3)
        for i in range(1, 12):
            await signal_store.append_behavior_sample(
                BehaviorPattern(
                    user_id="user_1",
                    pattern_type=PatternType.INVITATION,
                    risk_score=0.3,
                    timestamp=night - timedelta(hours=i),
                )
            )

        analysis = await analyzer.analyze(
            "user_1", PatternType.INVITATION, ActivityContext(ip="203.0.113.10", timestamp=night)
        )

        # 0.3 base + 0.2 off hours + 0.3 frequency + 0.2 history deviation
        assert analysis.pattern.risk_score == 1.0
        assert [a.alert_type for a in analysis.alerts] == [AlertType.BEHAVIOR_ANOMALY]
        alert = analysis.alerts[0]
        assert alert.severity == AlertSeverity.MEDIUM
        assert isinstance(alert.evidence, BehaviorEvidence)
        assert alert.evidence.pattern_type == "invitation"
        assert alert.evidence.features["daily_frequency"] == 11.0
        assert analyzer.to_detection_result(analysis).risk_level == RiskLevel.MEDIUM

    @pytest.mark.asyncio
    async def test_old_history_ignored(self, signal_store):
        analyzer = BehaviorAnalyzer(signal_store)
        await signal_store.append_behavior_sample(_sample("user_1", 0.3, -30))

        analysis = await analyzer.analyze(
            "user_1", PatternType.INVITATION, ActivityContext(timestamp=BASE_TIME)
        )

        assert analysis.pattern.risk_score == 0.5


class TestDetectionBridge:
    """Tests for to_detection_result."""

    @pytest.fixture
    def analyzer(self, signal_store):
        return BehaviorAnalyzer(signal_store, anomaly_score=0.8)

    def _analysis(self, score=0.3, severities=()):
        alerts = [
            AlertDraft(
                user_id="user_1",
                alert_type=AlertType.PATTERN_DEVIATION,
                severity=severity,
                description=f"deviation {severity.value}",
                evidence=DeviationEvidence(
                    deviation=0.5, latest_score=0.9, mean_score=0.4, sample_count=4, threshold=0.1
                ),
            )
            for severity in severities
        ]
        pattern = BehaviorPattern(
            user_id="user_1", pattern_type=PatternType.INVITATION, risk_score=score, timestamp=BASE_TIME
        )
        return BehaviorAnalysis(pattern=pattern, alerts=alerts)

    def test_quiet_behavior_is_low(self, analyzer):
        result = analyzer.to_detection_result(self._analysis())
        assert result.risk_level == RiskLevel.LOW
        assert result.is_valid
        assert result.detector == "behavior"

    def test_high_score_is_medium(self, analyzer):
        result = analyzer.to_detection_result(self._analysis(score=0.9))
        assert result.risk_level == RiskLevel.MEDIUM
        assert "risk score 0.90" in result.reasons[0]

    def test_anomaly_is_medium(self, analyzer):
        result = analyzer.to_detection_result(self._analysis(severities=[AlertSeverity.HIGH]))
        assert result.risk_level == RiskLevel.MEDIUM
        assert result.reasons == ["deviation high"]

    def test_critical_anomaly_is_high_but_valid(self, analyzer):
        result = analyzer.to_detection_result(
            self._analysis(severities=[AlertSeverity.HIGH, AlertSeverity.CRITICAL])
        )
        assert result.risk_level == RiskLevel.HIGH
        assert result.is_valid
