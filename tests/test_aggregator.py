"""
Risk Aggregator Tests

Tests for combining detector verdicts, per-check timeouts and the
suspicious-activity audit log.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from referral_guard.scoring import RiskAggregator
from referral_guard.schemas import (
    Decision,
    DetectionResult,
    FraudAction,
    FraudActionType,
    RiskLevel,
    SuspiciousActivityType,
)


def _result(detector, level=RiskLevel.LOW, valid=True, reasons=None, action=None):
    actions = [FraudAction(type=action, description=action.value)] if action else []
    return DetectionResult(
        detector=detector,
        is_valid=valid,
        risk_level=level,
        reasons=reasons or ([] if level == RiskLevel.LOW else [f"{detector} triggered"]),
        actions=actions,
    )


async def _returns(result):
    return result


class TestCombine:
    """Tests for the pure decision rule."""

    @pytest.fixture
    def aggregator(self, signal_store):
        return RiskAggregator(signal_store)

    def test_all_low_allows(self, aggregator):
        decision = aggregator.combine({"a": _result("a"), "b": _result("b")})

        assert decision.decision == Decision.ALLOW
        assert decision.risk_level == RiskLevel.LOW
        assert decision.is_valid
        assert decision.reasons == []

    def test_no_checks_allows(self, aggregator):
        assert aggregator.combine({}).decision == Decision.ALLOW

    def test_single_medium_warns(self, aggregator):
        decision = aggregator.combine({
            "ip_frequency": _result("ip_frequency", RiskLevel.MEDIUM, action=FraudActionType.MONITOR),
            "batch_registration": _result("batch_registration"),
        })

        assert decision.decision == Decision.WARN
        assert decision.risk_level == RiskLevel.MEDIUM
        assert decision.is_valid
        assert not decision.accepted_pending

    def test_single_medium_with_review_action(self, aggregator):
        decision = aggregator.combine({
            "device_reuse": _result("device_reuse", RiskLevel.MEDIUM, action=FraudActionType.REVIEW),
        })

        assert decision.decision == Decision.REVIEW
        assert decision.accepted_pending

    def test_two_mediums_block(self, aggregator):
        decision = aggregator.combine({
            "ip_frequency": _result("ip_frequency", RiskLevel.MEDIUM),
            "batch_registration": _result("batch_registration", RiskLevel.MEDIUM),
        })

        assert decision.decision == Decision.BLOCK
        assert decision.risk_level == RiskLevel.HIGH
        assert not decision.is_valid
        assert decision.reasons[-1] == "2 independent medium-risk signals"

    def test_invalid_medium_blocks(self, aggregator):
        decision = aggregator.combine({
            "self_invitation": _result(
                "self_invitation", RiskLevel.MEDIUM, valid=False, action=FraudActionType.REVIEW
            ),
        })

        assert decision.decision == Decision.BLOCK
        assert decision.risk_level == RiskLevel.HIGH

    def test_high_blocks(self, aggregator):
        decision = aggregator.combine({
            "behavior": _result("behavior", RiskLevel.HIGH),
            "ip_frequency": _result("ip_frequency"),
        })

        assert decision.decision == Decision.BLOCK

    def test_reasons_and_actions_are_unioned(self, aggregator):
        decision = aggregator.combine({
            "a": _result("a", RiskLevel.HIGH, valid=False, reasons=["shared"], action=FraudActionType.BLOCK),
            "b": _result("b", RiskLevel.HIGH, reasons=["shared", "extra"], action=FraudActionType.MONITOR),
        })

        assert decision.reasons == ["shared", "extra"]
        assert [a.type for a in decision.actions] == [FraudActionType.BLOCK, FraudActionType.MONITOR]
        assert set(decision.detector_results) == {"a", "b"}

    def test_failed_open_marks_degraded(self, aggregator):
        decision = aggregator.combine({"a": DetectionResult.unavailable("a")})

        assert decision.degraded
        assert decision.decision == Decision.ALLOW


class TestEvaluate:
    """Tests for concurrent evaluation with timeouts."""

    @pytest.mark.asyncio
    async def test_slow_check_fails_open(self, signal_store):
        aggregator = RiskAggregator(signal_store, timeout_seconds=0.05)

        async def slow():
            await asyncio.sleep(1)
            return _result("slow", RiskLevel.HIGH, valid=False)

        results = await aggregator.evaluate({
            "slow": slow(),
            "fast": _returns(_result("fast", RiskLevel.MEDIUM)),
        })

        assert results["slow"].failed_open
        assert results["slow"].detector == "slow"
        assert results["fast"].risk_level == RiskLevel.MEDIUM

    @pytest.mark.asyncio
    async def test_erroring_check_fails_open(self, signal_store):
        aggregator = RiskAggregator(signal_store)

        async def broken():
            raise RuntimeError("boom")

        results = await aggregator.evaluate({"broken": broken()})

        assert results["broken"].failed_open
        assert results["broken"].is_valid

    @pytest.mark.asyncio
    async def test_missing_detector_name_filled(self, signal_store):
        aggregator = RiskAggregator(signal_store)

        results = await aggregator.evaluate({"named": _returns(DetectionResult())})

        assert results["named"].detector == "named"


class TestDecide:
    """Tests for decide and the audit log."""

    @pytest.mark.asyncio
    async def test_block_is_audited(self, signal_store):
        aggregator = RiskAggregator(signal_store)

        decision = await aggregator.decide(
            {
                "ip_frequency": _returns(_result("ip_frequency", RiskLevel.HIGH, valid=False)),
                "batch_registration": _returns(_result("batch_registration", RiskLevel.MEDIUM)),
            },
            ip="203.0.113.10",
            user_id="user_1",
        )

        assert decision.decision == Decision.BLOCK
        audit = await signal_store.list_suspicious_activities()
        assert len(audit) == 1
        entry = audit[0]
        assert entry.type == SuspiciousActivityType.IP_FREQUENCY
        assert entry.severity == RiskLevel.HIGH
        assert entry.user_id == "user_1"
        assert entry.ip == "203.0.113.10"
        assert set(entry.metadata["results"]) == {"ip_frequency", "batch_registration"}

    @pytest.mark.asyncio
    async def test_low_is_not_audited(self, signal_store):
        aggregator = RiskAggregator(signal_store)

        await aggregator.decide({"ip_frequency": _returns(_result("ip_frequency"))}, ip="203.0.113.10")

        assert await signal_store.list_suspicious_activities() == []

    @pytest.mark.asyncio
    async def test_behavior_audit_type(self, signal_store):
        aggregator = RiskAggregator(signal_store)

        await aggregator.decide(
            {"behavior": _returns(_result("behavior", RiskLevel.MEDIUM))},
            ip="203.0.113.10",
        )

        audit = await signal_store.list_suspicious_activities()
        assert audit[0].type == SuspiciousActivityType.PATTERN_ANOMALY

    @pytest.mark.asyncio
    async def test_audit_failure_does_not_fail_decision(self):
        store = AsyncMock()
        store.record_suspicious_activity.side_effect = ConnectionError("redis down")
        aggregator = RiskAggregator(store)

        decision = await aggregator.decide(
            {"device_reuse": _returns(_result("device_reuse", RiskLevel.HIGH, valid=False))},
            ip="203.0.113.10",
        )

        assert decision.decision == Decision.BLOCK
        store.record_suspicious_activity.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_audit_write_survives_cancellation(self):
        started = asyncio.Event()
        release = asyncio.Event()
        written = []

        async def slow_record(entry):
            started.set()
            await release.wait()
            written.append(entry)

        store = AsyncMock()
        store.record_suspicious_activity.side_effect = slow_record
        aggregator = RiskAggregator(store)

        task = asyncio.create_task(aggregator.decide(
            {"device_reuse": _returns(_result("device_reuse", RiskLevel.HIGH, valid=False))},
            ip="203.0.113.10",
        ))
        await started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        release.set()
        await asyncio.sleep(0.01)

        assert len(written) == 1
        assert written[0].ip == "203.0.113.10"
