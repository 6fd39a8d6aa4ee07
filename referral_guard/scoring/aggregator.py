"""
Risk Aggregator

Runs all checks for one attempt concurrently and merges their
verdicts into a single decision.

Decision rule:
1. Any invalid result, or any high-risk result -> BLOCK / high
2. Two or more medium results -> BLOCK / high (independent medium
   signals corroborate each other)
3. Exactly one medium result -> WARN / medium (REVIEW when a check
   asked for manual review)
4. Otherwise -> ALLOW / low

Checks that error or exceed the per-check timeout fail open and mark
the decision as degraded.
"""

import asyncio
import logging
from typing import Awaitable, Optional

from ..config import settings
from ..metrics import metrics
from ..schemas import (
    DetectionResult,
    RiskDecision,
    Decision,
    RiskLevel,
    FraudActionType,
    SuspiciousActivity,
    SuspiciousActivityType,
)
from ..store import SignalStore

logger = logging.getLogger("referral_guard.scoring")

# Audit type recorded for each check
AUDIT_TYPES = {
    "ip_frequency": SuspiciousActivityType.IP_FREQUENCY,
    "device_reuse": SuspiciousActivityType.DEVICE_REUSE,
    "self_invitation": SuspiciousActivityType.SELF_INVITATION,
    "batch_registration": SuspiciousActivityType.BATCH_REGISTRATION,
    "behavior": SuspiciousActivityType.PATTERN_ANOMALY,
}

_LEVEL_RANK = {RiskLevel.LOW: 0, RiskLevel.MEDIUM: 1, RiskLevel.HIGH: 2}


class RiskAggregator:
    """
    Combines detector and behavior verdicts into one RiskDecision.

    Holds no state between calls; every decision is recomputed from
    the SignalStore.
    """

    def __init__(self, store: SignalStore, timeout_seconds: float = None):
        """
        Initialize aggregator.

        Args:
            store: Signal store receiving the suspicious-activity audit log
            timeout_seconds: Per-check timeout
        """
        self.store = store
        self.timeout = timeout_seconds or settings.detector_timeout_seconds

    async def evaluate(
        self,
        checks: dict[str, Awaitable[DetectionResult]],
    ) -> dict[str, DetectionResult]:
        """
        Run all checks concurrently, each bounded by the timeout.

        Args:
            checks: Awaitables by check name

        Returns:
            Results by check name, in the order given
        """
        names = list(checks)
        results = await asyncio.gather(
            *(self._guarded(name, check) for name, check in checks.items())
        )
        return dict(zip(names, results))

    async def _guarded(self, name: str, check: Awaitable[DetectionResult]) -> DetectionResult:
        try:
            result = await asyncio.wait_for(check, timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning("Check %s timed out after %.1fs, defaulting to low risk", name, self.timeout)
            metrics.detector_failures.labels(detector=name, reason="timeout").inc()
            return DetectionResult.unavailable(name)
        except Exception as e:
            logger.warning("Check %s failed, defaulting to low risk: %s", name, e)
            metrics.detector_failures.labels(detector=name, reason="error").inc()
            return DetectionResult.unavailable(name)

        if not result.detector:
            result = result.model_copy(update={"detector": name})
        return result

    def combine(self, results: dict[str, DetectionResult]) -> RiskDecision:
        """Merge sub-results into a decision. Pure; no I/O."""
        reasons: list[str] = []
        actions = []
        for result in results.values():
            for reason in result.reasons:
                if reason not in reasons:
                    reasons.append(reason)
            actions.extend(result.actions)

        values = list(results.values())
        degraded = any(r.failed_open for r in values)
        mediums = sum(1 for r in values if r.risk_level == RiskLevel.MEDIUM)

        if any(not r.is_valid for r in values) or any(r.risk_level == RiskLevel.HIGH for r in values):
            decision, level = Decision.BLOCK, RiskLevel.HIGH
        elif mediums >= 2:
            decision, level = Decision.BLOCK, RiskLevel.HIGH
            reasons.append(f"{mediums} independent medium-risk signals")
        elif mediums == 1:
            needs_review = any(a.type == FraudActionType.REVIEW for a in actions)
            decision = Decision.REVIEW if needs_review else Decision.WARN
            level = RiskLevel.MEDIUM
        else:
            decision, level = Decision.ALLOW, RiskLevel.LOW

        return RiskDecision(
            decision=decision,
            is_valid=decision != Decision.BLOCK,
            risk_level=level,
            reasons=reasons,
            actions=actions,
            detector_results=dict(results),
            degraded=degraded,
        )

    async def decide(
        self,
        checks: dict[str, Awaitable[DetectionResult]],
        ip: str,
        user_id: Optional[str] = None,
    ) -> RiskDecision:
        """
        Evaluate, combine and audit.

        Non-low decisions are written to the suspicious-activity log. The
        write is shielded, so it completes even if the caller is cancelled.
        """
        results = await self.evaluate(checks)
        decision = self.combine(results)

        if decision.degraded:
            metrics.degraded_assessments.inc()

        if decision.risk_level != RiskLevel.LOW:
            entry = self.build_audit_entry(decision, ip, user_id)
            await asyncio.shield(asyncio.ensure_future(self._record_audit(entry)))

        return decision

    def build_audit_entry(
        self,
        decision: RiskDecision,
        ip: str,
        user_id: Optional[str] = None,
    ) -> SuspiciousActivity:
        """Audit entry capturing every sub-result behind a decision."""
        worst = max(
            decision.detector_results.values(),
            key=lambda r: (not r.is_valid, _LEVEL_RANK[r.risk_level]),
        )
        activity_type = AUDIT_TYPES.get(worst.detector, SuspiciousActivityType.PATTERN_ANOMALY)

        return SuspiciousActivity(
            user_id=user_id,
            ip=ip,
            type=activity_type,
            description="; ".join(decision.reasons) or decision.decision.value,
            severity=decision.risk_level,
            metadata={
                "decision": decision.decision.value,
                "degraded": decision.degraded,
                "results": {
                    name: result.model_dump(mode="json")
                    for name, result in decision.detector_results.items()
                },
            },
        )

    async def _record_audit(self, entry: SuspiciousActivity) -> None:
        try:
            await self.store.record_suspicious_activity(entry)
        except Exception as e:
            logger.warning("Failed to record suspicious activity: %s", e)
