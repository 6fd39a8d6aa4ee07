"""
Review Case Manager

Human-review workflow for risky users:

    pending -> in_review -> approved | rejected | escalated
    escalated -> in_review (new assignment)

A decision is the only way a case leads to enforcement: the decision
is recorded on the case first, then the matching action runs.
"""

import logging
from datetime import datetime, UTC
from typing import Optional
from uuid import uuid4

from ..errors import CaseNotFoundError, InvalidTransitionError
from ..metrics import metrics
from ..schemas import (
    CasePriority,
    CaseStatus,
    CaseType,
    DECISION_STATUS,
    DecisionAction,
    DetectionEvidence,
    DetectionResult,
    ManualNoteEvidence,
    ReviewCase,
    ReviewDecision,
    ReviewEvidence,
    RiskLevel,
)
from ..store import CaseStore
from ..enforcement import AccountEnforcement

logger = logging.getLogger("referral_guard.review")

PRIORITY_BY_RISK = {
    RiskLevel.HIGH: CasePriority.URGENT,
    RiskLevel.MEDIUM: CasePriority.MEDIUM,
    RiskLevel.LOW: CasePriority.LOW,
}

# Feature frozen until a user completes verification
VERIFICATION_FEATURE = "referral"

_SCALARS = (int, float, str, bool, type(None))


def detection_evidence(result: DetectionResult) -> DetectionEvidence:
    """Case evidence from a detector result (scalar details only)."""
    return DetectionEvidence(
        detector=result.detector,
        risk_level=result.risk_level.value,
        reasons=list(result.reasons),
        details={k: v for k, v in result.details.items() if isinstance(v, _SCALARS)},
    )


class ReviewCaseManager:
    """
    Review case lifecycle.

    Invalid transitions raise InvalidTransitionError and unknown ids
    raise CaseNotFoundError; neither modifies the stored case.
    """

    def __init__(
        self,
        store: CaseStore,
        enforcement: Optional[AccountEnforcement] = None,
    ):
        self.store = store
        self.enforcement = enforcement

    async def create_case(
        self,
        user_id: str,
        case_type: CaseType,
        risk_level: RiskLevel,
        evidence: Optional[list[ReviewEvidence]] = None,
        assigned_to: Optional[str] = None,
    ) -> ReviewCase:
        """
        Open a case. New cases are always pending, even when pre-assigned.

        Args:
            user_id: User under review
            case_type: Case type
            risk_level: Assessed risk (sets the priority)
            evidence: Initial evidence
            assigned_to: Reviewer to pre-assign

        Returns:
            The new case
        """
        case = ReviewCase(
            id=f"case_{uuid4().hex[:12]}",
            user_id=user_id,
            case_type=case_type,
            priority=PRIORITY_BY_RISK[risk_level],
            assigned_to=assigned_to,
            evidence=list(evidence or []),
        )
        await self.store.save_case(case)
        metrics.case_transitions.labels(status=case.status.value).inc()
        logger.info(
            "Opened %s case %s for %s (priority %s)",
            case_type.value,
            case.id,
            user_id,
            case.priority.value,
        )
        return case

    async def assign(self, case_id: str, reviewer_id: str) -> ReviewCase:
        """pending | escalated -> in_review."""
        case = await self._require(case_id)
        if case.status not in (CaseStatus.PENDING, CaseStatus.ESCALATED):
            raise InvalidTransitionError(case_id, case.status.value, CaseStatus.IN_REVIEW.value)
        return await self._save_transition(
            case, status=CaseStatus.IN_REVIEW, assigned_to=reviewer_id
        )

    async def escalate(self, case_id: str, reason: str, escalated_by: str) -> ReviewCase:
        """in_review -> escalated, one priority level up, with a note."""
        case = await self._require(case_id)
        if case.status != CaseStatus.IN_REVIEW:
            raise InvalidTransitionError(case_id, case.status.value, CaseStatus.ESCALATED.value)
        note = ManualNoteEvidence(author=escalated_by, note=f"Escalated: {reason}")
        return await self._save_transition(
            case,
            status=CaseStatus.ESCALATED,
            priority=case.priority.bumped(),
            evidence=[*case.evidence, note],
        )

    async def decide(self, case_id: str, decision: ReviewDecision) -> ReviewCase:
        """
        Record a reviewer decision and apply its enforcement.

        approve / require_verification -> approved
        reject / freeze / ban / recover_rewards -> rejected
        """
        case = await self._require(case_id)
        status = DECISION_STATUS[decision.action]
        if case.status != CaseStatus.IN_REVIEW:
            raise InvalidTransitionError(case_id, case.status.value, status.value)

        decided = await self._save_transition(case, status=status, decision=decision)
        logger.info(
            "Case %s decided %s by %s",
            case_id,
            decision.action.value,
            decision.reviewer_id,
        )
        await self._enforce(decided, decision)
        return decided

    async def _enforce(self, case: ReviewCase, decision: ReviewDecision) -> None:
        if decision.action in (DecisionAction.APPROVE, DecisionAction.REJECT):
            return
        if self.enforcement is None:
            logger.warning("No enforcement configured; %s on case %s not applied", decision.action.value, case.id)
            return

        if decision.action == DecisionAction.FREEZE:
            await self.enforcement.freeze_account(
                case.user_id,
                decision.reason,
                decision.reviewer_id,
                duration_minutes=decision.freeze_duration_minutes,
            )
        elif decision.action == DecisionAction.BAN:
            await self.enforcement.ban_user(
                case.user_id,
                decision.reason,
                duration_minutes=decision.freeze_duration_minutes,
                created_by=decision.reviewer_id,
            )
        elif decision.action == DecisionAction.RECOVER_REWARDS:
            await self.enforcement.recover_rewards(
                case.user_id,
                decision.recovery_amount,
                decision.reason,
                decision.reviewer_id,
                case_id=case.id,
            )
        elif decision.action == DecisionAction.REQUIRE_VERIFICATION:
            await self.enforcement.freeze_account(
                case.user_id,
                f"Verification required: {decision.reason}",
                decision.reviewer_id,
                features=[VERIFICATION_FEATURE],
            )

    async def add_evidence(self, case_id: str, evidence: ReviewEvidence) -> ReviewCase:
        """Append evidence to an open case."""
        case = await self._require(case_id)
        if not case.is_open:
            raise InvalidTransitionError(case_id, case.status.value, "add_evidence")
        return await self._save_transition(case, evidence=[*case.evidence, evidence])

    async def get_case(self, case_id: str) -> Optional[ReviewCase]:
        return await self.store.get_case(case_id)

    async def get_cases(
        self,
        status: Optional[CaseStatus] = None,
        assigned_to: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[ReviewCase]:
        """Cases newest first."""
        return await self.store.list_cases(status=status, assigned_to=assigned_to, limit=limit)

    async def count_open_cases(self, user_id: str) -> int:
        cases = await self.store.list_cases(user_id=user_id)
        return sum(1 for case in cases if case.is_open)

    async def find_open_case(self, user_id: str) -> Optional[ReviewCase]:
        """Most recent open case of the user, if any."""
        for case in await self.store.list_cases(user_id=user_id):
            if case.is_open:
                return case
        return None

    async def _require(self, case_id: str) -> ReviewCase:
        case = await self.store.get_case(case_id)
        if case is None:
            raise CaseNotFoundError(case_id)
        return case

    async def _save_transition(self, case: ReviewCase, **changes) -> ReviewCase:
        updated = ReviewCase.model_validate(
            {**case.model_dump(), **changes, "updated_at": datetime.now(UTC)}
        )
        await self.store.save_case(updated)
        if updated.status != case.status:
            metrics.case_transitions.labels(status=updated.status.value).inc()
        return updated
