"""
Account Enforcement

Freezes, bans, reward recovery and the per-user risk profile.

Freeze and ban entries are append-only records; releasing a freeze
marks it inactive rather than deleting it. The account status view is
recomputed from those records on every read, so an expired freeze is
simply not effective any more.
"""

import logging
from datetime import datetime, timedelta, UTC
from typing import Optional
from uuid import uuid4

from ..metrics import metrics
from ..schemas import (
    ALL_FEATURES,
    AccountFreeze,
    AccountStatus,
    NotificationChannelType,
    NotificationRequest,
    NotificationType,
    RecoveryStatus,
    RewardRecovery,
    RiskLevel,
    UserBan,
)
from ..store import CaseStore, EnforcementStore
from ..notifications import NotificationService
from .rewards import RewardMilestones

logger = logging.getLogger("referral_guard.enforcement")


class AccountEnforcement:
    """
    Enforcement actions against user accounts.

    Usage:
        enforcement = AccountEnforcement(store, case_store, notifier)
        await enforcement.freeze_account("user_1", "Self-invitation", "reviewer_7")
        status = await enforcement.get_account_status("user_1")
    """

    def __init__(
        self,
        store: EnforcementStore,
        case_store: Optional[CaseStore] = None,
        notifier: Optional[NotificationService] = None,
        milestones: Optional[RewardMilestones] = None,
    ):
        self.store = store
        self.case_store = case_store
        self.notifier = notifier
        self.milestones = milestones or RewardMilestones()

    # =========================================================================
    # Freeze
    # =========================================================================

    async def freeze_account(
        self,
        user_id: str,
        reason: str,
        created_by: str,
        features: Optional[list[str]] = None,
        duration_minutes: Optional[int] = None,
    ) -> AccountFreeze:
        """
        Freeze an account (all features unless given) and notify the user.

        Also raises the user's risk level to high.
        """
        freeze = await self._record_freeze(user_id, reason, created_by, features, duration_minutes)
        await self._notify(
            user_id,
            NotificationType.ACCOUNT_FROZEN,
            "Your account has been frozen",
            f"Your account has been frozen: {reason}",
            {"freeze_id": freeze.id, "features": freeze.frozen_features},
        )
        return freeze

    async def _record_freeze(
        self,
        user_id: str,
        reason: str,
        created_by: str,
        features: Optional[list[str]],
        duration_minutes: Optional[int],
    ) -> AccountFreeze:
        now = datetime.now(UTC)
        freeze = AccountFreeze(
            id=f"frz_{uuid4().hex[:12]}",
            user_id=user_id,
            reason=reason,
            frozen_features=features or [ALL_FEATURES],
            created_by=created_by,
            created_at=now,
            expires_at=now + timedelta(minutes=duration_minutes) if duration_minutes else None,
        )
        await self.store.save_freeze(freeze)
        await self.update_user_risk_level(user_id, RiskLevel.HIGH, f"Account frozen: {reason}")
        metrics.enforcement_actions.labels(action="freeze").inc()
        logger.warning(
            "Froze account %s (%s) by %s: %s",
            user_id,
            ",".join(freeze.frozen_features),
            created_by,
            reason,
        )
        return freeze

    async def unfreeze_account(self, user_id: str, released_by: str) -> int:
        """Deactivate every active freeze of the user. Returns how many were released."""
        released = 0
        for freeze in await self.store.list_freezes(user_id):
            if not freeze.is_active:
                continue
            await self.store.save_freeze(freeze.model_copy(update={"is_active": False}))
            released += 1

        if released:
            metrics.enforcement_actions.labels(action="unfreeze").inc()
            logger.info("Released %d freezes on %s by %s", released, user_id, released_by)
            await self._notify(
                user_id,
                NotificationType.ACCOUNT_UNFROZEN,
                "Your account has been restored",
                "Your account is no longer frozen.",
                {"released_by": released_by},
            )
        return released

    async def get_active_freeze(
        self,
        user_id: str,
        now: Optional[datetime] = None,
    ) -> Optional[AccountFreeze]:
        """Latest freeze that is active and not expired."""
        now = now or datetime.now(UTC)
        for freeze in await self.store.list_freezes(user_id):
            if freeze.is_effective(now):
                return freeze
        return None

    async def is_frozen(
        self,
        user_id: str,
        feature: str = ALL_FEATURES,
        now: Optional[datetime] = None,
    ) -> bool:
        """True when an effective freeze covers ``feature`` (or everything)."""
        now = now or datetime.now(UTC)
        for freeze in await self.store.list_freezes(user_id):
            if not freeze.is_effective(now):
                continue
            if ALL_FEATURES in freeze.frozen_features or feature in freeze.frozen_features:
                return True
        return False

    # =========================================================================
    # Ban
    # =========================================================================

    async def ban_user(
        self,
        user_id: str,
        reason: str,
        duration_minutes: Optional[int] = None,
        created_by: str = "system",
    ) -> UserBan:
        """Ban a user from the referral program; the account is frozen as well."""
        now = datetime.now(UTC)
        expires_at = now + timedelta(minutes=duration_minutes) if duration_minutes else None
        ban = UserBan(
            id=f"ban_{uuid4().hex[:12]}",
            user_id=user_id,
            reason=reason,
            created_at=now,
            expires_at=expires_at,
        )
        await self.store.save_ban(ban)
        metrics.enforcement_actions.labels(action="ban").inc()

        await self._record_freeze(user_id, f"Banned: {reason}", created_by, None, duration_minutes)
        await self._notify(
            user_id,
            NotificationType.ACCOUNT_BANNED,
            "Your account has been banned",
            f"Your account has been banned: {reason}",
            {"ban_id": ban.id, "expires_at": expires_at.isoformat() if expires_at else None},
        )
        return ban

    async def is_user_banned(self, user_id: str, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(UTC)
        return any(ban.is_effective(now) for ban in await self.store.list_bans(user_id))

    # =========================================================================
    # Rewards
    # =========================================================================

    async def recover_rewards(
        self,
        user_id: str,
        amount: float,
        reason: str,
        created_by: str,
        case_id: Optional[str] = None,
    ) -> RewardRecovery:
        """
        Record a reward clawback.

        The ledger debit itself happens outside the engine; the entry
        starts as pending.
        """
        recovery = RewardRecovery(
            id=f"rcv_{uuid4().hex[:12]}",
            user_id=user_id,
            amount=amount,
            reason=reason,
            case_id=case_id,
            created_by=created_by,
        )
        await self.store.save_recovery(recovery)
        metrics.enforcement_actions.labels(action="recover_rewards").inc()
        logger.warning("Recovery of %.2f ordered for %s by %s: %s", amount, user_id, created_by, reason)
        return recovery

    async def recover_milestone_rewards(
        self,
        user_id: str,
        successful_invites: int,
        fraudulent_invites: int,
        reason: str,
        created_by: str,
        case_id: Optional[str] = None,
    ) -> Optional[RewardRecovery]:
        """Recover milestone rewards that fraudulent invites unlocked (None if nothing to recover)."""
        amount = self.milestones.clawback(successful_invites, fraudulent_invites)
        if amount <= 0:
            return None
        return await self.recover_rewards(user_id, amount, reason, created_by, case_id)

    # =========================================================================
    # Risk profile and status
    # =========================================================================

    async def get_user_risk_level(self, user_id: str) -> RiskLevel:
        return await self.store.get_risk_level(user_id) or RiskLevel.LOW

    async def update_user_risk_level(self, user_id: str, level: RiskLevel, reason: str = "") -> None:
        await self.store.set_risk_level(user_id, level)
        logger.info("Risk level of %s set to %s: %s", user_id, level.value, reason or "manual update")

    async def get_account_status(self, user_id: str, now: Optional[datetime] = None) -> AccountStatus:
        """Account read model: effective freeze, ban flag, risk level, recoveries, open cases."""
        now = now or datetime.now(UTC)
        freeze = await self.get_active_freeze(user_id, now)

        recoveries = await self.store.list_recoveries(user_id)
        total_recovered = sum(r.amount for r in recoveries if r.status != RecoveryStatus.FAILED)

        open_cases = 0
        if self.case_store is not None:
            cases = await self.case_store.list_cases(user_id=user_id)
            open_cases = sum(1 for case in cases if case.is_open)

        return AccountStatus(
            user_id=user_id,
            is_frozen=freeze is not None,
            frozen_features=freeze.frozen_features if freeze else [],
            freeze_reason=freeze.reason if freeze else None,
            freeze_expires_at=freeze.expires_at if freeze else None,
            is_banned=await self.is_user_banned(user_id, now),
            risk_level=await self.get_user_risk_level(user_id),
            total_recovered_rewards=total_recovered,
            active_review_cases=open_cases,
        )

    async def _notify(
        self,
        user_id: str,
        notification_type: NotificationType,
        title: str,
        content: str,
        metadata: dict,
    ) -> None:
        if self.notifier is None:
            return
        try:
            await self.notifier.send_notification(
                NotificationRequest(
                    user_id=user_id,
                    type=notification_type,
                    title=title,
                    content=content,
                    channel=NotificationChannelType.IN_APP,
                    metadata=metadata,
                ),
                immediate=True,
            )
        except Exception as e:
            logger.error("Failed to notify %s (%s): %s", user_id, notification_type.value, e)
