"""
Alert Manager

Persists anomaly alerts, enforces per-rule cooldowns and executes the
rule's actions (log, webhook, notify admin).

Alert lifecycle:
    pending -> investigating -> resolved | false_positive

Action failures are logged and counted but never propagate to the
caller; the alert is already persisted by then.
"""

import logging
from datetime import datetime, UTC
from typing import Optional
from uuid import uuid4

import httpx

from ..config import settings
from ..errors import AlertNotFoundError
from ..metrics import metrics
from ..schemas import (
    AlertDraft,
    AnomalyAlert,
    AlertRule,
    AlertType,
    AlertSeverity,
    AlertStatus,
    AlertActionType,
    ACTIVE_ALERT_STATUSES,
    TERMINAL_ALERT_STATUSES,
    NotificationRequest,
    NotificationType,
    NotificationChannelType,
)
from ..store import AlertStore
from ..notifications import NotificationService
from .cooldown import CooldownBackend, MemoryCooldown

logger = logging.getLogger("referral_guard.alerts")


def default_rules(cooldowns: Optional[dict[str, int]] = None) -> list[AlertRule]:
    """
    One rule per alert type, with cooldowns from settings.

    Behavior rules cool down per user; network abuse cools down per rule.
    """
    cooldowns = cooldowns if cooldowns is not None else settings.alert_cooldown_minutes
    rules = []
    for alert_type in AlertType:
        per_user = alert_type != AlertType.NETWORK_ABUSE
        rules.append(
            AlertRule(
                id=alert_type.value,
                alert_type=alert_type,
                cooldown_minutes=cooldowns.get(alert_type.value, 60),
                actions=[AlertActionType.LOG, AlertActionType.NOTIFY_ADMIN],
                per_user=per_user,
            )
        )
    return rules


def _with_changes(alert: AnomalyAlert, **changes) -> AnomalyAlert:
    """Copy with changes, re-validating the status/resolved_at invariant."""
    return AnomalyAlert.model_validate({**alert.model_dump(), **changes})


class AlertManager:
    """
    Alert persistence and dispatch.

    Cooldown state is the only cross-request mutable state here; it
    lives in the cooldown backend (in-process or Redis).
    """

    def __init__(
        self,
        store: AlertStore,
        notifier: Optional[NotificationService] = None,
        cooldown: Optional[CooldownBackend] = None,
        rules: Optional[list[AlertRule]] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        webhook_url: Optional[str] = None,
        admin_user_id: Optional[str] = None,
    ):
        """
        Initialize alert manager.

        Args:
            store: Alert store
            notifier: Notification service for admin notifications
            cooldown: Cooldown backend (in-process by default)
            rules: Alert rules (one default rule per alert type if omitted)
            http_client: HTTP client for webhook actions
            webhook_url: Default webhook URL
            admin_user_id: Recipient of admin notifications
        """
        self.store = store
        self.notifier = notifier
        self.cooldown = cooldown or MemoryCooldown()
        self.rules: dict[str, AlertRule] = {r.id: r for r in (rules or default_rules())}
        self.http_client = http_client
        self.webhook_url = webhook_url or settings.alert_webhook_url
        self.admin_user_id = admin_user_id or settings.alert_admin_user_id

    def rule_for(self, draft: AlertDraft) -> Optional[AlertRule]:
        """First enabled rule matching the draft."""
        for rule in self.rules.values():
            if rule.matches(draft):
                return rule
        return None

    async def create_alert(
        self,
        draft: AlertDraft,
        rule_id: Optional[str] = None,
    ) -> Optional[str]:
        """
        Persist an alert and execute its rule's actions.

        Args:
            draft: Detected alert
            rule_id: Rule to apply (matched by alert type when omitted)

        Returns:
            Alert id, or None when suppressed by an active cooldown
            or a disabled rule
        """
        if rule_id is not None:
            rule = self.rules.get(rule_id)
            if rule is None:
                raise ValueError(f"Unknown alert rule: {rule_id}")
            if not rule.enabled:
                return None
        else:
            rule = self.rule_for(draft)

        if rule is not None and rule.cooldown_minutes > 0:
            acquired = await self.cooldown.try_acquire(
                rule.cooldown_key(draft.user_id),
                rule.cooldown_minutes * 60,
            )
            if not acquired:
                logger.info(
                    "Alert %s for user %s suppressed by cooldown of rule %s",
                    draft.alert_type.value,
                    draft.user_id,
                    rule.id,
                )
                metrics.alerts_suppressed.labels(rule_id=rule.id).inc()
                return None

        alert = AnomalyAlert(
            id=f"alert_{uuid4().hex[:12]}",
            rule_id=rule.id if rule else None,
            **draft.model_dump(),
        )
        await self.store.save_alert(alert)
        metrics.alerts_created.labels(
            alert_type=alert.alert_type.value, severity=alert.severity.value
        ).inc()

        actions = rule.actions if rule else [AlertActionType.LOG]
        for action in actions:
            try:
                await self._execute(action, alert, rule)
            except Exception as e:
                logger.error("Alert action %s failed for %s: %s", action.value, alert.id, e)
                metrics.alert_action_failures.labels(action=action.value).inc()

        return alert.id

    async def _execute(
        self,
        action: AlertActionType,
        alert: AnomalyAlert,
        rule: Optional[AlertRule],
    ) -> None:
        if action == AlertActionType.LOG:
            logger.warning(
                "Alert %s [%s/%s] for user %s: %s",
                alert.id,
                alert.alert_type.value,
                alert.severity.value,
                alert.user_id,
                alert.description,
            )
        elif action == AlertActionType.NOTIFY_ADMIN:
            if self.notifier is None:
                logger.debug("No notifier configured; admin not notified of %s", alert.id)
                return
            await self.notifier.send_notification(
                NotificationRequest(
                    user_id=self.admin_user_id,
                    type=NotificationType.SECURITY_ALERT,
                    title=f"Security alert: {alert.alert_type.value} ({alert.severity.value})",
                    content=alert.description,
                    channel=NotificationChannelType.IN_APP,
                    metadata={
                        "alert_id": alert.id,
                        "subject_user_id": alert.user_id,
                        "severity": alert.severity.value,
                    },
                ),
                immediate=True,
            )
        elif action == AlertActionType.WEBHOOK:
            url = (rule.webhook_url if rule else None) or self.webhook_url
            if not url:
                logger.warning("Webhook action for %s skipped: no URL configured", alert.id)
                return
            await self._post_webhook(url, alert)

    async def _post_webhook(self, url: str, alert: AnomalyAlert) -> None:
        payload = alert.model_dump(mode="json")
        timeout = settings.alert_webhook_timeout_seconds
        if self.http_client is not None:
            response = await self.http_client.post(url, json=payload, timeout=timeout)
            response.raise_for_status()
            return
        async with httpx.AsyncClient(timeout=timeout) as client:
            response = await client.post(url, json=payload)
            response.raise_for_status()

    # =========================================================================
    # Queries and transitions
    # =========================================================================

    async def get_active_alerts(
        self,
        severity: Optional[AlertSeverity] = None,
        limit: int = 50,
    ) -> list[AnomalyAlert]:
        """Pending and investigating alerts, newest first."""
        return await self.store.list_alerts(set(ACTIVE_ALERT_STATUSES), severity, limit)

    async def get_alert(self, alert_id: str) -> Optional[AnomalyAlert]:
        return await self.store.get_alert(alert_id)

    async def start_investigation(self, alert_id: str) -> bool:
        """pending -> investigating. False if the alert is not pending."""
        alert = await self.store.get_alert(alert_id)
        if alert is None:
            raise AlertNotFoundError(alert_id)
        if alert.status != AlertStatus.PENDING:
            return False
        await self.store.save_alert(_with_changes(alert, status=AlertStatus.INVESTIGATING))
        return True

    async def resolve_alert(self, alert_id: str, resolved_by: Optional[str] = None) -> bool:
        """
        Resolve an alert.

        Idempotent: returns False (and changes nothing) when the alert is
        missing or already resolved / marked false positive.
        """
        return await self._close(alert_id, AlertStatus.RESOLVED, resolved_by)

    async def mark_false_positive(self, alert_id: str, marked_by: Optional[str] = None) -> bool:
        """Close an alert as a false positive. Same semantics as resolve_alert."""
        return await self._close(alert_id, AlertStatus.FALSE_POSITIVE, marked_by)

    async def _close(self, alert_id: str, status: AlertStatus, by: Optional[str]) -> bool:
        alert = await self.store.get_alert(alert_id)
        if alert is None or alert.status in TERMINAL_ALERT_STATUSES:
            return False
        await self.store.save_alert(
            _with_changes(
                alert,
                status=status,
                resolved_at=datetime.now(UTC),
                resolved_by=by,
            )
        )
        logger.info("Alert %s closed as %s by %s", alert_id, status.value, by or "system")
        return True
