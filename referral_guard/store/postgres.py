"""
PostgreSQL Workflow Store

Persists alerts, review cases, enforcement records and notifications.

Each table keeps the columns needed for filtering alongside the full
record as a JSONB payload. Payloads are the pydantic models serialized
to JSON, so typed evidence and decisions round-trip exactly.
"""

import logging
import time
from datetime import datetime, UTC
from typing import Optional, TypeVar

from pydantic import BaseModel, ValidationError
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

from ..config import settings
from ..metrics import metrics
from ..schemas import (
    AnomalyAlert,
    AlertSeverity,
    AlertStatus,
    ReviewCase,
    CaseStatus,
    AccountFreeze,
    UserBan,
    RewardRecovery,
    RiskLevel,
    Notification,
    NotificationType,
    InviteCode,
)
from .base import AlertStore, CaseStore, EnforcementStore, NotificationStore

logger = logging.getLogger("referral_guard.store")

ModelT = TypeVar("ModelT", bound=BaseModel)


SCHEMA_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS risk_alerts (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        alert_type TEXT NOT NULL,
        severity TEXT NOT NULL,
        status TEXT NOT NULL,
        created_at TIMESTAMPTZ NOT NULL,
        payload JSONB NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS review_cases (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        status TEXT NOT NULL,
        assigned_to TEXT,
        created_at TIMESTAMPTZ NOT NULL,
        payload JSONB NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS account_freezes (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        created_at TIMESTAMPTZ NOT NULL,
        payload JSONB NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS user_bans (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        created_at TIMESTAMPTZ NOT NULL,
        payload JSONB NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS reward_recoveries (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        created_at TIMESTAMPTZ NOT NULL,
        payload JSONB NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS user_risk_levels (
        user_id TEXT PRIMARY KEY,
        risk_level TEXT NOT NULL,
        updated_at TIMESTAMPTZ NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS notifications (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        type TEXT NOT NULL,
        status TEXT NOT NULL,
        attempts INTEGER NOT NULL DEFAULT 0,
        scheduled_at TIMESTAMPTZ,
        created_at TIMESTAMPTZ NOT NULL,
        payload JSONB NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS invite_codes (
        id TEXT PRIMARY KEY,
        code TEXT NOT NULL,
        inviter_id TEXT NOT NULL,
        expires_at TIMESTAMPTZ NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_risk_alerts_status ON risk_alerts (status, created_at DESC)",
    "CREATE INDEX IF NOT EXISTS idx_review_cases_user ON review_cases (user_id, status)",
    "CREATE INDEX IF NOT EXISTS idx_notifications_status ON notifications (status, created_at)",
]


class PostgresStore(AlertStore, CaseStore, EnforcementStore, NotificationStore):
    """
    Workflow store backed by PostgreSQL (SQLAlchemy async + asyncpg).

    Uses raw SQL through ``text()``; no ORM mapping.
    """

    def __init__(self, database_url: str):
        """
        Initialize store.

        Args:
            database_url: PostgreSQL connection URL
        """
        self.database_url = database_url
        self.engine = None
        self.session_factory = None

    async def initialize(self) -> None:
        """Initialize database connection and create tables."""
        try:
            self.engine = create_async_engine(
                self.database_url,
                echo=settings.app_debug,
                pool_size=5,
                max_overflow=10,
                pool_pre_ping=True,
            )
            self.session_factory = async_sessionmaker(
                bind=self.engine,
                class_=AsyncSession,
                expire_on_commit=False,
            )
            await self.create_schema()
        except Exception as e:
            logger.warning("Database initialization failed: %s", e)

    async def close(self) -> None:
        """Close database connections."""
        if self.engine:
            await self.engine.dispose()

    async def health_check(self) -> bool:
        """Check database connectivity."""
        async with self._session() as session:
            result = await session.execute(text("SELECT 1"))
            return result.scalar() == 1

    async def create_schema(self) -> None:
        async with self._session() as session:
            for statement in SCHEMA_STATEMENTS:
                await session.execute(text(statement))
            await session.commit()

    # =========================================================================
    # Helpers
    # =========================================================================

    def _session(self) -> AsyncSession:
        if not self.session_factory:
            raise RuntimeError("Database not initialized")
        return self.session_factory()

    def _observe(self, operation: str, started_at: float) -> None:
        metrics.store_latency.labels(operation=operation).observe(
            (time.perf_counter() - started_at) * 1000
        )

    def _load(self, model: type[ModelT], payload) -> Optional[ModelT]:
        """Parse a JSONB payload; malformed rows are logged and skipped."""
        try:
            if isinstance(payload, (str, bytes)):
                return model.model_validate_json(payload)
            return model.model_validate(payload)
        except (ValidationError, ValueError) as e:
            logger.warning("Malformed %s payload skipped: %s", model.__name__, e)
            return None

    def _load_all(self, model: type[ModelT], rows) -> list[ModelT]:
        return [item for row in rows if (item := self._load(model, row[0])) is not None]

    async def _write(self, operation: str, sql: str, params: dict) -> None:
        started_at = time.perf_counter()
        async with self._session() as session:
            await session.execute(text(sql), params)
            await session.commit()
        self._observe(operation, started_at)

    async def _fetch_payloads(self, operation: str, sql: str, params: dict):
        started_at = time.perf_counter()
        async with self._session() as session:
            result = await session.execute(text(sql), params)
            rows = result.fetchall()
        self._observe(operation, started_at)
        return rows

    # =========================================================================
    # Alerts
    # =========================================================================

    async def save_alert(self, alert: AnomalyAlert) -> None:
        await self._write(
            "save_alert",
            """
            INSERT INTO risk_alerts (id, user_id, alert_type, severity, status, created_at, payload)
            VALUES (:id, :user_id, :alert_type, :severity, :status, :created_at, CAST(:payload AS jsonb))
            ON CONFLICT (id) DO UPDATE SET
                status = EXCLUDED.status,
                payload = EXCLUDED.payload
            """,
            {
                "id": alert.id,
                "user_id": alert.user_id,
                "alert_type": alert.alert_type.value,
                "severity": alert.severity.value,
                "status": alert.status.value,
                "created_at": alert.created_at,
                "payload": alert.model_dump_json(),
            },
        )

    async def get_alert(self, alert_id: str) -> Optional[AnomalyAlert]:
        rows = await self._fetch_payloads(
            "get_alert",
            "SELECT payload FROM risk_alerts WHERE id = :id",
            {"id": alert_id},
        )
        return self._load(AnomalyAlert, rows[0][0]) if rows else None

    async def list_alerts(
        self,
        statuses: Optional[set[AlertStatus]] = None,
        severity: Optional[AlertSeverity] = None,
        limit: int = 50,
    ) -> list[AnomalyAlert]:
        clauses = []
        params: dict = {"limit": limit}
        if statuses is not None:
            clauses.append("status = ANY(:statuses)")
            params["statuses"] = [s.value for s in statuses]
        if severity is not None:
            clauses.append("severity = :severity")
            params["severity"] = severity.value
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        rows = await self._fetch_payloads(
            "list_alerts",
            f"""
            SELECT payload FROM risk_alerts
            {where}
            ORDER BY created_at DESC
            LIMIT :limit
            """,
            params,
        )
        return self._load_all(AnomalyAlert, rows)

    # =========================================================================
    # Cases
    # =========================================================================

    async def save_case(self, case: ReviewCase) -> None:
        await self._write(
            "save_case",
            """
            INSERT INTO review_cases (id, user_id, status, assigned_to, created_at, payload)
            VALUES (:id, :user_id, :status, :assigned_to, :created_at, CAST(:payload AS jsonb))
            ON CONFLICT (id) DO UPDATE SET
                status = EXCLUDED.status,
                assigned_to = EXCLUDED.assigned_to,
                payload = EXCLUDED.payload
            """,
            {
                "id": case.id,
                "user_id": case.user_id,
                "status": case.status.value,
                "assigned_to": case.assigned_to,
                "created_at": case.created_at,
                "payload": case.model_dump_json(),
            },
        )

    async def get_case(self, case_id: str) -> Optional[ReviewCase]:
        rows = await self._fetch_payloads(
            "get_case",
            "SELECT payload FROM review_cases WHERE id = :id",
            {"id": case_id},
        )
        return self._load(ReviewCase, rows[0][0]) if rows else None

    async def list_cases(
        self,
        status: Optional[CaseStatus] = None,
        assigned_to: Optional[str] = None,
        user_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[ReviewCase]:
        clauses = []
        params: dict = {}
        if status is not None:
            clauses.append("status = :status")
            params["status"] = status.value
        if assigned_to is not None:
            clauses.append("assigned_to = :assigned_to")
            params["assigned_to"] = assigned_to
        if user_id is not None:
            clauses.append("user_id = :user_id")
            params["user_id"] = user_id
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        limit_sql = ""
        if limit is not None:
            limit_sql = "LIMIT :limit"
            params["limit"] = limit

        rows = await self._fetch_payloads(
            "list_cases",
            f"""
            SELECT payload FROM review_cases
            {where}
            ORDER BY created_at DESC
            {limit_sql}
            """,
            params,
        )
        return self._load_all(ReviewCase, rows)

    # =========================================================================
    # Enforcement
    # =========================================================================

    async def _save_user_record(self, table: str, record) -> None:
        await self._write(
            f"save_{table}",
            f"""
            INSERT INTO {table} (id, user_id, created_at, payload)
            VALUES (:id, :user_id, :created_at, CAST(:payload AS jsonb))
            ON CONFLICT (id) DO UPDATE SET payload = EXCLUDED.payload
            """,
            {
                "id": record.id,
                "user_id": record.user_id,
                "created_at": record.created_at,
                "payload": record.model_dump_json(),
            },
        )

    async def _list_user_records(self, table: str, model: type[ModelT], user_id: str) -> list[ModelT]:
        rows = await self._fetch_payloads(
            f"list_{table}",
            f"SELECT payload FROM {table} WHERE user_id = :user_id ORDER BY created_at DESC",
            {"user_id": user_id},
        )
        return self._load_all(model, rows)

    async def save_freeze(self, freeze: AccountFreeze) -> None:
        await self._save_user_record("account_freezes", freeze)

    async def list_freezes(self, user_id: str) -> list[AccountFreeze]:
        return await self._list_user_records("account_freezes", AccountFreeze, user_id)

    async def save_ban(self, ban: UserBan) -> None:
        await self._save_user_record("user_bans", ban)

    async def list_bans(self, user_id: str) -> list[UserBan]:
        return await self._list_user_records("user_bans", UserBan, user_id)

    async def save_recovery(self, recovery: RewardRecovery) -> None:
        await self._save_user_record("reward_recoveries", recovery)

    async def list_recoveries(self, user_id: str) -> list[RewardRecovery]:
        return await self._list_user_records("reward_recoveries", RewardRecovery, user_id)

    async def get_risk_level(self, user_id: str) -> Optional[RiskLevel]:
        rows = await self._fetch_payloads(
            "get_risk_level",
            "SELECT risk_level FROM user_risk_levels WHERE user_id = :user_id",
            {"user_id": user_id},
        )
        if not rows:
            return None
        try:
            return RiskLevel(rows[0][0])
        except ValueError:
            logger.warning("Unknown risk level %r for user %s", rows[0][0], user_id)
            return None

    async def set_risk_level(self, user_id: str, level: RiskLevel) -> None:
        await self._write(
            "set_risk_level",
            """
            INSERT INTO user_risk_levels (user_id, risk_level, updated_at)
            VALUES (:user_id, :risk_level, :updated_at)
            ON CONFLICT (user_id) DO UPDATE SET
                risk_level = EXCLUDED.risk_level,
                updated_at = EXCLUDED.updated_at
            """,
            {"user_id": user_id, "risk_level": level.value, "updated_at": datetime.now(UTC)},
        )

    # =========================================================================
    # Notifications
    # =========================================================================

    async def save_notification(self, notification: Notification) -> None:
        await self._write(
            "save_notification",
            """
            INSERT INTO notifications (id, user_id, type, status, attempts, scheduled_at, created_at, payload)
            VALUES (:id, :user_id, :type, :status, :attempts, :scheduled_at, :created_at, CAST(:payload AS jsonb))
            ON CONFLICT (id) DO UPDATE SET
                status = EXCLUDED.status,
                attempts = EXCLUDED.attempts,
                payload = EXCLUDED.payload
            """,
            {
                "id": notification.id,
                "user_id": notification.user_id,
                "type": notification.type.value,
                "status": notification.status.value,
                "attempts": notification.attempts,
                "scheduled_at": notification.scheduled_at,
                "created_at": notification.created_at,
                "payload": notification.model_dump_json(),
            },
        )

    async def get_notification(self, notification_id: str) -> Optional[Notification]:
        rows = await self._fetch_payloads(
            "get_notification",
            "SELECT payload FROM notifications WHERE id = :id",
            {"id": notification_id},
        )
        return self._load(Notification, rows[0][0]) if rows else None

    async def list_dispatchable(self, now: datetime, max_attempts: int) -> list[Notification]:
        rows = await self._fetch_payloads(
            "list_dispatchable",
            """
            SELECT payload FROM notifications
            WHERE (status = 'pending' AND (scheduled_at IS NULL OR scheduled_at <= :now))
               OR (status = 'failed' AND attempts < :max_attempts)
            ORDER BY created_at
            """,
            {"now": now, "max_attempts": max_attempts},
        )
        return self._load_all(Notification, rows)

    async def delete_notifications_before(self, cutoff: datetime) -> int:
        started_at = time.perf_counter()
        async with self._session() as session:
            result = await session.execute(
                text("""
                    DELETE FROM notifications
                    WHERE status <> 'pending' AND created_at < :cutoff
                """),
                {"cutoff": cutoff},
            )
            await session.commit()
        self._observe("delete_notifications", started_at)
        return result.rowcount or 0

    async def has_notification_since(
        self,
        notification_type: NotificationType,
        reference_key: str,
        reference_value: str,
        since: datetime,
    ) -> bool:
        rows = await self._fetch_payloads(
            "has_notification",
            """
            SELECT 1 FROM notifications
            WHERE type = :type
              AND created_at >= :since
              AND payload -> 'metadata' ->> :key = :value
            LIMIT 1
            """,
            {
                "type": notification_type.value,
                "since": since,
                "key": reference_key,
                "value": reference_value,
            },
        )
        return bool(rows)

    async def save_invite_code(self, invite: InviteCode) -> None:
        await self._write(
            "save_invite_code",
            """
            INSERT INTO invite_codes (id, code, inviter_id, expires_at)
            VALUES (:id, :code, :inviter_id, :expires_at)
            ON CONFLICT (id) DO UPDATE SET expires_at = EXCLUDED.expires_at
            """,
            invite.model_dump(),
        )

    async def list_expiring_invite_codes(self, now: datetime, until: datetime) -> list[InviteCode]:
        started_at = time.perf_counter()
        async with self._session() as session:
            result = await session.execute(
                text("""
                    SELECT id, code, inviter_id, expires_at
                    FROM invite_codes
                    WHERE expires_at > :now AND expires_at <= :until
                    ORDER BY expires_at
                """),
                {"now": now, "until": until},
            )
            rows = result.mappings().all()
        self._observe("list_invite_codes", started_at)
        return [InviteCode(**dict(row)) for row in rows]
