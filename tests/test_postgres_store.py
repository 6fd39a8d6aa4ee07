"""
PostgreSQL Store Tests

Tests for payload mapping in the workflow store, using a mocked
SQLAlchemy session.
"""

from datetime import datetime, timedelta, UTC
from unittest.mock import AsyncMock, MagicMock

import pytest

from referral_guard.schemas import (
    AlertSeverity,
    AlertStatus,
    AlertType,
    AnomalyAlert,
    CaseType,
    InviteCode,
    NetworkEvidence,
    ReviewCase,
    RiskLevel,
)
from referral_guard.store import PostgresStore


def _alert(**kwargs) -> AnomalyAlert:
    defaults = dict(
        id="alert_1",
        user_id="user_1",
        alert_type=AlertType.NETWORK_ABUSE,
        severity=AlertSeverity.HIGH,
        description="Blocked registration",
        evidence=NetworkEvidence(ip="1.2.3.4", detectors=["batch_registration"]),
    )
    defaults.update(kwargs)
    return AnomalyAlert(**defaults)


@pytest.fixture
def session():
    session = AsyncMock()
    session.__aenter__.return_value = session
    session.__aexit__.return_value = False
    session.execute.return_value = MagicMock()
    return session


@pytest.fixture
def pg_store(session) -> PostgresStore:
    store = PostgresStore("postgresql+asyncpg://test/test")
    store.session_factory = MagicMock(return_value=session)
    return store


def _returns_rows(session, rows) -> None:
    result = MagicMock()
    result.fetchall.return_value = rows
    session.execute.return_value = result


def _params(session) -> dict:
    return session.execute.await_args.args[1]


class TestPostgresStore:
    """Tests for reads and writes through the session."""

    @pytest.mark.asyncio
    async def test_uninitialized_store_raises(self):
        store = PostgresStore("postgresql+asyncpg://test/test")
        with pytest.raises(RuntimeError):
            await store.get_alert("alert_1")

    @pytest.mark.asyncio
    async def test_save_alert_writes_payload(self, pg_store, session):
        alert = _alert()

        await pg_store.save_alert(alert)

        params = _params(session)
        assert params["status"] == "pending"
        assert params["severity"] == "high"
        assert AnomalyAlert.model_validate_json(params["payload"]) == alert
        session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_get_alert_restores_typed_evidence(self, pg_store, session):
        alert = _alert()
        _returns_rows(session, [(alert.model_dump(mode="json"),)])

        loaded = await pg_store.get_alert("alert_1")

        assert isinstance(loaded.evidence, NetworkEvidence)
        assert loaded.evidence.detectors == ["batch_registration"]

    @pytest.mark.asyncio
    async def test_get_missing_alert(self, pg_store, session):
        _returns_rows(session, [])
        assert await pg_store.get_alert("alert_missing") is None

    @pytest.mark.asyncio
    async def test_malformed_rows_skipped(self, pg_store, session):
        good = _alert(id="alert_2")
        _returns_rows(session, [("{broken",), (good.model_dump_json(),)])

        alerts = await pg_store.list_alerts(statuses={AlertStatus.PENDING})

        assert [a.id for a in alerts] == ["alert_2"]
        assert _params(session)["statuses"] == ["pending"]

    @pytest.mark.asyncio
    async def test_list_cases_filters(self, pg_store, session):
        case = ReviewCase(id="case_1", user_id="user_1", case_type=CaseType.FRAUD_DETECTION)
        _returns_rows(session, [(case.model_dump(mode="json"),)])

        cases = await pg_store.list_cases(user_id="user_1", limit=5)

        assert cases == [case]
        assert _params(session) == {"user_id": "user_1", "limit": 5}

    @pytest.mark.asyncio
    async def test_unknown_risk_level_ignored(self, pg_store, session):
        _returns_rows(session, [("extreme",)])
        assert await pg_store.get_risk_level("user_1") is None

        _returns_rows(session, [("medium",)])
        assert await pg_store.get_risk_level("user_1") == RiskLevel.MEDIUM

    @pytest.mark.asyncio
    async def test_delete_notifications_returns_rowcount(self, pg_store, session):
        session.execute.return_value = MagicMock(rowcount=3)

        assert await pg_store.delete_notifications_before(datetime.now(UTC)) == 3

    @pytest.mark.asyncio
    async def test_expiring_invite_codes(self, pg_store, session):
        expires = datetime.now(UTC) + timedelta(days=2)
        result = MagicMock()
        result.mappings.return_value.all.return_value = [
            {"id": "inv_1", "code": "FRIEND-42", "inviter_id": "user_1", "expires_at": expires}
        ]
        session.execute.return_value = result

        invites = await pg_store.list_expiring_invite_codes(datetime.now(UTC), expires)

        assert invites == [InviteCode(id="inv_1", code="FRIEND-42", inviter_id="user_1", expires_at=expires)]

    @pytest.mark.asyncio
    async def test_health_check(self, pg_store, session):
        session.execute.return_value = MagicMock(scalar=MagicMock(return_value=1))
        assert await pg_store.health_check()
