"""Unit tests for the SQL and in-memory store implementations."""

from datetime import UTC, datetime, timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.db.memory import InMemoryFraudStore
from src.db.models import AgentTraceDB, AlertDB, CardDB, CustomerDB
from src.db.store import SQLFraudStore, sort_alerts, to_json
from src.domains.fraud.models import (
    AgentTrace,
    Alert,
    AlertCreate,
    AlertQuery,
    AlertSeverity,
    AlertStatus,
    Card,
    CardStatus,
    Customer,
)
from src.shared.errors import AlertNotFoundError, CardNotFoundError

NOW = datetime(2026, 3, 10, 12, 0, 0, tzinfo=UTC)


def _mock_session():
    session = AsyncMock()
    session.__aenter__.return_value = session
    session.__aexit__.return_value = False
    session.add = MagicMock()
    return session


def _result(scalar=None, rows=None, pairs=None):
    result = MagicMock()
    result.scalar_one.return_value = scalar
    result.scalars.return_value = MagicMock(all=MagicMock(return_value=rows or []))
    result.all.return_value = pairs or []
    return result


def _store(session) -> SQLFraudStore:
    return SQLFraudStore(MagicMock(return_value=session))


def _alert_row(alert_id: str, severity: str, age_minutes: int) -> AlertDB:
    return AlertDB(
        id=alert_id,
        customer_id="cust-1",
        type="FRAUD",
        severity=severity,
        risk_score=0.7,
        reasons=[],
        status="PENDING",
        metadata_={},
        triage_data=None,
        created_at=NOW - timedelta(minutes=age_minutes),
        resolved_at=None,
    )


class TestHelpers:
    def test_to_json_handles_models_and_decimals(self):
        card = Card(id="c", customer_id="x", last4="1234")
        assert to_json({"card": card, "amount": Decimal("1.50")})["card"]["status"] == "ACTIVE"

    def test_to_json_falls_back_to_str(self):
        assert to_json({"obj": object})["obj"].startswith("<class")

    def test_sort_alerts(self):
        alerts = [
            Alert(
                id=i, customer_id="c", severity=sev, risk_score=0.5, created_at=NOW - timedelta(minutes=m)
            )
            for i, sev, m in [("a", "LOW", 1), ("b", "HIGH", 30), ("c", "HIGH", 5)]
        ]
        assert [a.id for a in sort_alerts(alerts)] == ["c", "b", "a"]
        assert [a.id for a in sort_alerts(alerts, oldest_first=True)] == ["b", "c", "a"]


class TestSQLFraudStore:
    @pytest.mark.asyncio
    async def test_get_customer(self):
        session = _mock_session()
        session.get.return_value = CustomerDB(
            id="cust-1", name="Jean", email_masked="j***@x.com", risk_flags={"vipCustomer": True}
        )
        customer = await _store(session).get_customer("cust-1")
        assert customer.risk_flags == {"vipCustomer": True}

    @pytest.mark.asyncio
    async def test_get_missing_customer(self):
        session = _mock_session()
        session.get.return_value = None
        assert await _store(session).get_customer("ghost") is None

    @pytest.mark.asyncio
    async def test_update_customer_flags(self):
        session = _mock_session()
        row = CustomerDB(id="cust-1", name="Jean", email_masked="", risk_flags={})
        session.get.return_value = row
        customer = await _store(session).update_customer_flags("cust-1", {"level": "HIGH"})
        assert customer == Customer(id="cust-1", name="Jean", risk_flags={"level": "HIGH"})
        session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_update_card_status(self):
        session = _mock_session()
        row = CardDB(id="card-1", customer_id="cust-1", last4="4242", network="VISA", status="ACTIVE")
        session.get.return_value = row
        card = await _store(session).update_card_status("card-1", CardStatus.FROZEN)
        assert card.status == CardStatus.FROZEN
        assert row.status == "FROZEN"
        session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_update_missing_card(self):
        session = _mock_session()
        session.get.return_value = None
        with pytest.raises(CardNotFoundError):
            await _store(session).update_card_status("ghost", CardStatus.FROZEN)
        session.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_create_alert(self):
        session = _mock_session()
        alert = await _store(session).create_alert(
            AlertCreate(
                customer_id="cust-1",
                severity=AlertSeverity.HIGH,
                risk_score=0.75,
                reasons=["r"],
                metadata={"amount": Decimal("12.50")},
            )
        )
        row = session.add.call_args[0][0]
        assert isinstance(row, AlertDB)
        assert row.metadata_ == {"amount": "12.50"}
        assert alert.severity == AlertSeverity.HIGH
        assert alert.status == AlertStatus.PENDING
        session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_update_alert_resolution(self):
        session = _mock_session()
        session.get.return_value = _alert_row("alert-1", "HIGH", 30)
        alert = await _store(session).update_alert(
            "alert-1", status=AlertStatus.RESOLVED, resolved_at=NOW
        )
        assert alert.status == AlertStatus.RESOLVED
        assert alert.resolved_at == NOW

    @pytest.mark.asyncio
    async def test_update_missing_alert(self):
        session = _mock_session()
        session.get.return_value = None
        with pytest.raises(AlertNotFoundError):
            await _store(session).update_alert("ghost", status=AlertStatus.RESOLVED)

    @pytest.mark.asyncio
    async def test_list_alerts_sorted_and_paged(self):
        session = _mock_session()
        rows = [
            _alert_row("low", "LOW", 1),
            _alert_row("crit", "CRITICAL", 60),
            _alert_row("high", "HIGH", 10),
        ]
        session.execute.side_effect = [_result(scalar=3), _result(rows=rows)]
        alerts, total = await _store(session).list_alerts(AlertQuery(take=2))
        assert total == 3
        assert [a.id for a in alerts] == ["crit", "high"]

    @pytest.mark.asyncio
    async def test_count_alerts_by_status(self):
        session = _mock_session()
        session.execute.return_value = _result(pairs=[("PENDING", 4), ("RESOLVED", 1)])
        assert await _store(session).count_alerts_by_status() == {"PENDING": 4, "RESOLVED": 1}

    @pytest.mark.asyncio
    async def test_action_stats(self):
        session = _mock_session()
        session.execute.side_effect = [
            _result(scalar=7),
            _result(scalar=2),
            _result(scalar=1),
            _result(scalar=3),
            _result(scalar=4),
            _result(scalar=5400.0),
        ]
        stats = await _store(session).action_stats(NOW)
        assert stats.disputes.total == 7
        assert stats.disputes.recent == 2
        assert stats.card_actions.frozen_today == 1
        assert stats.card_actions.total_frozen == 3
        assert stats.resolutions.today == 4
        assert stats.resolutions.avg_time_hours == 1.5

    @pytest.mark.asyncio
    async def test_action_stats_without_resolutions(self):
        session = _mock_session()
        session.execute.side_effect = [_result(scalar=0)] * 5 + [_result(scalar=None)]
        stats = await _store(session).action_stats(NOW)
        assert stats.resolutions.avg_time_hours == 0.0

    @pytest.mark.asyncio
    async def test_create_trace_serializes_payloads(self):
        session = _mock_session()
        await _store(session).create_trace(
            AgentTrace(
                session_id="sess-1",
                agent_name="fraud",
                action="fraud",
                input={"amount": Decimal("3.00")},
                output={"score": 0.5},
            )
        )
        row = session.add.call_args[0][0]
        assert isinstance(row, AgentTraceDB)
        assert row.input == {"amount": "3.00"}
        session.commit.assert_awaited_once()


class TestInMemoryFraudStore:
    @pytest.mark.asyncio
    async def test_records_are_copies(self):
        store = InMemoryFraudStore()
        store.add_customer(Customer(id="c", name="n", risk_flags={"a": 1}))
        customer = await store.get_customer("c")
        customer.risk_flags["a"] = 2
        assert (await store.get_customer("c")).risk_flags == {"a": 1}

    @pytest.mark.asyncio
    async def test_transactions_window_and_limit(self, store, now):
        recent = await store.list_transactions("cust-risky", since=now - timedelta(minutes=5))
        assert [t.id for t in recent] == [f"txn-risky-{i}" for i in range(5)]
        limited = await store.list_transactions("cust-risky", limit=2)
        assert len(limited) == 2

    @pytest.mark.asyncio
    async def test_action_stats(self, store, now):
        await store.update_card_status("card-quiet", CardStatus.FROZEN)
        stats = await store.action_stats(now + timedelta(seconds=1))
        assert stats.disputes.total == 1
        assert stats.disputes.recent == 0
        assert stats.card_actions.total_frozen == 1
        assert stats.card_actions.frozen_today == 1
        assert stats.resolutions.today == 0

    @pytest.mark.asyncio
    async def test_kb_search_limit(self, store):
        assert len(await store.search_kb("the", limit=1)) == 1
        assert await store.search_kb("zebra") == []
