"""Unit tests for the triage service."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from src.domains.fraud.alerts import AlertLifecycle
from src.domains.fraud.models import AlertCreate, AlertSeverity, AlertStatus, Decision
from src.domains.fraud.signals import gather_risk_inputs
from src.domains.fraud.streams import TriageStreamHub
from src.domains.fraud.triage import TriageService
from src.shared.errors import AlertNotFoundError, CustomerNotFoundError
from src.shared.metrics import MetricsRecorder

STAGES = [
    "fetch_profile",
    "analyze_patterns",
    "evaluate_risk",
    "generate_recommendations",
    "complete",
]


@pytest.fixture
def metrics() -> MetricsRecorder:
    return MetricsRecorder()


@pytest.fixture
def streams() -> TriageStreamHub:
    return TriageStreamHub(ttl_seconds=60, timeout_seconds=2)


@pytest.fixture
def service(store, streams, metrics) -> TriageService:
    return TriageService(store, AlertLifecycle(store, metrics), streams, metrics)


class TestGatherInputs:
    @pytest.mark.asyncio
    async def test_reads_all_inputs(self, store, now):
        inputs = await gather_risk_inputs(store, "cust-risky", now, "txn-risky-0")
        assert len(inputs.transactions) == 12
        assert len(inputs.devices) == 2
        assert inputs.chargeback_count == 1
        assert inputs.alert_count == 0
        assert inputs.focus_transaction.id == "txn-risky-0"

    @pytest.mark.asyncio
    async def test_foreign_focus_transaction_ignored(self, store, now):
        inputs = await gather_risk_inputs(store, "cust-risky", now, "txn-quiet")
        assert inputs.focus_transaction is None

    @pytest.mark.asyncio
    async def test_false_positive_alerts_not_counted(self, store, now):
        lifecycle = AlertLifecycle(store)
        for _ in range(2):
            await lifecycle.create_alert(
                AlertCreate(customer_id="cust-quiet", severity=AlertSeverity.LOW, risk_score=0.6)
            )
        alert = next(iter(store.alerts))
        await lifecycle.update_alert(alert, AlertStatus.FALSE_POSITIVE)
        inputs = await gather_risk_inputs(store, "cust-quiet", now)
        assert inputs.alert_count == 1

    @pytest.mark.asyncio
    async def test_unknown_customer(self, store, now):
        with pytest.raises(CustomerNotFoundError):
            await gather_risk_inputs(store, "cust-ghost", now)


class TestRunTriage:
    @pytest.mark.asyncio
    async def test_high_risk_opens_alert(self, service, store, metrics):
        outcome = await service.run_triage("cust-risky", "txn-risky-0")
        result = outcome.result

        assert result.risk_score == pytest.approx(0.755)
        assert result.decision == Decision.REVIEW
        assert result.created_alert_id is not None
        alert = store.alerts[result.created_alert_id]
        assert alert.severity == AlertSeverity.HIGH
        assert alert.metadata["card_id"] == "card-risky"
        assert metrics.count("fraud.triage.completed", {"decision": "REVIEW"}) == 1

    @pytest.mark.asyncio
    async def test_low_risk_opens_nothing(self, service, store):
        outcome = await service.run_triage("cust-quiet")
        assert outcome.result.decision == Decision.APPROVE
        assert outcome.result.created_alert_id is None
        assert store.alerts == {}

    @pytest.mark.asyncio
    async def test_existing_alert_gets_triage_data(self, service, store):
        alert = await service.alerts.create_alert(
            AlertCreate(customer_id="cust-risky", severity=AlertSeverity.HIGH, risk_score=0.7)
        )
        outcome = await service.run_triage("cust-risky", alert_id=alert.id)

        assert outcome.result.created_alert_id is None
        assert len(store.alerts) == 1
        stored = store.alerts[alert.id]
        # the open alert itself now counts toward history: 0.3 + 0.1
        assert stored.triage_data["risk_score"] == pytest.approx(0.765)
        assert stored.status == alert.status

    @pytest.mark.asyncio
    async def test_every_stage_traced(self, service, store):
        outcome = await service.run_triage("cust-risky", session_id="sess-trace")
        assert outcome.session_id == "sess-trace"
        traces = await store.list_traces("sess-trace")
        assert [t.action for t in traces] == STAGES
        assert {t.agent_name for t in traces} == {"triage"}
        assert all(t.duration is not None and t.duration >= 0 for t in traces)

    @pytest.mark.asyncio
    async def test_trace_failure_is_swallowed(self, service, store):
        store.create_trace = AsyncMock(side_effect=RuntimeError("db down"))
        outcome = await service.run_triage("cust-quiet")
        assert outcome.result.decision == Decision.APPROVE
        assert store.create_trace.await_count == len(STAGES)

    @pytest.mark.asyncio
    async def test_unknown_customer(self, service, metrics):
        with pytest.raises(CustomerNotFoundError):
            await service.run_triage("cust-ghost")
        assert metrics.count("fraud.triage.failed") == 1

    @pytest.mark.asyncio
    async def test_unknown_alert(self, service):
        with pytest.raises(AlertNotFoundError):
            await service.run_triage("cust-risky", alert_id="missing")

    @pytest.mark.asyncio
    async def test_risk_signals_read(self, service):
        signals = await service.get_risk_signals("cust-risky")
        assert signals.overall_risk == pytest.approx(0.755)
        assert signals.risk_band == "high"


class TestProgressEvents:
    @pytest.mark.asyncio
    async def test_event_sequence(self, service, streams):
        await service.run_triage("cust-quiet", session_id="sess-events")
        events = streams.events("sess-events")

        assert [e.type for e in events] == [
            "start",
            "progress",
            "progress",
            "progress",
            "progress",
            "complete",
        ]
        assert [e.step for e in events if e.type == "progress"] == [1, 2, 3, 4]
        assert events[1].message == "Fetching customer profile"
        assert events[-1].result["decision"] == "APPROVE"
        assert events[-1].duration is not None

    @pytest.mark.asyncio
    async def test_failure_ends_with_error_event(self, service, streams):
        with pytest.raises(CustomerNotFoundError):
            await service.run_triage("cust-ghost", session_id="sess-fail")
        last = streams.events("sess-fail")[-1]
        assert last.type == "error"
        assert last.message == "Triage failed"
        assert last.error == "Customer not found: cust-ghost"

    @pytest.mark.asyncio
    async def test_background_triage_streams_to_completion(self, service, streams):
        session_id = service.start_triage("cust-risky")
        assert session_id in streams

        received = [event async for event in streams.subscribe(session_id)]
        assert received[0].type == "start"
        assert received[-1].type == "complete"
        assert received[-1].result["customer_id"] == "cust-risky"

    @pytest.mark.asyncio
    async def test_shutdown_cancels_background_work(self, service):
        gate = asyncio.Event()

        async def blocked(customer_id):
            await gate.wait()

        service.store.get_customer = blocked
        service.start_triage("cust-risky")
        await asyncio.sleep(0)
        await service.shutdown()
        assert service._tasks == set()
