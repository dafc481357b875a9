"""Fraud triage: score a customer, derive a decision, open or update an alert.

Each run is one session. Progress is published on the session's stream and
every stage leaves an AgentTrace; trace writes are best effort and never fail
a triage.
"""

import asyncio
import time
import uuid
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import structlog

from src.db.store import FraudStore
from src.shared.errors import CustomerNotFoundError
from src.shared.metrics import MetricsRecorder

from .alerts import AlertLifecycle
from .config import FraudConfig, default_config
from .models import AgentTrace, RiskSignals, TriageEvent, TriageOutcome, TriageResult
from .risk_scorer import compute_risk_signals, make_decision
from .signals import gather_risk_inputs, load_risk_signals
from .streams import TriageStreamHub

logger = structlog.get_logger()

TRACE_AGENT = "triage"

PROGRESS_MESSAGES = {
    1: "Fetching customer profile",
    2: "Analyzing transaction patterns",
    3: "Evaluating risk factors",
    4: "Generating recommendations",
}


def _now() -> datetime:
    return datetime.now(UTC)


class TriageService:
    def __init__(
        self,
        store: FraudStore,
        alerts: AlertLifecycle,
        streams: TriageStreamHub,
        metrics: MetricsRecorder | None = None,
        config: FraudConfig = default_config,
        clock: Callable[[], datetime] = _now,
    ) -> None:
        self.store = store
        self.alerts = alerts
        self.streams = streams
        self.metrics = metrics
        self.config = config
        self._clock = clock
        self._tasks: set[asyncio.Task] = set()

    async def _trace(
        self,
        session_id: str,
        stage: str,
        started: float,
        payload: Any = None,
        output: Any = None,
        error: str | None = None,
    ) -> None:
        try:
            await self.store.create_trace(
                AgentTrace(
                    session_id=session_id,
                    agent_name=TRACE_AGENT,
                    action=stage,
                    input=payload,
                    output=output,
                    error=error,
                    duration=(time.monotonic() - started) * 1000,
                )
            )
        except Exception as exc:
            logger.error("trace_save_failed", session_id=session_id, stage=stage, error=str(exc))

    async def _progress(self, session_id: str, step: int) -> None:
        await self.streams.publish(
            session_id,
            TriageEvent(
                type="progress",
                message=PROGRESS_MESSAGES[step],
                session_id=session_id,
                step=step,
            ),
        )

    async def get_risk_signals(
        self, customer_id: str, transaction_id: str | None = None
    ) -> RiskSignals:
        return await load_risk_signals(
            self.store, customer_id, transaction_id, self._clock(), self.config
        )

    async def run_triage(
        self,
        customer_id: str,
        transaction_id: str | None = None,
        alert_id: str | None = None,
        session_id: str | None = None,
    ) -> TriageOutcome:
        """Run a full triage.

        A new alert is opened only for a fresh triage (no ``alert_id``) scoring
        above the alert threshold. With ``alert_id`` the result is stored on
        that alert instead. Raises CustomerNotFoundError / AlertNotFoundError.
        """
        session_id = session_id or str(uuid.uuid4())
        run_started = time.monotonic()
        self.streams.open(session_id)
        await self.streams.publish(
            session_id,
            TriageEvent(type="start", message="Starting fraud triage", session_id=session_id),
        )
        logger.info(
            "triage_started",
            session_id=session_id,
            customer_id=customer_id,
            transaction_id=transaction_id,
            alert_id=alert_id,
        )

        try:
            outcome = await self._run(session_id, customer_id, transaction_id, alert_id, run_started)
        except Exception as exc:
            await self.streams.publish(
                session_id,
                TriageEvent(
                    type="error",
                    message="Triage failed",
                    session_id=session_id,
                    error=str(exc),
                ),
            )
            if self.metrics is not None:
                self.metrics.record_counter("fraud.triage.failed")
            logger.error("triage_failed", session_id=session_id, error=str(exc))
            raise

        await self.streams.publish(
            session_id,
            TriageEvent(
                type="complete",
                message="Triage completed",
                session_id=session_id,
                result=outcome.result.model_dump(mode="json"),
                duration=outcome.duration,
            ),
        )
        return outcome

    async def _run(
        self,
        session_id: str,
        customer_id: str,
        transaction_id: str | None,
        alert_id: str | None,
        run_started: float,
    ) -> TriageOutcome:
        now = self._clock()

        await self._progress(session_id, 1)
        started = time.monotonic()
        customer = await self.store.get_customer(customer_id)
        if customer is None:
            raise CustomerNotFoundError(customer_id)
        if alert_id is not None:
            await self.alerts.get_alert(alert_id)
        await self._trace(
            session_id,
            "fetch_profile",
            started,
            payload={"customer_id": customer_id, "alert_id": alert_id},
            output={"risk_flags": customer.risk_flags},
        )

        await self._progress(session_id, 2)
        started = time.monotonic()
        inputs = await gather_risk_inputs(self.store, customer_id, now, transaction_id, self.config)
        await self._trace(
            session_id,
            "analyze_patterns",
            started,
            payload={"transaction_id": transaction_id},
            output={
                "transactions": len(inputs.transactions),
                "devices": len(inputs.devices),
                "chargebacks": inputs.chargeback_count,
                "alerts": inputs.alert_count,
            },
        )

        await self._progress(session_id, 3)
        started = time.monotonic()
        signals = compute_risk_signals(inputs, now, self.config)
        decision = make_decision(signals.overall_risk, self.config)
        await self._trace(
            session_id,
            "evaluate_risk",
            started,
            output={"overall_risk": signals.overall_risk, "decision": decision.value},
        )

        await self._progress(session_id, 4)
        started = time.monotonic()
        result = TriageResult(
            customer_id=customer_id,
            transaction_id=transaction_id,
            alert_id=alert_id,
            risk_score=signals.overall_risk,
            decision=decision,
            signals=signals.signals,
            recommendations=signals.recommendations,
            timestamp=now,
        )
        if alert_id is None:
            created = await self.alerts.create_from_triage(result)
            if created is not None:
                result.created_alert_id = created.id
        else:
            await self.alerts.attach_triage(alert_id, result.model_dump(mode="json"))
        await self._trace(
            session_id,
            "generate_recommendations",
            started,
            output={
                "recommendations": result.recommendations,
                "created_alert_id": result.created_alert_id,
            },
        )

        duration = (time.monotonic() - run_started) * 1000
        await self._trace(
            session_id, "complete", run_started, output=result.model_dump(mode="json")
        )

        if self.metrics is not None:
            self.metrics.record_histogram("fraud.triage_duration_ms", duration)
            self.metrics.record_counter("fraud.triage.completed", labels={"decision": decision.value})
        logger.info(
            "triage_completed",
            session_id=session_id,
            customer_id=customer_id,
            risk_score=round(result.risk_score, 4),
            decision=decision.value,
            created_alert_id=result.created_alert_id,
            duration_ms=round(duration, 2),
        )
        return TriageOutcome(session_id=session_id, result=result, duration=duration)

    def start_triage(
        self,
        customer_id: str,
        transaction_id: str | None = None,
        alert_id: str | None = None,
    ) -> str:
        """Run a triage in the background; progress is read from the session stream."""
        session_id = str(uuid.uuid4())
        self.streams.open(session_id)
        task = asyncio.create_task(
            self.run_triage(customer_id, transaction_id, alert_id, session_id=session_id)
        )
        self._tasks.add(task)
        task.add_done_callback(self._finish_background)
        return session_id

    def _finish_background(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            # already published on the stream and logged by run_triage
            logger.debug("background_triage_failed", error=str(task.exception()))

    async def shutdown(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
