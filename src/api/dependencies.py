"""Service container shared by the routers.

Everything with process-lifetime state (breaker counters, progress streams,
metrics) lives on one container built at startup and stored on
``app.state``; tests swap it via ``app.dependency_overrides``.
"""

from dataclasses import dataclass

from fastapi import Request

from src.config import Settings
from src.db.store import FraudStore
from src.domains.agents.config import StepConfig
from src.domains.agents.executor import Executor
from src.domains.agents.registry import StepRegistry, build_registry
from src.domains.fraud.actions import FraudActions
from src.domains.fraud.alerts import AlertLifecycle
from src.domains.fraud.config import FraudConfig
from src.domains.fraud.streams import TriageStreamHub
from src.domains.fraud.triage import TriageService
from src.shared.metrics import MetricsRecorder


@dataclass
class ServiceContainer:
    store: FraudStore
    metrics: MetricsRecorder
    streams: TriageStreamHub
    alerts: AlertLifecycle
    triage: TriageService
    actions: FraudActions
    registry: StepRegistry
    executor: Executor

    async def shutdown(self) -> None:
        await self.triage.shutdown()
        self.streams.shutdown()


def build_container(
    store: FraudStore,
    settings: Settings,
    fraud_config: FraudConfig | None = None,
) -> ServiceContainer:
    fraud_config = fraud_config or FraudConfig.from_env()
    metrics = MetricsRecorder()
    streams = TriageStreamHub(
        ttl_seconds=settings.triage_stream_ttl_seconds,
        timeout_seconds=settings.triage_stream_timeout_seconds,
    )
    alerts = AlertLifecycle(store, metrics, fraud_config)
    registry = build_registry(
        store,
        metrics=metrics,
        step_config=StepConfig.from_settings(settings),
        fraud_config=fraud_config,
    )
    return ServiceContainer(
        store=store,
        metrics=metrics,
        streams=streams,
        alerts=alerts,
        triage=TriageService(store, alerts, streams, metrics, fraud_config),
        actions=FraudActions(
            store,
            metrics,
            otp_code=settings.otp_test_code,
            freeze_requires_otp=settings.freeze_requires_otp,
        ),
        registry=registry,
        executor=Executor(
            registry, store, flow_budget_ms=settings.agent_flow_budget_ms, metrics=metrics
        ),
    )


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container
