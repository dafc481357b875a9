"""Known step kinds and the registry mapping them to wrapped implementations."""

import time
from collections.abc import Callable
from enum import StrEnum
from functools import partial

from src.db.store import FraudStore
from src.domains.fraud.config import FraudConfig, default_config
from src.shared.metrics import MetricsRecorder

from . import pipeline
from .config import StepConfig
from .insights import insights_step
from .knowledge import knowledge_step
from .step import RetryableStep, StepFn
from .summarizer import summarizer_step


class StepKind(StrEnum):
    PROFILE = "profile"
    TRANSACTIONS = "transactions"
    FRAUD = "fraud"
    KB = "kb"
    COMPLIANCE = "compliance"
    DECIDE = "decide"
    ACTION = "action"
    REDACTOR = "redactor"
    SUMMARIZER = "summarizer"
    INSIGHTS = "insights"


# a failure of one of these halts the flow
CRITICAL_STEPS = frozenset({StepKind.FRAUD, StepKind.COMPLIANCE})


def parse_step_kind(name: str) -> StepKind | None:
    try:
        return StepKind(name)
    except ValueError:
        return None


class StepRegistry:
    def __init__(self) -> None:
        self._steps: dict[StepKind, RetryableStep] = {}

    def register(self, kind: StepKind, step: RetryableStep) -> None:
        self._steps[kind] = step

    def get(self, name: str) -> RetryableStep | None:
        kind = parse_step_kind(name)
        return self._steps.get(kind) if kind else None

    def kinds(self) -> list[StepKind]:
        return list(self._steps)

    def __contains__(self, name: str) -> bool:
        return self.get(name) is not None


def build_registry(
    store: FraudStore,
    metrics: MetricsRecorder | None = None,
    step_config: StepConfig | None = None,
    fraud_config: FraudConfig = default_config,
    clock: Callable[[], float] = time.monotonic,
) -> StepRegistry:
    """Wire every known step kind to its implementation behind its own envelope."""
    step_config = step_config or StepConfig()
    implementations: dict[StepKind, StepFn] = {
        StepKind.PROFILE: partial(pipeline.profile_step, store),
        StepKind.TRANSACTIONS: partial(pipeline.transactions_step, store),
        StepKind.FRAUD: partial(pipeline.fraud_step, store, config=fraud_config),
        StepKind.KB: partial(knowledge_step, store),
        StepKind.COMPLIANCE: pipeline.compliance_step,
        StepKind.DECIDE: partial(pipeline.decide_step, config=fraud_config),
        StepKind.ACTION: pipeline.action_step,
        StepKind.REDACTOR: pipeline.redactor_step,
        StepKind.SUMMARIZER: summarizer_step,
        StepKind.INSIGHTS: partial(insights_step, store),
    }

    registry = StepRegistry()
    for kind, process in implementations.items():
        registry.register(
            kind,
            RetryableStep(kind.value, process, config=step_config, metrics=metrics, clock=clock),
        )
    return registry
