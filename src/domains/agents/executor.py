"""Sequential plan execution with a flow budget and critical-step halting."""

import json
import time
from collections.abc import Callable
from typing import Any

import structlog
from pydantic import BaseModel

from src.db.store import FraudStore
from src.domains.fraud.models import AgentTrace
from src.shared.metrics import MetricsRecorder

from .registry import CRITICAL_STEPS, StepRegistry, parse_step_kind
from .step import StepContext, StepResult

logger = structlog.get_logger()


class FlowResult(BaseModel):
    session_id: str
    results: dict[str, StepResult]
    duration: float  # milliseconds
    completed: bool


def split_step(step: str) -> tuple[str, str]:
    """``"kb:{\\"query\\": \\"fraud\\"}"`` -> ``("kb", '{"query": "fraud"}')``."""
    name, _, params = step.partition(":")
    return name, params


def prepare_input(params: str, previous_results: dict[str, StepResult]) -> Any:
    if not params:
        return dict(previous_results)
    try:
        return json.loads(params)
    except json.JSONDecodeError:
        return {"params": params, "previous_results": dict(previous_results)}


def is_critical(name: str) -> bool:
    return parse_step_kind(name) in CRITICAL_STEPS


class Executor:
    def __init__(
        self,
        registry: StepRegistry,
        store: FraudStore,
        flow_budget_ms: int = 5000,
        metrics: MetricsRecorder | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.registry = registry
        self.store = store
        self.flow_budget_ms = flow_budget_ms
        self.metrics = metrics
        self._clock = clock

    async def _save_trace(
        self, session_id: str, name: str, action: str, payload: Any, result: StepResult
    ) -> None:
        try:
            await self.store.create_trace(
                AgentTrace(
                    session_id=session_id,
                    agent_name=name,
                    action=action,
                    input=payload,
                    output=result.data,
                    error=result.error,
                    duration=result.duration,
                )
            )
        except Exception as exc:
            logger.error("trace_save_failed", session_id=session_id, step=name, error=str(exc))

    async def execute_flow(self, context: StepContext, plan: list[str]) -> FlowResult:
        started = self._clock()
        results: dict[str, StepResult] = {}
        logger.info("flow_started", session_id=context.session_id, plan=plan)

        for step in plan:
            elapsed_ms = (self._clock() - started) * 1000
            if elapsed_ms > self.flow_budget_ms:
                logger.warning(
                    "flow_budget_exceeded",
                    session_id=context.session_id,
                    elapsed_ms=round(elapsed_ms, 2),
                    budget_ms=self.flow_budget_ms,
                )
                break

            name, params = split_step(step)
            wrapped = self.registry.get(name)
            if wrapped is None:
                logger.warning("step_not_found", session_id=context.session_id, step=name)
                continue

            payload = prepare_input(params, results)
            result = await wrapped.execute(context, payload)
            results[name] = result

            await self._save_trace(context.session_id, name, step, payload, result)

            if not result.success and is_critical(name):
                logger.error(
                    "critical_step_failed",
                    session_id=context.session_id,
                    step=name,
                    error=result.error,
                )
                break

        duration = (self._clock() - started) * 1000
        completed = len(results) == len(plan)
        if self.metrics is not None:
            self.metrics.record_histogram("agent_flow_duration_ms", duration)
            self.metrics.record_counter(
                "agent_flow_total", labels={"completed": str(completed).lower()}
            )
        logger.info(
            "flow_completed",
            session_id=context.session_id,
            duration_ms=round(duration, 2),
            completed=completed,
            steps=list(results),
        )
        return FlowResult(
            session_id=context.session_id,
            results=results,
            duration=duration,
            completed=completed,
        )

    async def execute_step(self, name: str, context: StepContext, payload: Any) -> StepResult:
        """Run one step outside a plan; unknown names come back as a failed result."""
        wrapped = self.registry.get(name)
        if wrapped is None:
            return StepResult(success=False, error=f"Step {name} not found")

        result = await wrapped.execute(context, payload)
        await self._save_trace(context.session_id, name, "execute", payload, result)
        return result
