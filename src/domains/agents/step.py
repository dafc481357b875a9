"""Retry, timeout and circuit-breaker envelope around a single pipeline step.

A step is a plain coroutine function ``process(context, payload)``. Wrapping it
in ``RetryableStep`` adds:

- a per-attempt deadline (``asyncio.wait_for``; the losing attempt is cancelled)
- ``max_retries + 1`` attempts with capped exponential backoff between them
- a per-instance breaker: Closed -> Open after ``circuit_breaker_threshold``
  exhausted calls, Open -> Closed once the cooldown has elapsed

Failures never raise out of ``execute``; callers check ``StepResult.success``.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Any

import structlog
from pydantic import BaseModel, Field

from src.shared.metrics import MetricsRecorder

from .config import StepConfig

logger = structlog.get_logger()

CIRCUIT_OPEN_ERROR = "Circuit breaker open"


class StepContext(BaseModel):
    session_id: str
    customer_id: str | None = None
    transaction_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class StepResult(BaseModel):
    success: bool
    data: Any = None
    error: str | None = None
    duration: float | None = None  # milliseconds
    retries: int = 0


StepFn = Callable[[StepContext, Any], Awaitable[Any]]


def prior_data(payload: Any, name: str) -> Any:
    """Data of an earlier successful step when ``payload`` is the results map."""
    if not isinstance(payload, dict):
        return None
    result = payload.get(name)
    if isinstance(result, StepResult):
        return result.data if result.success else None
    if isinstance(result, dict) and result.get("success"):
        return result.get("data")
    return None


def prior_risk_score(payload: Any) -> float | None:
    fraud = prior_data(payload, "fraud")
    if isinstance(fraud, dict) and fraud.get("score") is not None:
        return float(fraud["score"])
    return None


def _describe(exc: BaseException) -> str:
    if isinstance(exc, TimeoutError):
        return "Timeout"
    return str(exc) or type(exc).__name__


class RetryableStep:
    """One named step plus its breaker state."""

    def __init__(
        self,
        name: str,
        process: StepFn,
        config: StepConfig | None = None,
        metrics: MetricsRecorder | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.name = name
        self._process = process
        self.config = config or StepConfig()
        self.metrics = metrics
        self._clock = clock
        self._sleep = sleep

        self.failure_count = 0
        self.circuit_open = False
        self.circuit_open_time: float | None = None

    def _elapsed_ms(self, started: float) -> float:
        return (self._clock() - started) * 1000

    def is_circuit_open(self) -> bool:
        if not self.circuit_open:
            return False

        if self._elapsed_ms(self.circuit_open_time) > self.config.circuit_breaker_cooldown_ms:
            self.circuit_open = False
            self.circuit_open_time = None
            self.failure_count = 0
            logger.info("circuit_breaker_closed", step=self.name)
            return False

        return True

    def _record_failure(self) -> None:
        self.failure_count += 1
        if self.failure_count >= self.config.circuit_breaker_threshold:
            self.circuit_open = True
            self.circuit_open_time = self._clock()
            logger.warning(
                "circuit_breaker_opened",
                step=self.name,
                failure_count=self.failure_count,
                cooldown_ms=self.config.circuit_breaker_cooldown_ms,
            )

    async def execute(self, context: StepContext, payload: Any = None) -> StepResult:
        started = self._clock()

        if self.is_circuit_open():
            logger.warning("circuit_breaker_rejected", step=self.name, session_id=context.session_id)
            return StepResult(success=False, error=CIRCUIT_OPEN_ERROR)

        timeout_s = self.config.timeout_ms / 1000
        last_error = "Unknown error"
        attempt = 0

        for attempt in range(self.config.max_retries + 1):
            try:
                data = await asyncio.wait_for(self._process(context, payload), timeout=timeout_s)
            except Exception as exc:
                last_error = _describe(exc)
                logger.info(
                    "step_attempt_failed",
                    step=self.name,
                    session_id=context.session_id,
                    attempt=attempt,
                    error=last_error,
                )
                if attempt < self.config.max_retries:
                    await self._sleep(self.config.backoff_ms(attempt) / 1000)
                continue

            self.failure_count = 0
            if self.metrics is not None:
                duration = self.metrics.record_latency(
                    f"agent.{self.name}", started, clock=self._clock
                )
                self.metrics.record_counter(f"agent.{self.name}.success")
            else:
                duration = self._elapsed_ms(started)
            logger.debug(
                "step_succeeded",
                step=self.name,
                session_id=context.session_id,
                duration_ms=round(duration, 2),
                retries=attempt,
            )
            return StepResult(success=True, data=data, duration=duration, retries=attempt)

        self._record_failure()
        if self.metrics is not None:
            self.metrics.record_counter(f"agent.{self.name}.failure")
        logger.error(
            "step_failed",
            step=self.name,
            session_id=context.session_id,
            retries=attempt,
            error=last_error,
        )
        return StepResult(
            success=False,
            error=last_error,
            duration=self._elapsed_ms(started),
            retries=attempt,
        )
