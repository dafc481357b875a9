"""Unit tests for the retry / timeout / circuit-breaker step envelope."""

import asyncio

import pytest

from src.domains.agents.config import StepConfig
from src.domains.agents.step import (
    CIRCUIT_OPEN_ERROR,
    RetryableStep,
    StepContext,
    StepResult,
    prior_data,
    prior_risk_score,
)
from src.shared.metrics import MetricsRecorder

CONTEXT = StepContext(session_id="sess-1", customer_id="cust-1")


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class Recorder:
    """Stands in for asyncio.sleep and remembers the requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def _flaky(failures: int, value="ok"):
    calls = {"n": 0}

    async def process(context, payload):
        calls["n"] += 1
        if calls["n"] <= failures:
            raise RuntimeError(f"boom {calls['n']}")
        return value

    return process, calls


async def _always_fails(context, payload):
    raise RuntimeError("boom")


class TestRetries:
    @pytest.mark.asyncio
    async def test_first_attempt_success(self):
        process, calls = _flaky(0, value={"x": 1})
        step = RetryableStep("profile", process, sleep=Recorder())
        result = await step.execute(CONTEXT)
        assert result.success
        assert result.data == {"x": 1}
        assert result.retries == 0
        assert calls["n"] == 1

    @pytest.mark.asyncio
    async def test_succeeds_after_retries(self):
        process, calls = _flaky(2)
        sleep = Recorder()
        step = RetryableStep("profile", process, config=StepConfig(max_retries=2), sleep=sleep)
        result = await step.execute(CONTEXT)
        assert result.success
        assert result.retries == 2
        assert calls["n"] == 3
        assert sleep.delays == [0.15, 0.3]
        assert step.failure_count == 0

    @pytest.mark.asyncio
    async def test_exhausted_attempts(self):
        sleep = Recorder()
        step = RetryableStep("fraud", _always_fails, config=StepConfig(max_retries=2), sleep=sleep)
        result = await step.execute(CONTEXT)
        assert not result.success
        assert result.error == "boom"
        assert result.retries == 2
        assert step.failure_count == 1
        # no sleep after the last attempt
        assert len(sleep.delays) == 2

    @pytest.mark.asyncio
    async def test_timeout_every_attempt(self):
        async def slow(context, payload):
            await asyncio.sleep(5)

        sleep = Recorder()
        step = RetryableStep(
            "kb", slow, config=StepConfig(max_retries=2, timeout_ms=10), sleep=sleep
        )
        result = await step.execute(CONTEXT)
        assert not result.success
        assert result.error == "Timeout"
        assert result.retries == 2
        assert sleep.delays == [0.15, 0.3]

    @pytest.mark.asyncio
    async def test_payload_passed_through(self):
        seen = []

        async def process(context, payload):
            seen.append((context.session_id, payload))
            return payload

        step = RetryableStep("redactor", process)
        result = await step.execute(CONTEXT, {"a": 1})
        assert result.data == {"a": 1}
        assert seen == [("sess-1", {"a": 1})]

    def test_backoff_is_capped(self):
        config = StepConfig(backoff_base_ms=150, backoff_cap_ms=1000)
        assert [config.backoff_ms(i) for i in range(5)] == [150, 300, 600, 1000, 1000]


class TestCircuitBreaker:
    def _step(self, clock: FakeClock, process=_always_fails) -> RetryableStep:
        return RetryableStep(
            "compliance",
            process,
            config=StepConfig(
                max_retries=0, circuit_breaker_threshold=3, circuit_breaker_cooldown_ms=30_000
            ),
            clock=clock,
            sleep=Recorder(),
        )

    @pytest.mark.asyncio
    async def test_opens_at_threshold(self):
        clock = FakeClock()
        step = self._step(clock)
        for _ in range(2):
            await step.execute(CONTEXT)
        assert not step.circuit_open
        await step.execute(CONTEXT)
        assert step.circuit_open
        assert step.circuit_open_time == clock.now

    @pytest.mark.asyncio
    async def test_open_circuit_rejects_without_calling(self):
        clock = FakeClock()
        process, calls = _flaky(3)
        step = self._step(clock, process)
        for _ in range(3):
            await step.execute(CONTEXT)
        assert calls["n"] == 3

        result = await step.execute(CONTEXT)
        assert result == StepResult(success=False, error=CIRCUIT_OPEN_ERROR)
        assert calls["n"] == 3

    @pytest.mark.asyncio
    async def test_stays_open_until_cooldown_elapses(self):
        clock = FakeClock()
        step = self._step(clock)
        for _ in range(3):
            await step.execute(CONTEXT)

        clock.advance(30.0)
        assert step.is_circuit_open()

        clock.advance(0.001)
        assert not step.is_circuit_open()
        assert step.failure_count == 0
        assert step.circuit_open_time is None

    @pytest.mark.asyncio
    async def test_closes_and_runs_after_cooldown(self):
        clock = FakeClock()
        process, calls = _flaky(3, value="recovered")
        step = self._step(clock, process)
        for _ in range(3):
            await step.execute(CONTEXT)

        clock.advance(31)
        result = await step.execute(CONTEXT)
        assert result.success
        assert result.data == "recovered"

    @pytest.mark.asyncio
    async def test_success_resets_failure_count(self):
        clock = FakeClock()
        process, _ = _flaky(2)
        step = self._step(clock, process)
        await step.execute(CONTEXT)
        await step.execute(CONTEXT)
        assert step.failure_count == 2
        await step.execute(CONTEXT)
        assert step.failure_count == 0
        assert not step.circuit_open


class TestMetrics:
    @pytest.mark.asyncio
    async def test_success_and_failure_counters(self):
        metrics = MetricsRecorder()
        ok = RetryableStep("profile", _flaky(0)[0], metrics=metrics, sleep=Recorder())
        bad = RetryableStep(
            "fraud", _always_fails, config=StepConfig(max_retries=0), metrics=metrics
        )
        await ok.execute(CONTEXT)
        await bad.execute(CONTEXT)
        assert metrics.count("agent.profile.success") == 1
        assert metrics.count("agent.fraud.failure") == 1
        assert "agent.profile_duration_ms" in metrics.summary()

    @pytest.mark.asyncio
    async def test_latency_uses_step_clock(self):
        clock = FakeClock()
        metrics = MetricsRecorder()

        async def slow(context, payload):
            clock.advance(0.2)
            return "done"

        step = RetryableStep("profile", slow, metrics=metrics, clock=clock)
        result = await step.execute(CONTEXT)
        assert result.duration == pytest.approx(200.0)
        summary = metrics.summary()["agent.profile_duration_ms"]
        assert summary["value"] == pytest.approx(200.0)
        assert summary["count"] == 1


class TestPriorData:
    def test_reads_successful_results(self):
        payload = {"fraud": StepResult(success=True, data={"score": 0.9})}
        assert prior_data(payload, "fraud") == {"score": 0.9}
        assert prior_risk_score(payload) == 0.9

    def test_ignores_failed_results(self):
        payload = {"fraud": StepResult(success=False, error="boom")}
        assert prior_data(payload, "fraud") is None
        assert prior_risk_score(payload) is None

    def test_accepts_serialized_results(self):
        payload = {"fraud": {"success": True, "data": {"score": "0.5"}}}
        assert prior_risk_score(payload) == 0.5

    def test_non_mapping_payload(self):
        assert prior_data(["fraud"], "fraud") is None
