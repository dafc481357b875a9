"""Execution envelope defaults for pipeline steps."""

from dataclasses import dataclass

from src.config import Settings


@dataclass
class StepConfig:
    max_retries: int = 2
    timeout_ms: int = 1000
    circuit_breaker_threshold: int = 3
    circuit_breaker_cooldown_ms: int = 30_000
    # backoff between attempts: min(base * 2**attempt, cap)
    backoff_base_ms: int = 150
    backoff_cap_ms: int = 1000

    @classmethod
    def from_settings(cls, settings: Settings) -> "StepConfig":
        return cls(
            max_retries=settings.agent_max_retries,
            timeout_ms=settings.agent_timeout_ms,
            circuit_breaker_threshold=settings.agent_circuit_breaker_threshold,
            circuit_breaker_cooldown_ms=settings.agent_circuit_breaker_cooldown_ms,
        )

    def backoff_ms(self, attempt: int) -> int:
        return min(self.backoff_base_ms * 2**attempt, self.backoff_cap_ms)
