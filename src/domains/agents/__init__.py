"""Multi-step agent pipeline: retryable steps, planning and execution."""

from .config import StepConfig
from .executor import Executor, FlowResult
from .orchestrator import PlanRequest, build_plan, create_plan
from .registry import StepKind, StepRegistry, build_registry
from .step import RetryableStep, StepContext, StepResult

__all__ = [
    "Executor",
    "FlowResult",
    "PlanRequest",
    "RetryableStep",
    "StepConfig",
    "StepContext",
    "StepKind",
    "StepRegistry",
    "StepResult",
    "build_plan",
    "build_registry",
    "create_plan",
]
