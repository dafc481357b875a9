"""Plan construction from request flags."""

from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from .registry import StepKind
from .step import StepContext

logger = structlog.get_logger()

# rough per-step cost used for the plan estimate
ESTIMATED_STEP_MS = 500


class PlanRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    requires_profile: bool = False
    requires_transactions: bool = False
    requires_risk_analysis: bool = False
    requires_knowledge: bool = False
    requires_compliance: bool = False
    requires_action: bool = False


class Plan(BaseModel):
    plan: list[str]
    context: StepContext
    estimated_duration: int


def build_plan(request: PlanRequest) -> list[str]:
    """Fixed order; ``decide`` is always present, ahead of ``action``."""
    flagged = (
        (request.requires_profile, StepKind.PROFILE),
        (request.requires_transactions, StepKind.TRANSACTIONS),
        (request.requires_risk_analysis, StepKind.FRAUD),
        (request.requires_knowledge, StepKind.KB),
        (request.requires_compliance, StepKind.COMPLIANCE),
    )
    plan = [kind.value for enabled, kind in flagged if enabled]
    plan.append(StepKind.DECIDE.value)
    if request.requires_action:
        plan.append(StepKind.ACTION.value)
    return plan


def create_plan(request: PlanRequest | dict[str, Any], context: StepContext) -> Plan:
    if not isinstance(request, PlanRequest):
        request = PlanRequest.model_validate(request)
    plan = build_plan(request)
    logger.info("plan_created", session_id=context.session_id, plan=plan)
    return Plan(plan=plan, context=context, estimated_duration=len(plan) * ESTIMATED_STEP_MS)
