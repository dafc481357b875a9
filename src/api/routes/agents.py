"""Agent pipeline endpoints: plan construction, flow and single-step execution."""

import uuid

from fastapi import APIRouter, Depends

from src.api.dependencies import ServiceContainer, get_container
from src.api.schemas import ExecuteFlowRequest, ExecuteStepRequest, FlowContext, PlanFlowRequest
from src.domains.agents.orchestrator import create_plan
from src.domains.agents.step import StepContext

router = APIRouter(prefix="/api/v1/agents", tags=["agents"])


def _context(request: FlowContext) -> StepContext:
    return StepContext(
        session_id=request.session_id or str(uuid.uuid4()),
        customer_id=request.customer_id,
        transaction_id=request.transaction_id,
        metadata=request.metadata,
    )


@router.post("/plan")
async def plan_flow(request: PlanFlowRequest) -> dict:
    return create_plan(request.flags, _context(request)).model_dump(mode="json")


@router.post("/execute")
async def execute_flow(
    request: ExecuteFlowRequest,
    container: ServiceContainer = Depends(get_container),  # noqa: B008
) -> dict:
    flow = await container.executor.execute_flow(_context(request), request.plan)
    return flow.model_dump(mode="json")


@router.post("/steps/{name}")
async def execute_step(
    name: str,
    request: ExecuteStepRequest,
    container: ServiceContainer = Depends(get_container),  # noqa: B008
) -> dict:
    context = _context(request)
    result = await container.executor.execute_step(name, context, request.input)
    return {"session_id": context.session_id, **result.model_dump(mode="json")}


@router.get("/steps")
async def list_steps(
    container: ServiceContainer = Depends(get_container),  # noqa: B008
) -> dict:
    return {
        "steps": [
            {
                "name": step.name,
                "circuit_open": step.circuit_open,
                "failure_count": step.failure_count,
            }
            for step in (container.registry.get(kind) for kind in container.registry.kinds())
            if step is not None
        ]
    }


@router.get("/traces/{session_id}")
async def list_traces(
    session_id: str,
    container: ServiceContainer = Depends(get_container),  # noqa: B008
) -> dict:
    traces = await container.store.list_traces(session_id)
    return {"session_id": session_id, "traces": [t.model_dump(mode="json") for t in traces]}
