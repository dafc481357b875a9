"""Customer risk-level endpoint."""

from fastapi import APIRouter, Depends

from src.api.dependencies import ServiceContainer, get_container
from src.api.schemas import RiskLevelRequest

router = APIRouter(prefix="/api/v1/customers", tags=["customers"])


@router.put("/{customer_id}/risk-level")
async def update_risk_level(
    customer_id: str,
    request: RiskLevelRequest,
    container: ServiceContainer = Depends(get_container),  # noqa: B008
) -> dict:
    customer = await container.actions.update_risk_level(customer_id, request.level)
    return customer.model_dump(mode="json")
