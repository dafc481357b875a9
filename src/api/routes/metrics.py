"""In-process metrics summary."""

from fastapi import APIRouter, Depends

from src.api.dependencies import ServiceContainer, get_container

router = APIRouter(prefix="/api/v1", tags=["metrics"])


@router.get("/metrics")
async def metrics_summary(
    container: ServiceContainer = Depends(get_container),  # noqa: B008
) -> dict:
    return {"metrics": container.metrics.summary()}
