"""Analyst action endpoints: card freeze/unfreeze, disputes, customer contact."""

from fastapi import APIRouter, Depends

from src.api.dependencies import ServiceContainer, get_container
from src.api.schemas import (
    ContactCustomerRequest,
    DisputeUpdateRequest,
    FreezeCardRequest,
    OpenDisputeRequest,
    UnfreezeCardRequest,
)

router = APIRouter(prefix="/api/v1/actions", tags=["actions"])


@router.post("/freeze-card")
async def freeze_card(
    request: FreezeCardRequest,
    container: ServiceContainer = Depends(get_container),  # noqa: B008
) -> dict:
    result = await container.actions.freeze_card(
        request.card_id, request.otp, require_otp=request.require_otp
    )
    return result.model_dump(mode="json")


@router.post("/unfreeze-card")
async def unfreeze_card(
    request: UnfreezeCardRequest,
    container: ServiceContainer = Depends(get_container),  # noqa: B008
) -> dict:
    result = await container.actions.unfreeze_card(request.card_id, request.otp)
    return result.model_dump(mode="json")


@router.post("/open-dispute")
async def open_dispute(
    request: OpenDisputeRequest,
    container: ServiceContainer = Depends(get_container),  # noqa: B008
) -> dict:
    dispute = await container.actions.open_dispute(
        request.txn_id,
        reason_code=request.reason_code,
        confirm=request.confirm,
        reason=request.reason,
    )
    return {
        "success": True,
        "action": "DISPUTE_OPENED",
        "dispute_id": dispute.id,
        "status": dispute.status.value,
        "dispute": dispute.model_dump(mode="json"),
    }


@router.get("/disputes")
async def list_disputes(
    customer_id: str | None = None,
    transaction_id: str | None = None,
    container: ServiceContainer = Depends(get_container),  # noqa: B008
) -> dict:
    disputes = await container.actions.list_disputes(customer_id, transaction_id)
    return {"disputes": [d.model_dump(mode="json") for d in disputes], "total": len(disputes)}


@router.get("/disputes/{dispute_id}")
async def get_dispute(
    dispute_id: str,
    container: ServiceContainer = Depends(get_container),  # noqa: B008
) -> dict:
    dispute = await container.actions.get_dispute(dispute_id)
    return dispute.model_dump(mode="json")


@router.put("/disputes/{dispute_id}")
async def advance_dispute(
    dispute_id: str,
    request: DisputeUpdateRequest,
    container: ServiceContainer = Depends(get_container),  # noqa: B008
) -> dict:
    dispute = await container.actions.advance_dispute(dispute_id, request.status)
    return dispute.model_dump(mode="json")


@router.post("/contact-customer")
async def contact_customer(
    request: ContactCustomerRequest,
    container: ServiceContainer = Depends(get_container),  # noqa: B008
) -> dict:
    result = await container.actions.contact_customer(
        request.customer_id, request.message, request.method
    )
    return result.model_dump(mode="json")
