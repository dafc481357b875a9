"""Fraud triage, alert and risk-signal endpoints."""

from collections.abc import AsyncIterator
from datetime import datetime

import structlog
from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse, StreamingResponse

from src.api.dependencies import ServiceContainer, get_container
from src.api.schemas import AlertUpdateRequest, DisputeRequest, OTPRequest, TriageRequest
from src.domains.fraud.models import AlertQuery, AlertSeverity, AlertStatus, AlertType

logger = structlog.get_logger()
router = APIRouter(prefix="/api/v1/fraud", tags=["fraud"])


@router.post("/triage")
async def run_triage(
    request: TriageRequest,
    container: ServiceContainer = Depends(get_container),  # noqa: B008
):
    if request.background:
        session_id = container.triage.start_triage(
            request.customer_id, request.transaction_id, request.alert_id
        )
        logger.info("triage_accepted", session_id=session_id, customer_id=request.customer_id)
        return JSONResponse(
            status_code=202,
            content={
                "session_id": session_id,
                "status": "started",
                "stream": f"/api/v1/fraud/triage/{session_id}/stream",
            },
        )

    outcome = await container.triage.run_triage(
        request.customer_id, request.transaction_id, request.alert_id
    )
    return outcome.model_dump(mode="json")


@router.get("/triage/{session_id}/stream")
async def stream_triage(
    session_id: str,
    container: ServiceContainer = Depends(get_container),  # noqa: B008
) -> StreamingResponse:
    async def events() -> AsyncIterator[str]:
        async for event in container.streams.subscribe(session_id):
            yield f"data: {event.model_dump_json(exclude_none=True)}\n\n"

    return StreamingResponse(
        events(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.get("/alerts")
async def list_alerts(
    customer_id: str | None = None,
    alert_type: AlertType | None = Query(None, alias="type"),
    severity: AlertSeverity | None = None,
    status: AlertStatus | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    skip: int = Query(0, ge=0),
    take: int = Query(50, ge=1, le=500),
    container: ServiceContainer = Depends(get_container),  # noqa: B008
) -> dict:
    page = await container.alerts.list_alerts(
        AlertQuery(
            customer_id=customer_id,
            type=alert_type,
            severity=severity,
            status=status,
            start_date=start_date,
            end_date=end_date,
            skip=skip,
            take=take,
        )
    )
    return page.model_dump(mode="json")


@router.get("/alerts/{alert_id}")
async def get_alert(
    alert_id: str,
    container: ServiceContainer = Depends(get_container),  # noqa: B008
) -> dict:
    alert = await container.alerts.get_alert(alert_id)
    return alert.model_dump(mode="json")


@router.put("/alerts/{alert_id}")
async def update_alert(
    alert_id: str,
    request: AlertUpdateRequest,
    container: ServiceContainer = Depends(get_container),  # noqa: B008
) -> dict:
    alert = await container.alerts.update_alert(alert_id, request.status, request.triage_data)
    return alert.model_dump(mode="json")


@router.get("/risk-signals/{customer_id}")
async def get_risk_signals(
    customer_id: str,
    transaction_id: str | None = None,
    container: ServiceContainer = Depends(get_container),  # noqa: B008
) -> dict:
    signals = await container.triage.get_risk_signals(customer_id, transaction_id)
    return {"customer_id": customer_id, **signals.model_dump(mode="json")}


@router.get("/queue")
async def fraud_queue(
    status: AlertStatus | None = None,
    container: ServiceContainer = Depends(get_container),  # noqa: B008
) -> dict:
    queue = await container.alerts.get_fraud_queue(status)
    return queue.model_dump(mode="json")


@router.post("/actions/freeze-card/{card_id}")
async def freeze_card(
    card_id: str,
    request: OTPRequest | None = None,
    container: ServiceContainer = Depends(get_container),  # noqa: B008
) -> dict:
    otp = request.otp if request else None
    result = await container.actions.freeze_card(card_id, otp)
    return result.model_dump(mode="json")


@router.post("/actions/dispute/{transaction_id}")
async def create_dispute(
    transaction_id: str,
    request: DisputeRequest,
    container: ServiceContainer = Depends(get_container),  # noqa: B008
) -> dict:
    dispute = await container.actions.open_dispute(
        transaction_id,
        reason_code=request.reason_code,
        confirm=request.confirm,
        reason=request.reason,
    )
    return dispute.model_dump(mode="json")
