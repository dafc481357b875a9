"""Request bodies for the HTTP surface."""

from typing import Any

from pydantic import BaseModel, Field

from src.domains.agents.orchestrator import PlanRequest
from src.domains.fraud.models import AlertStatus, DisputeStatus


class TriageRequest(BaseModel):
    customer_id: str
    transaction_id: str | None = None
    alert_id: str | None = None
    # return the session id immediately and run in the background
    background: bool = False


class AlertUpdateRequest(BaseModel):
    status: AlertStatus
    triage_data: dict[str, Any] | None = None


class OTPRequest(BaseModel):
    otp: str | None = None


class FreezeCardRequest(OTPRequest):
    card_id: str
    require_otp: bool | None = None


class UnfreezeCardRequest(OTPRequest):
    card_id: str


class DisputeRequest(BaseModel):
    reason_code: str | None = None
    confirm: bool = False
    reason: str | None = None


class OpenDisputeRequest(DisputeRequest):
    txn_id: str


class DisputeUpdateRequest(BaseModel):
    status: DisputeStatus


class ContactCustomerRequest(BaseModel):
    customer_id: str
    message: str | None = None
    method: str = "EMAIL"


class RiskLevelRequest(BaseModel):
    # LOW | MEDIUM | HIGH, checked by FraudActions.update_risk_level
    level: str


class FlowContext(BaseModel):
    session_id: str | None = None
    customer_id: str | None = None
    transaction_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class PlanFlowRequest(FlowContext):
    flags: PlanRequest = Field(default_factory=PlanRequest)


class ExecuteFlowRequest(FlowContext):
    plan: list[str] = Field(min_length=1)


class ExecuteStepRequest(FlowContext):
    input: Any = None
