"""Pydantic models for the fraud domain."""

from datetime import datetime
from decimal import Decimal
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class CardStatus(StrEnum):
    ACTIVE = "ACTIVE"
    FROZEN = "FROZEN"
    CANCELLED = "CANCELLED"


class TransactionStatus(StrEnum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    DECLINED = "DECLINED"
    FLAGGED = "FLAGGED"


class DisputeStatus(StrEnum):
    OPEN = "OPEN"
    INVESTIGATING = "INVESTIGATING"
    RESOLVED = "RESOLVED"
    REJECTED = "REJECTED"


class AlertType(StrEnum):
    FRAUD = "FRAUD"
    VELOCITY = "VELOCITY"
    DEVICE_CHANGE = "DEVICE_CHANGE"
    UNUSUAL_LOCATION = "UNUSUAL_LOCATION"
    HIGH_RISK_MERCHANT = "HIGH_RISK_MERCHANT"


class AlertSeverity(StrEnum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class AlertStatus(StrEnum):
    PENDING = "PENDING"
    IN_REVIEW = "IN_REVIEW"
    RESOLVED = "RESOLVED"
    FALSE_POSITIVE = "FALSE_POSITIVE"
    ESCALATED = "ESCALATED"


class RiskLevel(StrEnum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class Decision(StrEnum):
    APPROVE = "APPROVE"
    MONITOR = "MONITOR"
    REVIEW = "REVIEW"
    BLOCK = "BLOCK"


# ---------------------------------------------------------------------------
# Store records
# ---------------------------------------------------------------------------


class _Record(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class Customer(_Record):
    id: str
    name: str
    email_masked: str = ""
    risk_flags: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None


class Card(_Record):
    id: str
    customer_id: str
    last4: str
    network: str = "VISA"
    status: CardStatus = CardStatus.ACTIVE
    updated_at: datetime | None = None


class Device(_Record):
    id: str
    customer_id: str
    fingerprint: str = ""
    trusted: bool = False
    last_seen: datetime | None = None


class Transaction(_Record):
    id: str
    customer_id: str
    card_id: str | None = None
    mcc: str = ""
    merchant: str = ""
    amount: Decimal = Decimal("0")
    currency: str = "USD"
    timestamp: datetime
    device_id: str | None = None
    geo: dict[str, Any] = Field(default_factory=dict)
    risk_score: float | None = None
    status: TransactionStatus = TransactionStatus.PENDING


class Chargeback(_Record):
    id: str
    customer_id: str
    transaction_id: str
    amount: Decimal = Decimal("0")
    reason: str = ""
    reason_code: str | None = None
    status: DisputeStatus = DisputeStatus.OPEN
    created_at: datetime | None = None
    updated_at: datetime | None = None


class Alert(_Record):
    id: str
    customer_id: str
    type: AlertType = AlertType.FRAUD
    severity: AlertSeverity
    risk_score: float
    reasons: list[str] = Field(default_factory=list)
    status: AlertStatus = AlertStatus.PENDING
    metadata: dict[str, Any] = Field(default_factory=dict)
    triage_data: dict[str, Any] | None = None
    created_at: datetime
    resolved_at: datetime | None = None


class AgentTrace(_Record):
    session_id: str
    agent_name: str
    action: str
    input: Any = None
    output: Any = None
    error: str | None = None
    duration: float | None = None
    created_at: datetime | None = None


class KnowledgeEntry(_Record):
    id: str
    anchor: str
    title: str
    content: str = ""
    chunks: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Write requests and query filters
# ---------------------------------------------------------------------------


class AlertCreate(BaseModel):
    customer_id: str
    type: AlertType = AlertType.FRAUD
    severity: AlertSeverity
    risk_score: float
    reasons: list[str] = Field(default_factory=list)
    status: AlertStatus = AlertStatus.PENDING
    metadata: dict[str, Any] = Field(default_factory=dict)


class ChargebackCreate(BaseModel):
    customer_id: str
    transaction_id: str
    amount: Decimal
    reason: str
    reason_code: str | None = None
    status: DisputeStatus = DisputeStatus.OPEN


class AlertQuery(BaseModel):
    customer_id: str | None = None
    type: AlertType | None = None
    severity: AlertSeverity | None = None
    status: AlertStatus | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    skip: int = Field(default=0, ge=0)
    take: int = Field(default=50, ge=1, le=500)
    # within a severity, oldest first (queue order) instead of newest first
    oldest_first: bool = False


class DisputeStats(BaseModel):
    total: int = 0
    recent: int = 0


class CardActionStats(BaseModel):
    frozen_today: int = 0
    total_frozen: int = 0


class ResolutionStats(BaseModel):
    today: int = 0
    avg_time_hours: float = 0.0


class ActionStats(BaseModel):
    disputes: DisputeStats = Field(default_factory=DisputeStats)
    card_actions: CardActionStats = Field(default_factory=CardActionStats)
    resolutions: ResolutionStats = Field(default_factory=ResolutionStats)


# ---------------------------------------------------------------------------
# Risk signals and triage output
# ---------------------------------------------------------------------------


class VelocitySignal(BaseModel):
    score: float
    transaction_count: int
    hourly_count: int
    total_amount: float


class DeviceSignal(BaseModel):
    score: float
    total_devices: int
    untrusted_devices: int


class HistorySignal(BaseModel):
    score: float
    chargeback_count: int
    alert_count: int


class TransactionSignal(BaseModel):
    """Merchant / amount sub-scores for the transaction under review."""

    transaction_id: str
    merchant_score: float
    amount_score: float
    mcc: str
    amount: float


class SignalBreakdown(BaseModel):
    velocity: VelocitySignal
    devices: DeviceSignal
    history: HistorySignal
    transaction: TransactionSignal | None = None


class RiskSignals(BaseModel):
    overall_risk: float = Field(ge=0.0, le=1.0)
    base_risk: float
    risk_band: str  # high / medium / low
    signals: SignalBreakdown
    recommendations: list[str] = []


class TriageResult(BaseModel):
    customer_id: str
    transaction_id: str | None = None
    alert_id: str | None = None
    risk_score: float
    decision: Decision
    signals: SignalBreakdown
    recommendations: list[str] = []
    created_alert_id: str | None = None
    timestamp: datetime


class TriageOutcome(BaseModel):
    session_id: str
    result: TriageResult
    duration: float


class TriageEvent(BaseModel):
    """A progress event published on a triage session stream."""

    type: str  # start / progress / complete / error
    message: str
    session_id: str | None = None
    step: int | None = None
    result: dict[str, Any] | None = None
    error: str | None = None
    duration: float | None = None
