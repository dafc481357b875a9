"""Customer risk signal aggregation.

Three behavioural sub-scores (velocity, devices, history) are averaged and
blended with a base score derived from the customer's risk flags:

    overall = base * 0.7 + mean(velocity, device, history) * 0.3

Every sub-score is bounded to [0, 1] and the weights sum to 1, so the overall
score stays in [0, 1]. The functions here are pure; the only time dependency
is the ``now`` anchor used for the one-hour velocity window.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from .config import FraudConfig, default_config
from .models import (
    AlertSeverity,
    Decision,
    Device,
    DeviceSignal,
    HistorySignal,
    RiskSignals,
    SignalBreakdown,
    Transaction,
    TransactionSignal,
    VelocitySignal,
)

_FLAG_RECOMMENDATIONS = (
    ("previousFraud", "Customer has previous fraud history - heightened vigilance required"),
    ("highRiskCountry", "Customer in high-risk country - verify all cross-border transactions"),
    ("vipCustomer", "VIP customer - expedite resolution and provide premium support"),
)

_BAND_RECOMMENDATIONS = {
    "high": [
        "Immediate card freeze recommended - high risk detected",
        "Contact customer immediately via registered phone number",
        "Review all recent transactions for potential fraud patterns",
    ],
    "medium": [
        "Enhanced monitoring required for next 30 days",
        "Request additional authentication for high-value transactions",
        "Review spending patterns for anomalies",
    ],
    "low": [
        "No immediate action required - low risk profile",
        "Continue standard monitoring procedures",
    ],
}


@dataclass
class RiskInputs:
    """Raw data pulled from the store for one customer."""

    transactions: list[Transaction] = field(default_factory=list)
    devices: list[Device] = field(default_factory=list)
    chargeback_count: int = 0
    alert_count: int = 0
    risk_flags: dict[str, Any] = field(default_factory=dict)
    focus_transaction: Transaction | None = None


def _as_utc(ts: datetime) -> datetime:
    """Naive timestamps are treated as UTC."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=UTC)
    return ts.astimezone(UTC)


def hourly_count(transactions: list[Transaction], now: datetime, window_minutes: int = 60) -> int:
    cutoff = _as_utc(now) - timedelta(minutes=window_minutes)
    return sum(1 for tx in transactions if _as_utc(tx.timestamp) > cutoff)


def velocity_score(
    transactions: list[Transaction], now: datetime, config: FraudConfig = default_config
) -> float:
    if not transactions:
        return 0.0

    count = hourly_count(transactions, now, config.velocity.hourly_window_minutes)
    for lower_bound, score in config.velocity.bands:
        if count > lower_bound:
            return score
    return config.velocity.floor_score


def device_score(devices: list[Device], config: FraudConfig = default_config) -> float:
    if not devices:
        return config.devices.no_device_score

    untrusted_ratio = sum(1 for d in devices if not d.trusted) / len(devices)
    return min(untrusted_ratio * config.devices.untrusted_ratio_multiplier, 1.0)


def history_score(
    chargeback_count: int, alert_count: int, config: FraudConfig = default_config
) -> float:
    score = (
        chargeback_count * config.history.chargeback_weight
        + alert_count * config.history.alert_weight
    )
    return min(score, 1.0)


def base_risk_score(risk_flags: dict[str, Any] | None, config: FraudConfig = default_config) -> float:
    flags = risk_flags or {}
    if flags.get("previousFraud"):
        return config.base.previous_fraud
    if flags.get("highRiskCountry"):
        return config.base.high_risk_country
    return config.base.default


def risk_band(score: float, config: FraudConfig = default_config) -> str:
    if score >= config.scoring.high_band:
        return "high"
    if score >= config.scoring.medium_band:
        return "medium"
    return "low"


def transaction_signal(
    transaction: Transaction, config: FraudConfig = default_config
) -> TransactionSignal:
    amount = float(transaction.amount)
    thresholds = config.transaction
    return TransactionSignal(
        transaction_id=transaction.id,
        merchant_score=thresholds.merchant_score
        if transaction.mcc in thresholds.high_risk_mccs
        else 0.0,
        amount_score=thresholds.amount_score if amount > thresholds.large_amount else 0.0,
        mcc=transaction.mcc,
        amount=amount,
    )


def generate_recommendations(
    overall_risk: float, risk_flags: dict[str, Any] | None, config: FraudConfig = default_config
) -> list[str]:
    flags = risk_flags or {}
    recommendations = [text for flag, text in _FLAG_RECOMMENDATIONS if flags.get(flag)]
    recommendations.extend(_BAND_RECOMMENDATIONS[risk_band(overall_risk, config)])
    return recommendations


def compute_risk_signals(
    inputs: RiskInputs, now: datetime, config: FraudConfig = default_config
) -> RiskSignals:
    """Score one customer from raw store data."""
    velocity = velocity_score(inputs.transactions, now, config)
    devices = device_score(inputs.devices, config)
    history = history_score(inputs.chargeback_count, inputs.alert_count, config)
    base = base_risk_score(inputs.risk_flags, config)

    overall = base * config.scoring.base_weight + (
        (velocity + devices + history) / 3
    ) * config.scoring.signal_weight

    breakdown = SignalBreakdown(
        velocity=VelocitySignal(
            score=velocity,
            transaction_count=len(inputs.transactions),
            hourly_count=hourly_count(
                inputs.transactions, now, config.velocity.hourly_window_minutes
            ),
            total_amount=float(sum(tx.amount for tx in inputs.transactions)),
        ),
        devices=DeviceSignal(
            score=devices,
            total_devices=len(inputs.devices),
            untrusted_devices=sum(1 for d in inputs.devices if not d.trusted),
        ),
        history=HistorySignal(
            score=history,
            chargeback_count=inputs.chargeback_count,
            alert_count=inputs.alert_count,
        ),
        transaction=transaction_signal(inputs.focus_transaction, config)
        if inputs.focus_transaction
        else None,
    )

    return RiskSignals(
        overall_risk=overall,
        base_risk=base,
        risk_band=risk_band(overall, config),
        signals=breakdown,
        recommendations=generate_recommendations(overall, inputs.risk_flags, config),
    )


def make_decision(score: float, config: FraudConfig = default_config) -> Decision:
    thresholds = config.decisions
    if score > thresholds.block:
        return Decision.BLOCK
    if score > thresholds.review:
        return Decision.REVIEW
    if score > thresholds.monitor:
        return Decision.MONITOR
    return Decision.APPROVE


def severity_for(score: float, config: FraudConfig = default_config) -> AlertSeverity:
    thresholds = config.decisions
    if score > thresholds.block:
        return AlertSeverity.CRITICAL
    if score > thresholds.review:
        return AlertSeverity.HIGH
    if score > thresholds.monitor:
        return AlertSeverity.MEDIUM
    return AlertSeverity.LOW
