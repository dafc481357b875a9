"""Fraud scoring and triage configuration with sensible defaults."""

import os
from dataclasses import dataclass, field


@dataclass
class VelocityThresholds:
    window_days: int = 7
    hourly_window_minutes: int = 60
    # (exclusive lower bound on hourly count, score), checked in order
    bands: tuple[tuple[int, float], ...] = ((10, 1.0), (5, 0.7), (3, 0.4))
    floor_score: float = 0.2


@dataclass
class DeviceThresholds:
    no_device_score: float = 0.5
    untrusted_ratio_multiplier: float = 1.5


@dataclass
class HistoryWeights:
    chargeback_weight: float = 0.3
    alert_weight: float = 0.1


@dataclass
class BaseRiskScores:
    previous_fraud: float = 0.75
    high_risk_country: float = 0.45
    default: float = 0.1


@dataclass
class TransactionThresholds:
    high_risk_mccs: tuple[str, ...] = ("6011", "7995")
    merchant_score: float = 0.5
    large_amount: float = 5000.0
    amount_score: float = 0.5


@dataclass
class ScoringWeights:
    base_weight: float = 0.7
    signal_weight: float = 0.3
    high_band: float = 0.7
    medium_band: float = 0.4


@dataclass
class DecisionThresholds:
    """Exclusive lower bounds shared by triage decisions and alert severity."""

    block: float = 0.8
    review: float = 0.6
    monitor: float = 0.4
    alert_min_risk: float = 0.5


@dataclass
class FraudConfig:
    velocity: VelocityThresholds = field(default_factory=VelocityThresholds)
    devices: DeviceThresholds = field(default_factory=DeviceThresholds)
    history: HistoryWeights = field(default_factory=HistoryWeights)
    base: BaseRiskScores = field(default_factory=BaseRiskScores)
    transaction: TransactionThresholds = field(default_factory=TransactionThresholds)
    scoring: ScoringWeights = field(default_factory=ScoringWeights)
    decisions: DecisionThresholds = field(default_factory=DecisionThresholds)

    @classmethod
    def from_env(cls) -> "FraudConfig":
        """Load config with env var overrides. Env vars use FRAUD_ prefix."""
        config = cls()

        if v := os.getenv("FRAUD_VELOCITY_WINDOW_DAYS"):
            config.velocity.window_days = int(v)
        if v := os.getenv("FRAUD_LARGE_AMOUNT"):
            config.transaction.large_amount = float(v)

        if v := os.getenv("FRAUD_BLOCK_THRESHOLD"):
            config.decisions.block = float(v)
        if v := os.getenv("FRAUD_REVIEW_THRESHOLD"):
            config.decisions.review = float(v)
        if v := os.getenv("FRAUD_MONITOR_THRESHOLD"):
            config.decisions.monitor = float(v)
        if v := os.getenv("FRAUD_ALERT_MIN_RISK"):
            config.decisions.alert_min_risk = float(v)

        return config


# Module-level default instance
default_config = FraudConfig()
