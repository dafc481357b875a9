"""Fraud operations domain: risk scoring, alerts, triage and card actions."""

from .config import FraudConfig, default_config
from .models import (
    Alert,
    AlertSeverity,
    AlertStatus,
    CardStatus,
    Decision,
    RiskSignals,
    TriageResult,
)
from .risk_scorer import RiskInputs, compute_risk_signals, make_decision, severity_for

__all__ = [
    "Alert",
    "AlertSeverity",
    "AlertStatus",
    "CardStatus",
    "Decision",
    "FraudConfig",
    "RiskInputs",
    "RiskSignals",
    "TriageResult",
    "compute_risk_signals",
    "default_config",
    "make_decision",
    "severity_for",
]
