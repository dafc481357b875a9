"""Compliance checks for analyst-initiated actions.

``check_compliance`` is pure: the same request always produces the same
verdict, and a negative verdict is returned as data (``approved=False``)
rather than raised.
"""

import re
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

OTP_ACTIONS = frozenset({"FREEZE_CARD", "UNFREEZE_CARD"})
CONSENT_ACTIONS = frozenset({"CONTACT_CUSTOMER", "SHARE_DATA", "CREATE_DISPUTE"})

OTP_AMOUNT_THRESHOLD = 1000
OTP_RISK_THRESHOLD = 0.6

TRANSACTION_LIMIT = 5000
DAILY_LIMIT = 10_000
HOURLY_LIMIT = 2000

PII_PATTERNS = (
    re.compile(r"\b\d{3}-\d{2}-\d{4}\b"),
    re.compile(r"\b\d{13,19}\b"),
    re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"),
)


class ComplianceRequest(BaseModel):
    """An action under review. Accepts snake_case or camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    action: str | None = None
    amount: float | None = None
    risk_score: float | None = None
    daily_total: float | None = None
    hourly_total: float | None = None
    otp_provided: bool = False
    consent_provided: bool = False


class LimitCheck(BaseModel):
    exceeded: bool
    details: list[str] = Field(default_factory=list)


class ComplianceChecks(BaseModel):
    otp_required: bool
    otp_provided: bool
    consent_required: bool
    consent_provided: bool
    limits_exceeded: LimitCheck
    pii_protected: bool


class ComplianceResult(BaseModel):
    approved: bool
    checks: ComplianceChecks
    violations: list[str]
    recommendations: list[str]
    blocked_action: str | None = None
    reason: str | None = None


def otp_required(request: ComplianceRequest) -> bool:
    if request.action in OTP_ACTIONS:
        return True
    if request.amount and request.amount > OTP_AMOUNT_THRESHOLD:
        return True
    return bool(request.risk_score and request.risk_score > OTP_RISK_THRESHOLD)


def consent_required(request: ComplianceRequest) -> bool:
    return request.action in CONSENT_ACTIONS


def check_limits(request: ComplianceRequest) -> LimitCheck:
    exceeded = []
    if request.amount and request.amount > TRANSACTION_LIMIT:
        exceeded.append(f"Transaction limit (${TRANSACTION_LIMIT})")
    if request.daily_total and request.daily_total > DAILY_LIMIT:
        exceeded.append(f"Daily limit (${DAILY_LIMIT})")
    if request.hourly_total and request.hourly_total > HOURLY_LIMIT:
        exceeded.append(f"Hourly limit (${HOURLY_LIMIT})")
    return LimitCheck(exceeded=bool(exceeded), details=exceeded)


def _text_leaves(value: Any) -> list[str]:
    # numeric scores are not scanned: a float repr can hold 13+ digits
    if isinstance(value, str):
        return [value]
    if isinstance(value, bool | float):
        return []
    if isinstance(value, int):
        return [str(value)]
    if isinstance(value, dict):
        return [leaf for item in value.values() for leaf in _text_leaves(item)]
    if isinstance(value, list | tuple | set):
        return [leaf for item in value for leaf in _text_leaves(item)]
    return []


def pii_protected(payload: Any) -> bool:
    """False when any text value in the payload holds an SSN, card number or email."""
    return not any(
        pattern.search(text) for text in _text_leaves(payload) for pattern in PII_PATTERNS
    )


def _violations(checks: ComplianceChecks) -> list[str]:
    violations = []
    if checks.otp_required and not checks.otp_provided:
        violations.append("OTP verification required")
    if checks.consent_required and not checks.consent_provided:
        violations.append("Customer consent required")
    if checks.limits_exceeded.exceeded:
        violations.append(f"Limits exceeded: {', '.join(checks.limits_exceeded.details)}")
    if not checks.pii_protected:
        violations.append("PII data must be protected")
    return violations


def _recommendations(checks: ComplianceChecks, violations: list[str]) -> list[str]:
    recommendations = []
    if checks.otp_required:
        recommendations.append("Request OTP verification from customer")
    if checks.consent_required:
        recommendations.append("Obtain explicit customer consent")
    if checks.limits_exceeded.exceeded:
        recommendations.append("Request supervisor approval for limit override")
    if not checks.pii_protected:
        recommendations.append("Redact PII before proceeding")
    if not violations:
        recommendations.append("All compliance checks passed")
    return recommendations


def check_compliance(request: ComplianceRequest | dict[str, Any]) -> ComplianceResult:
    if not isinstance(request, ComplianceRequest):
        request = ComplianceRequest.model_validate(request)

    checks = ComplianceChecks(
        otp_required=otp_required(request),
        otp_provided=request.otp_provided,
        consent_required=consent_required(request),
        consent_provided=request.consent_provided,
        limits_exceeded=check_limits(request),
        pii_protected=pii_protected(request.model_dump(exclude_defaults=True)),
    )
    violations = _violations(checks)
    approved = not violations

    return ComplianceResult(
        approved=approved,
        checks=checks,
        violations=violations,
        recommendations=_recommendations(checks, violations),
        blocked_action=None if approved else request.action,
        reason=None if approved else "; ".join(violations),
    )
