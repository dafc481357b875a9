"""Template summaries: one customer-facing message plus internal analyst notes."""

from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from .step import StepContext

Template = Callable[[dict[str, Any]], str]

TEMPLATES: dict[str, Template] = {
    "fraud_alert": lambda d: (
        f"We detected unusual activity on your account. Risk level: {d.get('risk_level') or 'Medium'}. "
        f"Action taken: {d.get('action') or 'Under review'}. Please contact us if you have questions."
    ),
    "transaction_review": lambda d: (
        f"Transaction of {d.get('amount') or 'N/A'} at {d.get('merchant') or 'merchant'} is being reviewed. "
        "We'll notify you once the review is complete."
    ),
    "card_frozen": lambda d: (
        f"Your card ending in {d.get('last4') or 'XXXX'} has been temporarily frozen for security. "
        "Please contact support to unfreeze."
    ),
    "dispute_created": lambda d: (
        f"Dispute #{d.get('dispute_id') or 'XXXXX'} has been created for "
        f"{d.get('amount') or 'the transaction'}. "
        "We'll investigate and update you within 2 business days."
    ),
    "compliance_block": lambda d: (
        "This action requires additional verification. "
        f"{d.get('reason') or 'Please complete verification steps.'}"
    ),
    "default": lambda d: f"Your request has been processed. Reference: {d.get('session_id') or 'N/A'}",
}


def customer_summary(kind: str, data: dict[str, Any]) -> str:
    template = TEMPLATES.get(kind, TEMPLATES["default"])
    return template(data)


def internal_notes(kind: str, data: dict[str, Any], now: datetime) -> str:
    notes = [f"Type: {kind}", f"Timestamp: {now.isoformat()}"]

    if data.get("risk_score") is not None:
        notes.append(f"Risk Score: {data['risk_score']}")
    if data.get("decision"):
        notes.append(f"Decision: {data['decision']}")
    if isinstance(data.get("reasons"), list):
        notes.append(f"Reasons: {', '.join(map(str, data['reasons']))}")
    if data.get("action"):
        notes.append(f"Action: {data['action']}")
    if data.get("customer_id"):
        notes.append(f"Customer: {data['customer_id']}")
    if isinstance(data.get("agent_results"), dict):
        notes.append(f"Agents involved: {', '.join(data['agent_results'])}")
    if data.get("violations"):
        notes.append(f"Compliance violations: {', '.join(data['violations'])}")

    return "\n".join(notes)


def summarize(
    kind: str, data: dict[str, Any], session_id: str, now: datetime | None = None
) -> dict[str, Any]:
    now = now or datetime.now(UTC)
    return {
        "customer_summary": customer_summary(kind, data),
        "internal_notes": internal_notes(kind, data, now),
        "metadata": {"type": kind, "timestamp": now.isoformat(), "session_id": session_id},
    }


async def summarizer_step(context: StepContext, payload: Any) -> dict[str, Any]:
    params = payload if isinstance(payload, dict) else {}
    kind = str(params.get("type") or "default")
    data = params.get("data")
    if not isinstance(data, dict):
        data = {"session_id": context.session_id, "customer_id": context.customer_id}
    return summarize(kind, data, context.session_id)
