"""Store-backed pipeline steps: profile, transactions, fraud, compliance,
redactor, decide and action.

Each step is a plain coroutine ``(context, payload) -> data``. Steps that need
the store take it as a leading argument and are bound in the registry.
"""

from datetime import UTC, datetime
from typing import Any

import structlog

from src.db.store import FraudStore, to_json
from src.domains.fraud.config import FraudConfig, default_config
from src.domains.fraud.models import Decision, RiskSignals
from src.domains.fraud.risk_scorer import make_decision
from src.domains.fraud.signals import load_risk_signals
from src.shared.errors import CustomerNotFoundError

from .compliance import CONSENT_ACTIONS, OTP_ACTIONS, ComplianceRequest, check_compliance
from .redactor import redact
from .step import StepContext, StepResult, prior_data, prior_risk_score

logger = structlog.get_logger()

DEFAULT_TRANSACTION_LIMIT = 20

# decision -> proposed analyst action
PROPOSED_ACTIONS = {
    Decision.BLOCK: "FREEZE_CARD",
    Decision.REVIEW: "CONTACT_CUSTOMER",
}


def is_results_map(payload: Any) -> bool:
    return isinstance(payload, dict) and all(isinstance(v, StepResult) for v in payload.values())


def _require_customer(context: StepContext) -> str:
    if not context.customer_id:
        raise ValueError("Customer ID required")
    return context.customer_id


async def profile_step(store: FraudStore, context: StepContext, payload: Any) -> dict[str, Any]:
    customer_id = _require_customer(context)
    customer = await store.get_customer(customer_id)
    if customer is None:
        raise CustomerNotFoundError(customer_id)
    cards = await store.list_cards(customer_id)
    return {
        "customer": customer.model_dump(mode="json"),
        "cards": [card.model_dump(mode="json") for card in cards],
    }


async def transactions_step(store: FraudStore, context: StepContext, payload: Any) -> dict[str, Any]:
    customer_id = _require_customer(context)
    limit = DEFAULT_TRANSACTION_LIMIT
    if isinstance(payload, dict) and isinstance(payload.get("limit"), int):
        limit = payload["limit"]
    transactions = await store.list_transactions(customer_id, limit=limit)
    return {
        "count": len(transactions),
        "transactions": [tx.model_dump(mode="json") for tx in transactions],
    }


def fraud_reasons(signals: RiskSignals) -> list[str]:
    breakdown = signals.signals
    reasons = []
    if breakdown.velocity.score > 0.5:
        reasons.append("High transaction velocity detected")
    if breakdown.devices.score > 0.3:
        reasons.append("Transaction from untrusted device")
    if breakdown.transaction and breakdown.transaction.amount_score > 0.3:
        reasons.append("Unusually high transaction amount")
    if breakdown.transaction and breakdown.transaction.merchant_score > 0.3:
        reasons.append("High-risk merchant category")
    if signals.overall_risk > 0.7:
        reasons.append("Overall risk score exceeds threshold")
    return reasons


async def fraud_step(
    store: FraudStore,
    context: StepContext,
    payload: Any,
    config: FraudConfig = default_config,
) -> dict[str, Any]:
    customer_id = _require_customer(context)
    signals = await load_risk_signals(
        store, customer_id, context.transaction_id, datetime.now(UTC), config
    )
    decision = make_decision(signals.overall_risk, config)
    return {
        "score": signals.overall_risk,
        "decision": decision.value,
        "reasons": fraud_reasons(signals),
        "signals": signals.signals.model_dump(mode="json"),
        "action": PROPOSED_ACTIONS.get(decision),
    }


async def compliance_step(context: StepContext, payload: Any) -> dict[str, Any]:
    if is_results_map(payload) or payload is None:
        # no explicit request: judge the action carried in the context
        request = ComplianceRequest.model_validate(context.metadata)
        if request.risk_score is None:
            request.risk_score = prior_risk_score(payload)
    else:
        request = ComplianceRequest.model_validate(payload)
    return check_compliance(request).model_dump()


async def redactor_step(context: StepContext, payload: Any) -> dict[str, Any]:
    return redact(to_json(payload)).model_dump()


async def decide_step(
    context: StepContext, payload: Any, config: FraudConfig = default_config
) -> dict[str, Any]:
    fraud = prior_data(payload, "fraud") or {}
    compliance = prior_data(payload, "compliance") or {}

    risk_score = fraud.get("score", context.metadata.get("risk_score"))
    if fraud.get("decision"):
        decision = Decision(fraud["decision"])
    elif risk_score is not None:
        decision = make_decision(float(risk_score), config)
    else:
        decision = Decision.APPROVE

    compliance_approved = compliance.get("approved", True)
    return {
        "decision": decision.value,
        "risk_score": risk_score,
        "compliance_approved": compliance_approved,
        "requires_review": decision in (Decision.REVIEW, Decision.BLOCK) or not compliance_approved,
        "reasons": list(fraud.get("reasons", [])) + list(compliance.get("violations", [])),
    }


async def action_step(context: StepContext, payload: Any) -> dict[str, Any]:
    decided = prior_data(payload, "decide") or {}
    decision = Decision(decided.get("decision", Decision.APPROVE))
    action = PROPOSED_ACTIONS.get(decision)
    logger.info(
        "action_proposed",
        session_id=context.session_id,
        decision=decision.value,
        action=action,
    )
    return {
        "action": action,
        "decision": decision.value,
        "card_id": context.metadata.get("card_id"),
        "requires_otp": action in OTP_ACTIONS,
        "requires_consent": action in CONSENT_ACTIONS,
    }
