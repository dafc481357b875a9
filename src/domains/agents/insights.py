"""Spend insights over a customer's most recent transactions."""

from collections import defaultdict
from typing import Any

from src.db.store import FraudStore
from src.domains.fraud.models import Transaction

from .step import StepContext

INSIGHTS_WINDOW = 100
TOP_MERCHANTS = 5

MCC_CATEGORIES = {
    "5411": "Grocery",
    "5541": "Gas",
    "5812": "Restaurant",
    "6011": "ATM",
    "7995": "Gambling",
}


def mcc_category(mcc: str) -> str:
    return MCC_CATEGORIES.get(mcc, "Other")


def total_spend(transactions: list[Transaction]) -> float:
    return float(sum(abs(tx.amount) for tx in transactions))


def spend_by_category(transactions: list[Transaction]) -> dict[str, float]:
    categories: dict[str, float] = defaultdict(float)
    for tx in transactions:
        categories[mcc_category(tx.mcc)] += float(abs(tx.amount))
    return dict(categories)


def top_merchants(transactions: list[Transaction], limit: int = TOP_MERCHANTS) -> list[dict[str, Any]]:
    merchants: dict[str, float] = defaultdict(float)
    for tx in transactions:
        merchants[tx.merchant] += float(abs(tx.amount))
    ranked = sorted(merchants.items(), key=lambda item: item[1], reverse=True)[:limit]
    return [{"merchant": merchant, "amount": amount} for merchant, amount in ranked]


def spend_summary(transactions: list[Transaction]) -> str:
    count = len(transactions)
    total = total_spend(transactions)
    average = total / count if count else 0.0
    return f"{count} transactions, ${total:.2f} total, ${average:.2f} average"


def build_insights(transactions: list[Transaction]) -> dict[str, Any]:
    return {
        "total_spend": total_spend(transactions),
        "categories": spend_by_category(transactions),
        "merchants": top_merchants(transactions),
        "summary": spend_summary(transactions),
    }


async def insights_step(store: FraudStore, context: StepContext, payload: Any) -> dict[str, Any]:
    if not context.customer_id:
        raise ValueError("Customer ID required for insights")
    transactions = await store.list_transactions(context.customer_id, limit=INSIGHTS_WINDOW)
    return build_insights(transactions)
