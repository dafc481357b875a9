"""Store-backed gathering of risk-scorer inputs."""

from datetime import UTC, datetime, timedelta

from src.db.store import FraudStore
from src.shared.errors import CustomerNotFoundError

from .config import FraudConfig, default_config
from .models import AlertStatus, RiskSignals
from .risk_scorer import RiskInputs, compute_risk_signals


async def gather_risk_inputs(
    store: FraudStore,
    customer_id: str,
    now: datetime,
    transaction_id: str | None = None,
    config: FraudConfig = default_config,
) -> RiskInputs:
    """Read everything the scorer needs for one customer.

    Raises CustomerNotFoundError for an unknown customer. An unknown focus
    transaction is ignored rather than failing the read.
    """
    customer = await store.get_customer(customer_id)
    if customer is None:
        raise CustomerNotFoundError(customer_id)

    since = now - timedelta(days=config.velocity.window_days)
    transactions = await store.list_transactions(customer_id, since=since)
    devices = await store.list_devices(customer_id)
    chargebacks = await store.count_chargebacks(customer_id)
    alerts = await store.count_alerts(customer_id, exclude_status=AlertStatus.FALSE_POSITIVE)

    focus = await store.get_transaction(transaction_id) if transaction_id else None
    if focus is not None and focus.customer_id != customer_id:
        focus = None

    return RiskInputs(
        transactions=transactions,
        devices=devices,
        chargeback_count=chargebacks,
        alert_count=alerts,
        risk_flags=customer.risk_flags,
        focus_transaction=focus,
    )


async def load_risk_signals(
    store: FraudStore,
    customer_id: str,
    transaction_id: str | None = None,
    now: datetime | None = None,
    config: FraudConfig = default_config,
) -> RiskSignals:
    now = now or datetime.now(UTC)
    inputs = await gather_risk_inputs(store, customer_id, now, transaction_id, config)
    return compute_risk_signals(inputs, now, config)
