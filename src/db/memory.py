"""In-process implementation of FraudStore for local runs and tests."""

import uuid
from datetime import UTC, datetime, timedelta
from typing import Any

from src.db.store import FraudStore, sort_alerts, to_json
from src.domains.fraud.models import (
    ActionStats,
    AgentTrace,
    Alert,
    AlertCreate,
    AlertQuery,
    AlertStatus,
    Card,
    CardStatus,
    Chargeback,
    ChargebackCreate,
    Customer,
    Device,
    DisputeStatus,
    KnowledgeEntry,
    Transaction,
)
from src.shared.errors import (
    AlertNotFoundError,
    CardNotFoundError,
    CustomerNotFoundError,
    DisputeNotFoundError,
)


def _as_utc(ts: datetime) -> datetime:
    return ts.replace(tzinfo=UTC) if ts.tzinfo is None else ts


class InMemoryFraudStore(FraudStore):
    """Dict-backed store. Records are copied on the way in and out."""

    def __init__(self) -> None:
        self.customers: dict[str, Customer] = {}
        self.cards: dict[str, Card] = {}
        self.devices: dict[str, Device] = {}
        self.transactions: dict[str, Transaction] = {}
        self.chargebacks: dict[str, Chargeback] = {}
        self.alerts: dict[str, Alert] = {}
        self.traces: list[AgentTrace] = []
        self.knowledge: dict[str, KnowledgeEntry] = {}

    # -- seeding -------------------------------------------------------------

    def add_customer(self, customer: Customer) -> Customer:
        self.customers[customer.id] = customer.model_copy(deep=True)
        return customer

    def add_card(self, card: Card) -> Card:
        self.cards[card.id] = card.model_copy(deep=True)
        return card

    def add_device(self, device: Device) -> Device:
        self.devices[device.id] = device.model_copy(deep=True)
        return device

    def add_transaction(self, transaction: Transaction) -> Transaction:
        self.transactions[transaction.id] = transaction.model_copy(deep=True)
        return transaction

    def add_chargeback(self, chargeback: Chargeback) -> Chargeback:
        self.chargebacks[chargeback.id] = chargeback.model_copy(deep=True)
        return chargeback

    def add_alert(self, alert: Alert) -> Alert:
        self.alerts[alert.id] = alert.model_copy(deep=True)
        return alert

    def add_kb_entry(self, entry: KnowledgeEntry) -> KnowledgeEntry:
        self.knowledge[entry.anchor] = entry.model_copy(deep=True)
        return entry

    # -- customers -----------------------------------------------------------

    async def get_customer(self, customer_id: str) -> Customer | None:
        customer = self.customers.get(customer_id)
        return customer.model_copy(deep=True) if customer else None

    async def update_customer_flags(self, customer_id: str, flags: dict[str, Any]) -> Customer:
        customer = self.customers.get(customer_id)
        if customer is None:
            raise CustomerNotFoundError(customer_id)
        updated = customer.model_copy(
            update={"risk_flags": dict(flags), "updated_at": datetime.now(UTC)}
        )
        self.customers[customer_id] = updated
        return updated.model_copy(deep=True)

    # -- cards and devices ---------------------------------------------------

    async def get_card(self, card_id: str) -> Card | None:
        card = self.cards.get(card_id)
        return card.model_copy() if card else None

    async def list_cards(self, customer_id: str) -> list[Card]:
        return [c.model_copy() for c in self.cards.values() if c.customer_id == customer_id]

    async def update_card_status(self, card_id: str, status: CardStatus) -> Card:
        card = self.cards.get(card_id)
        if card is None:
            raise CardNotFoundError(card_id)
        updated = card.model_copy(update={"status": status, "updated_at": datetime.now(UTC)})
        self.cards[card_id] = updated
        return updated.model_copy()

    async def list_devices(self, customer_id: str) -> list[Device]:
        return [d.model_copy() for d in self.devices.values() if d.customer_id == customer_id]

    # -- transactions --------------------------------------------------------

    async def get_transaction(self, transaction_id: str) -> Transaction | None:
        tx = self.transactions.get(transaction_id)
        return tx.model_copy(deep=True) if tx else None

    async def list_transactions(
        self,
        customer_id: str,
        since: datetime | None = None,
        limit: int | None = None,
    ) -> list[Transaction]:
        rows = [
            tx
            for tx in self.transactions.values()
            if tx.customer_id == customer_id
            and (since is None or _as_utc(tx.timestamp) >= _as_utc(since))
        ]
        rows.sort(key=lambda tx: _as_utc(tx.timestamp), reverse=True)
        if limit is not None:
            rows = rows[:limit]
        return [tx.model_copy(deep=True) for tx in rows]

    # -- chargebacks ---------------------------------------------------------

    async def count_chargebacks(self, customer_id: str) -> int:
        return sum(1 for cb in self.chargebacks.values() if cb.customer_id == customer_id)

    async def create_chargeback(self, data: ChargebackCreate) -> Chargeback:
        now = datetime.now(UTC)
        chargeback = Chargeback(
            id=str(uuid.uuid4()),
            customer_id=data.customer_id,
            transaction_id=data.transaction_id,
            amount=data.amount,
            reason=data.reason,
            reason_code=data.reason_code,
            status=data.status,
            created_at=now,
            updated_at=now,
        )
        self.chargebacks[chargeback.id] = chargeback
        return chargeback.model_copy()

    async def get_chargeback(self, chargeback_id: str) -> Chargeback | None:
        cb = self.chargebacks.get(chargeback_id)
        return cb.model_copy() if cb else None

    async def list_chargebacks(
        self, customer_id: str | None = None, transaction_id: str | None = None
    ) -> list[Chargeback]:
        rows = [
            cb
            for cb in self.chargebacks.values()
            if (customer_id is None or cb.customer_id == customer_id)
            and (transaction_id is None or cb.transaction_id == transaction_id)
        ]
        rows.sort(key=lambda cb: cb.created_at or datetime.min.replace(tzinfo=UTC), reverse=True)
        return [cb.model_copy() for cb in rows]

    async def update_chargeback_status(
        self, chargeback_id: str, status: DisputeStatus
    ) -> Chargeback:
        cb = self.chargebacks.get(chargeback_id)
        if cb is None:
            raise DisputeNotFoundError(chargeback_id)
        updated = cb.model_copy(update={"status": status, "updated_at": datetime.now(UTC)})
        self.chargebacks[chargeback_id] = updated
        return updated.model_copy()

    # -- alerts --------------------------------------------------------------

    async def count_alerts(self, customer_id: str, exclude_status: AlertStatus | None = None) -> int:
        return sum(
            1
            for a in self.alerts.values()
            if a.customer_id == customer_id and (exclude_status is None or a.status != exclude_status)
        )

    async def create_alert(self, data: AlertCreate) -> Alert:
        alert = Alert(
            id=str(uuid.uuid4()),
            customer_id=data.customer_id,
            type=data.type,
            severity=data.severity,
            risk_score=data.risk_score,
            reasons=list(data.reasons),
            status=data.status,
            metadata=to_json(data.metadata),
            created_at=datetime.now(UTC),
        )
        self.alerts[alert.id] = alert
        return alert.model_copy(deep=True)

    async def get_alert(self, alert_id: str) -> Alert | None:
        alert = self.alerts.get(alert_id)
        return alert.model_copy(deep=True) if alert else None

    async def update_alert(
        self,
        alert_id: str,
        *,
        status: AlertStatus | None = None,
        resolved_at: datetime | None = None,
        triage_data: dict[str, Any] | None = None,
    ) -> Alert:
        alert = self.alerts.get(alert_id)
        if alert is None:
            raise AlertNotFoundError(alert_id)
        changes: dict[str, Any] = {}
        if status is not None:
            changes["status"] = status
        if resolved_at is not None:
            changes["resolved_at"] = resolved_at
        if triage_data is not None:
            changes["triage_data"] = to_json(triage_data)
        updated = alert.model_copy(update=changes)
        self.alerts[alert_id] = updated
        return updated.model_copy(deep=True)

    async def list_alerts(self, query: AlertQuery) -> tuple[list[Alert], int]:
        rows = [
            a
            for a in self.alerts.values()
            if (query.customer_id is None or a.customer_id == query.customer_id)
            and (query.type is None or a.type == query.type)
            and (query.severity is None or a.severity == query.severity)
            and (query.status is None or a.status == query.status)
            and (query.start_date is None or a.created_at >= _as_utc(query.start_date))
            and (query.end_date is None or a.created_at <= _as_utc(query.end_date))
        ]
        rows = sort_alerts(rows, query.oldest_first)
        page = rows[query.skip : query.skip + query.take]
        return [a.model_copy(deep=True) for a in page], len(rows)

    async def count_alerts_by_status(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for alert in self.alerts.values():
            counts[alert.status.value] = counts.get(alert.status.value, 0) + 1
        return counts

    async def action_stats(self, now: datetime) -> ActionStats:
        day_ago = _as_utc(now) - timedelta(hours=24)
        week_ago = _as_utc(now) - timedelta(days=7)
        frozen = [c for c in self.cards.values() if c.status == CardStatus.FROZEN]
        resolved = [a for a in self.alerts.values() if a.resolved_at is not None]
        recent_resolutions = [
            (a.resolved_at - a.created_at).total_seconds()
            for a in resolved
            if a.created_at >= week_ago
        ]
        avg_seconds = (
            sum(recent_resolutions) / len(recent_resolutions) if recent_resolutions else 0.0
        )
        return ActionStats.model_validate(
            {
                "disputes": {
                    "total": len(self.chargebacks),
                    "recent": sum(
                        1
                        for cb in self.chargebacks.values()
                        if cb.created_at and cb.created_at >= day_ago
                    ),
                },
                "card_actions": {
                    "frozen_today": sum(
                        1 for c in frozen if c.updated_at and _as_utc(c.updated_at) >= day_ago
                    ),
                    "total_frozen": len(frozen),
                },
                "resolutions": {
                    "today": sum(
                        1
                        for a in resolved
                        if a.status in (AlertStatus.RESOLVED, AlertStatus.FALSE_POSITIVE)
                        and a.resolved_at >= day_ago
                    ),
                    "avg_time_hours": round(avg_seconds / 3600, 1),
                },
            }
        )

    # -- traces and knowledge base -------------------------------------------

    async def create_trace(self, trace: AgentTrace) -> None:
        self.traces.append(
            trace.model_copy(
                update={
                    "input": to_json(trace.input),
                    "output": to_json(trace.output),
                    "created_at": datetime.now(UTC),
                }
            )
        )

    async def list_traces(self, session_id: str) -> list[AgentTrace]:
        return [t.model_copy() for t in self.traces if t.session_id == session_id]

    async def get_kb_entry(self, anchor: str) -> KnowledgeEntry | None:
        entry = self.knowledge.get(anchor)
        return entry.model_copy() if entry else None

    async def search_kb(self, query: str, limit: int = 3) -> list[KnowledgeEntry]:
        q = query.lower()
        matches = [
            e for e in self.knowledge.values() if q in e.content.lower() or q in e.title.lower()
        ]
        return [e.model_copy() for e in matches[:limit]]

    async def list_kb_entries(self, anchors: list[str]) -> list[KnowledgeEntry]:
        return [self.knowledge[a].model_copy() for a in anchors if a in self.knowledge]
