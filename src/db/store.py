"""Data-store collaborator consumed by the fraud-ops core.

``FraudStore`` is the query/aggregate surface the scoring, triage and action
services depend on. ``SQLFraudStore`` backs it with PostgreSQL through the
async session factory; every operation runs in its own short session, so
writes are independent single-row statements.
"""

import uuid
from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

import structlog
from pydantic_core import to_jsonable_python
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.models import (
    AgentTraceDB,
    AlertDB,
    CardDB,
    ChargebackDB,
    CustomerDB,
    DeviceDB,
    KnowledgeBaseDB,
    TransactionDB,
)
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

logger = structlog.get_logger()

# severity ordering for alert listings (most severe first)
SEVERITY_RANK = {"CRITICAL": 4, "HIGH": 3, "MEDIUM": 2, "LOW": 1}


def to_json(value: Any) -> Any:
    """Coerce arbitrary step input/output into JSON-compatible data."""
    return to_jsonable_python(value, fallback=str)


def sort_alerts(alerts: list[Alert], oldest_first: bool = False) -> list[Alert]:
    """Most severe first; within a severity newest first unless ``oldest_first``."""
    ordered = sorted(alerts, key=lambda a: a.created_at, reverse=not oldest_first)
    return sorted(ordered, key=lambda a: SEVERITY_RANK.get(a.severity.value, 0), reverse=True)


class FraudStore(ABC):
    """Abstract interface for the relational fraud-ops data."""

    # -- customers -----------------------------------------------------------

    @abstractmethod
    async def get_customer(self, customer_id: str) -> Customer | None: ...

    @abstractmethod
    async def update_customer_flags(self, customer_id: str, flags: dict[str, Any]) -> Customer:
        """Replace a customer's risk flags. Raises CustomerNotFoundError."""

    # -- cards and devices ---------------------------------------------------

    @abstractmethod
    async def get_card(self, card_id: str) -> Card | None: ...

    @abstractmethod
    async def list_cards(self, customer_id: str) -> list[Card]: ...

    @abstractmethod
    async def update_card_status(self, card_id: str, status: CardStatus) -> Card:
        """Set a card's status. Raises CardNotFoundError."""

    @abstractmethod
    async def list_devices(self, customer_id: str) -> list[Device]: ...

    # -- transactions --------------------------------------------------------

    @abstractmethod
    async def get_transaction(self, transaction_id: str) -> Transaction | None: ...

    @abstractmethod
    async def list_transactions(
        self,
        customer_id: str,
        since: datetime | None = None,
        limit: int | None = None,
    ) -> list[Transaction]:
        """Transactions for a customer, newest first."""

    # -- chargebacks ---------------------------------------------------------

    @abstractmethod
    async def count_chargebacks(self, customer_id: str) -> int: ...

    @abstractmethod
    async def create_chargeback(self, data: ChargebackCreate) -> Chargeback: ...

    @abstractmethod
    async def get_chargeback(self, chargeback_id: str) -> Chargeback | None: ...

    @abstractmethod
    async def list_chargebacks(
        self, customer_id: str | None = None, transaction_id: str | None = None
    ) -> list[Chargeback]: ...

    @abstractmethod
    async def update_chargeback_status(
        self, chargeback_id: str, status: DisputeStatus
    ) -> Chargeback:
        """Set a chargeback's status. Raises DisputeNotFoundError."""

    # -- alerts --------------------------------------------------------------

    @abstractmethod
    async def count_alerts(self, customer_id: str, exclude_status: AlertStatus | None = None) -> int:
        ...

    @abstractmethod
    async def create_alert(self, data: AlertCreate) -> Alert: ...

    @abstractmethod
    async def get_alert(self, alert_id: str) -> Alert | None: ...

    @abstractmethod
    async def update_alert(
        self,
        alert_id: str,
        *,
        status: AlertStatus | None = None,
        resolved_at: datetime | None = None,
        triage_data: dict[str, Any] | None = None,
    ) -> Alert:
        """Update the given fields (None leaves a field unchanged). Raises AlertNotFoundError."""

    @abstractmethod
    async def list_alerts(self, query: AlertQuery) -> tuple[list[Alert], int]:
        """Filtered page of alerts ordered by severity then recency, plus total count."""

    @abstractmethod
    async def count_alerts_by_status(self) -> dict[str, int]: ...

    @abstractmethod
    async def action_stats(self, now: datetime) -> ActionStats:
        """Dispute, card-freeze and resolution counters relative to ``now``."""

    # -- traces and knowledge base -------------------------------------------

    @abstractmethod
    async def create_trace(self, trace: AgentTrace) -> None: ...

    @abstractmethod
    async def list_traces(self, session_id: str) -> list[AgentTrace]: ...

    @abstractmethod
    async def get_kb_entry(self, anchor: str) -> KnowledgeEntry | None: ...

    @abstractmethod
    async def search_kb(self, query: str, limit: int = 3) -> list[KnowledgeEntry]: ...

    @abstractmethod
    async def list_kb_entries(self, anchors: list[str]) -> list[KnowledgeEntry]: ...


def _alert_from_row(row: AlertDB) -> Alert:
    return Alert(
        id=row.id,
        customer_id=row.customer_id,
        type=row.type,
        severity=row.severity,
        risk_score=row.risk_score,
        reasons=list(row.reasons or []),
        status=row.status,
        metadata=dict(row.metadata_ or {}),
        triage_data=row.triage_data,
        created_at=row.created_at,
        resolved_at=row.resolved_at,
    )


class SQLFraudStore(FraudStore):
    """PostgreSQL-backed store; one session per operation."""

    def __init__(self, session_factory: Callable[[], AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_customer(self, customer_id: str) -> Customer | None:
        async with self._session_factory() as session:
            row = await session.get(CustomerDB, customer_id)
            return Customer.model_validate(row) if row else None

    async def update_customer_flags(self, customer_id: str, flags: dict[str, Any]) -> Customer:
        async with self._session_factory() as session:
            row = await session.get(CustomerDB, customer_id)
            if row is None:
                raise CustomerNotFoundError(customer_id)
            row.risk_flags = flags
            await session.commit()
            await session.refresh(row)
            return Customer.model_validate(row)

    async def get_card(self, card_id: str) -> Card | None:
        async with self._session_factory() as session:
            row = await session.get(CardDB, card_id)
            return Card.model_validate(row) if row else None

    async def list_cards(self, customer_id: str) -> list[Card]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(CardDB).where(CardDB.customer_id == customer_id)
            )
            return [Card.model_validate(r) for r in result.scalars().all()]

    async def update_card_status(self, card_id: str, status: CardStatus) -> Card:
        async with self._session_factory() as session:
            row = await session.get(CardDB, card_id)
            if row is None:
                raise CardNotFoundError(card_id)
            row.status = status.value
            await session.commit()
            await session.refresh(row)
            return Card.model_validate(row)

    async def list_devices(self, customer_id: str) -> list[Device]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(DeviceDB).where(DeviceDB.customer_id == customer_id)
            )
            return [Device.model_validate(r) for r in result.scalars().all()]

    async def get_transaction(self, transaction_id: str) -> Transaction | None:
        async with self._session_factory() as session:
            row = await session.get(TransactionDB, transaction_id)
            return Transaction.model_validate(row) if row else None

    async def list_transactions(
        self,
        customer_id: str,
        since: datetime | None = None,
        limit: int | None = None,
    ) -> list[Transaction]:
        stmt = select(TransactionDB).where(TransactionDB.customer_id == customer_id)
        if since is not None:
            stmt = stmt.where(TransactionDB.timestamp >= since)
        stmt = stmt.order_by(TransactionDB.timestamp.desc())
        if limit is not None:
            stmt = stmt.limit(limit)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [Transaction.model_validate(r) for r in result.scalars().all()]

    async def count_chargebacks(self, customer_id: str) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                select(func.count())
                .select_from(ChargebackDB)
                .where(ChargebackDB.customer_id == customer_id)
            )
            return result.scalar_one()

    async def create_chargeback(self, data: ChargebackCreate) -> Chargeback:
        async with self._session_factory() as session:
            row = ChargebackDB(
                id=str(uuid.uuid4()),
                customer_id=data.customer_id,
                transaction_id=data.transaction_id,
                amount=data.amount,
                reason=data.reason,
                reason_code=data.reason_code,
                status=data.status.value,
            )
            session.add(row)
            await session.commit()
            await session.refresh(row)
            return Chargeback.model_validate(row)

    async def get_chargeback(self, chargeback_id: str) -> Chargeback | None:
        async with self._session_factory() as session:
            row = await session.get(ChargebackDB, chargeback_id)
            return Chargeback.model_validate(row) if row else None

    async def list_chargebacks(
        self, customer_id: str | None = None, transaction_id: str | None = None
    ) -> list[Chargeback]:
        stmt = select(ChargebackDB)
        if customer_id:
            stmt = stmt.where(ChargebackDB.customer_id == customer_id)
        if transaction_id:
            stmt = stmt.where(ChargebackDB.transaction_id == transaction_id)
        stmt = stmt.order_by(ChargebackDB.created_at.desc())
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [Chargeback.model_validate(r) for r in result.scalars().all()]

    async def update_chargeback_status(
        self, chargeback_id: str, status: DisputeStatus
    ) -> Chargeback:
        async with self._session_factory() as session:
            row = await session.get(ChargebackDB, chargeback_id)
            if row is None:
                raise DisputeNotFoundError(chargeback_id)
            row.status = status.value
            await session.commit()
            await session.refresh(row)
            return Chargeback.model_validate(row)

    async def count_alerts(self, customer_id: str, exclude_status: AlertStatus | None = None) -> int:
        stmt = select(func.count()).select_from(AlertDB).where(AlertDB.customer_id == customer_id)
        if exclude_status is not None:
            stmt = stmt.where(AlertDB.status != exclude_status.value)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return result.scalar_one()

    async def create_alert(self, data: AlertCreate) -> Alert:
        async with self._session_factory() as session:
            row = AlertDB(
                id=str(uuid.uuid4()),
                customer_id=data.customer_id,
                type=data.type.value,
                severity=data.severity.value,
                risk_score=data.risk_score,
                reasons=list(data.reasons),
                status=data.status.value,
                metadata_=to_json(data.metadata),
                created_at=datetime.now(UTC),
            )
            session.add(row)
            await session.commit()
            return _alert_from_row(row)

    async def get_alert(self, alert_id: str) -> Alert | None:
        async with self._session_factory() as session:
            row = await session.get(AlertDB, alert_id)
            return _alert_from_row(row) if row else None

    async def update_alert(
        self,
        alert_id: str,
        *,
        status: AlertStatus | None = None,
        resolved_at: datetime | None = None,
        triage_data: dict[str, Any] | None = None,
    ) -> Alert:
        async with self._session_factory() as session:
            row = await session.get(AlertDB, alert_id)
            if row is None:
                raise AlertNotFoundError(alert_id)
            if status is not None:
                row.status = status.value
            if resolved_at is not None:
                row.resolved_at = resolved_at
            if triage_data is not None:
                row.triage_data = to_json(triage_data)
            await session.commit()
            return _alert_from_row(row)

    async def list_alerts(self, query: AlertQuery) -> tuple[list[Alert], int]:
        stmt = select(AlertDB)
        count_stmt = select(func.count()).select_from(AlertDB)

        conditions = []
        if query.customer_id:
            conditions.append(AlertDB.customer_id == query.customer_id)
        if query.type:
            conditions.append(AlertDB.type == query.type.value)
        if query.severity:
            conditions.append(AlertDB.severity == query.severity.value)
        if query.status:
            conditions.append(AlertDB.status == query.status.value)
        if query.start_date:
            conditions.append(AlertDB.created_at >= query.start_date)
        if query.end_date:
            conditions.append(AlertDB.created_at <= query.end_date)
        for condition in conditions:
            stmt = stmt.where(condition)
            count_stmt = count_stmt.where(condition)

        async with self._session_factory() as session:
            total = (await session.execute(count_stmt)).scalar_one()
            rows = (await session.execute(stmt)).scalars().all()

        alerts = sort_alerts([_alert_from_row(r) for r in rows], query.oldest_first)
        return alerts[query.skip : query.skip + query.take], total

    async def count_alerts_by_status(self) -> dict[str, int]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(AlertDB.status, func.count()).group_by(AlertDB.status)
            )
            return {status: count for status, count in result.all()}

    async def action_stats(self, now: datetime) -> ActionStats:
        day_ago = now - timedelta(hours=24)
        week_ago = now - timedelta(days=7)
        resolved = (AlertStatus.RESOLVED.value, AlertStatus.FALSE_POSITIVE.value)

        async with self._session_factory() as session:
            total_disputes = (
                await session.execute(select(func.count()).select_from(ChargebackDB))
            ).scalar_one()
            recent_disputes = (
                await session.execute(
                    select(func.count())
                    .select_from(ChargebackDB)
                    .where(ChargebackDB.created_at >= day_ago)
                )
            ).scalar_one()
            frozen_today = (
                await session.execute(
                    select(func.count())
                    .select_from(CardDB)
                    .where(CardDB.status == CardStatus.FROZEN.value, CardDB.updated_at >= day_ago)
                )
            ).scalar_one()
            total_frozen = (
                await session.execute(
                    select(func.count())
                    .select_from(CardDB)
                    .where(CardDB.status == CardStatus.FROZEN.value)
                )
            ).scalar_one()
            resolved_today = (
                await session.execute(
                    select(func.count())
                    .select_from(AlertDB)
                    .where(AlertDB.status.in_(resolved), AlertDB.resolved_at >= day_ago)
                )
            ).scalar_one()
            avg_seconds = (
                await session.execute(
                    select(
                        func.avg(func.extract("epoch", AlertDB.resolved_at - AlertDB.created_at))
                    ).where(AlertDB.resolved_at.is_not(None), AlertDB.created_at >= week_ago)
                )
            ).scalar_one()

        return ActionStats.model_validate(
            {
                "disputes": {"total": total_disputes, "recent": recent_disputes},
                "card_actions": {"frozen_today": frozen_today, "total_frozen": total_frozen},
                "resolutions": {
                    "today": resolved_today,
                    "avg_time_hours": round(float(avg_seconds or 0) / 3600, 1),
                },
            }
        )

    async def create_trace(self, trace: AgentTrace) -> None:
        async with self._session_factory() as session:
            session.add(
                AgentTraceDB(
                    id=str(uuid.uuid4()),
                    session_id=trace.session_id,
                    agent_name=trace.agent_name,
                    action=trace.action,
                    input=to_json(trace.input),
                    output=to_json(trace.output),
                    error=trace.error,
                    duration=trace.duration,
                )
            )
            await session.commit()

    async def list_traces(self, session_id: str) -> list[AgentTrace]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(AgentTraceDB)
                .where(AgentTraceDB.session_id == session_id)
                .order_by(AgentTraceDB.created_at)
            )
            return [AgentTrace.model_validate(r) for r in result.scalars().all()]

    async def get_kb_entry(self, anchor: str) -> KnowledgeEntry | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(KnowledgeBaseDB).where(KnowledgeBaseDB.anchor == anchor)
            )
            row = result.scalar_one_or_none()
            return KnowledgeEntry.model_validate(row) if row else None

    async def search_kb(self, query: str, limit: int = 3) -> list[KnowledgeEntry]:
        pattern = f"%{query}%"
        async with self._session_factory() as session:
            result = await session.execute(
                select(KnowledgeBaseDB)
                .where(
                    or_(
                        KnowledgeBaseDB.content.ilike(pattern),
                        KnowledgeBaseDB.title.ilike(pattern),
                    )
                )
                .limit(limit)
            )
            return [KnowledgeEntry.model_validate(r) for r in result.scalars().all()]

    async def list_kb_entries(self, anchors: list[str]) -> list[KnowledgeEntry]:
        if not anchors:
            return []
        async with self._session_factory() as session:
            result = await session.execute(
                select(KnowledgeBaseDB).where(KnowledgeBaseDB.anchor.in_(anchors))
            )
            return [KnowledgeEntry.model_validate(r) for r in result.scalars().all()]
