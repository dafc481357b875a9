"""Alert lifecycle: creation, analyst-driven status transitions and listings.

Status graph (same-status updates are allowed and keep ``resolved_at``)::

    PENDING   -> IN_REVIEW | ESCALATED | RESOLVED | FALSE_POSITIVE
    IN_REVIEW -> ESCALATED | RESOLVED | FALSE_POSITIVE
    ESCALATED -> IN_REVIEW | RESOLVED | FALSE_POSITIVE

RESOLVED and FALSE_POSITIVE are terminal, which keeps ``resolved_at`` set
exactly when the status is one of them.
"""

from datetime import UTC, datetime
from typing import Any

import structlog
from pydantic import BaseModel

from src.db.store import FraudStore
from src.shared.errors import AlertNotFoundError, InvalidTransitionError
from src.shared.metrics import MetricsRecorder

from .config import FraudConfig, default_config
from .models import (
    ActionStats,
    Alert,
    AlertCreate,
    AlertQuery,
    AlertStatus,
    AlertType,
    TriageResult,
)
from .risk_scorer import severity_for

logger = structlog.get_logger()

RESOLVED_STATUSES = frozenset({AlertStatus.RESOLVED, AlertStatus.FALSE_POSITIVE})

ALLOWED_TRANSITIONS: dict[AlertStatus, frozenset[AlertStatus]] = {
    AlertStatus.PENDING: frozenset(
        {
            AlertStatus.IN_REVIEW,
            AlertStatus.ESCALATED,
            AlertStatus.RESOLVED,
            AlertStatus.FALSE_POSITIVE,
        }
    ),
    AlertStatus.IN_REVIEW: frozenset(
        {AlertStatus.ESCALATED, AlertStatus.RESOLVED, AlertStatus.FALSE_POSITIVE}
    ),
    AlertStatus.ESCALATED: frozenset(
        {AlertStatus.IN_REVIEW, AlertStatus.RESOLVED, AlertStatus.FALSE_POSITIVE}
    ),
    AlertStatus.RESOLVED: frozenset(),
    AlertStatus.FALSE_POSITIVE: frozenset(),
}

QUEUE_SIZE = 100


class Pagination(BaseModel):
    total: int
    skip: int
    take: int


class AlertPage(BaseModel):
    alerts: list[Alert]
    pagination: Pagination
    action_stats: ActionStats


class FraudQueue(BaseModel):
    queue: list[Alert]
    stats: dict[str, int]


def can_transition(current: AlertStatus, requested: AlertStatus) -> bool:
    return current == requested or requested in ALLOWED_TRANSITIONS[current]


class AlertLifecycle:
    def __init__(
        self,
        store: FraudStore,
        metrics: MetricsRecorder | None = None,
        config: FraudConfig = default_config,
    ) -> None:
        self.store = store
        self.metrics = metrics
        self.config = config

    def _count(self, name: str, labels: dict[str, str] | None = None) -> None:
        if self.metrics is not None:
            self.metrics.record_counter(name, labels=labels)

    async def create_from_triage(self, result: TriageResult) -> Alert | None:
        """Open a FRAUD alert when the triage score clears the alert threshold."""
        if result.risk_score <= self.config.decisions.alert_min_risk:
            return None

        metadata: dict[str, Any] = result.model_dump(mode="json")
        if result.transaction_id:
            transaction = await self.store.get_transaction(result.transaction_id)
            if transaction is not None:
                metadata["card_id"] = transaction.card_id
                metadata["amount"] = float(transaction.amount)

        return await self.create_alert(
            AlertCreate(
                customer_id=result.customer_id,
                type=AlertType.FRAUD,
                severity=severity_for(result.risk_score, self.config),
                risk_score=result.risk_score,
                reasons=result.recommendations,
                status=AlertStatus.PENDING,
                metadata=metadata,
            )
        )

    async def create_alert(self, data: AlertCreate) -> Alert:
        alert = await self.store.create_alert(data)
        self._count("fraud.alerts.created", {"severity": alert.severity.value})
        logger.warning(
            "fraud_alert_created",
            alert_id=alert.id,
            customer_id=alert.customer_id,
            severity=alert.severity.value,
            risk_score=alert.risk_score,
        )
        return alert

    async def get_alert(self, alert_id: str) -> Alert:
        alert = await self.store.get_alert(alert_id)
        if alert is None:
            raise AlertNotFoundError(alert_id)
        return alert

    async def update_alert(
        self,
        alert_id: str,
        status: AlertStatus,
        triage_data: dict[str, Any] | None = None,
    ) -> Alert:
        """Move an alert to ``status``, stamping ``resolved_at`` on resolution.

        Raises AlertNotFoundError for an unknown id and InvalidTransitionError
        when leaving a terminal status or otherwise breaking the status graph.
        """
        current = await self.get_alert(alert_id)
        if not can_transition(current.status, status):
            raise InvalidTransitionError("alert", current.status.value, status.value)

        resolved_at = None
        if status in RESOLVED_STATUSES and current.resolved_at is None:
            resolved_at = datetime.now(UTC)

        alert = await self.store.update_alert(
            alert_id, status=status, resolved_at=resolved_at, triage_data=triage_data
        )
        self._count("fraud.alerts.updated", {"status": status.value})
        logger.info(
            "fraud_alert_updated",
            alert_id=alert_id,
            previous_status=current.status.value,
            status=status.value,
        )
        return alert

    async def attach_triage(self, alert_id: str, triage_data: dict[str, Any]) -> Alert:
        """Store a re-triage result on an existing alert without touching its status."""
        await self.get_alert(alert_id)
        return await self.store.update_alert(alert_id, triage_data=triage_data)

    async def list_alerts(self, query: AlertQuery) -> AlertPage:
        alerts, total = await self.store.list_alerts(query)
        stats = await self.store.action_stats(datetime.now(UTC))
        return AlertPage(
            alerts=alerts,
            pagination=Pagination(total=total, skip=query.skip, take=query.take),
            action_stats=stats,
        )

    async def get_fraud_queue(self, status: AlertStatus | None = None) -> FraudQueue:
        """Work queue: most severe first, oldest first within a severity."""
        alerts, _ = await self.store.list_alerts(
            AlertQuery(status=status, take=QUEUE_SIZE, oldest_first=True)
        )
        return FraudQueue(queue=alerts, stats=await self.store.count_alerts_by_status())
