"""Analyst actions: card freeze/unfreeze behind OTP, disputes, customer contact
and risk-level updates.

Card sub-state machine::

    ACTIVE --freeze, OTP required and absent--> PENDING_OTP (no write)
    ACTIVE --freeze, OTP valid or not required--> FROZEN
    FROZEN --unfreeze, OTP always required--> ACTIVE

A malformed or wrong OTP raises InvalidOTPError and leaves the card untouched.
"""

import hmac
import re
from datetime import UTC, datetime
from typing import Any

import structlog
from pydantic import BaseModel, Field

from src.db.store import FraudStore
from src.shared.errors import (
    CardNotFoundError,
    CustomerNotFoundError,
    DisputeNotFoundError,
    InvalidOTPError,
    InvalidTransitionError,
    TransactionNotFoundError,
    ValidationFailure,
)
from src.shared.metrics import MetricsRecorder

from .models import Card, CardStatus, Chargeback, ChargebackCreate, Customer, DisputeStatus, RiskLevel

logger = structlog.get_logger()

PENDING_OTP = "PENDING_OTP"
OTP_PATTERN = re.compile(r"\d{6}")
DEFAULT_DISPUTE_REASON = "Fraudulent transaction"
CONTACT_METHODS = frozenset({"EMAIL", "SMS", "PHONE"})

DISPUTE_TRANSITIONS: dict[DisputeStatus, frozenset[DisputeStatus]] = {
    DisputeStatus.OPEN: frozenset({DisputeStatus.INVESTIGATING}),
    DisputeStatus.INVESTIGATING: frozenset({DisputeStatus.RESOLVED, DisputeStatus.REJECTED}),
    DisputeStatus.RESOLVED: frozenset(),
    DisputeStatus.REJECTED: frozenset(),
}


class CardActionResult(BaseModel):
    success: bool
    status: str
    action: str | None = None
    card_id: str
    card: Card | None = None
    message: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))


class ContactResult(BaseModel):
    success: bool = True
    action: str = "CUSTOMER_CONTACT_INITIATED"
    customer_id: str
    method: str
    message: str | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))


class FraudActions:
    def __init__(
        self,
        store: FraudStore,
        metrics: MetricsRecorder | None = None,
        otp_code: str = "123456",
        freeze_requires_otp: bool = True,
    ) -> None:
        self.store = store
        self.metrics = metrics
        self._otp_code = otp_code
        self.freeze_requires_otp = freeze_requires_otp

    def _count(self, name: str) -> None:
        if self.metrics is not None:
            self.metrics.record_counter(name)

    def verify_otp(self, otp: str) -> None:
        if not OTP_PATTERN.fullmatch(otp):
            raise InvalidOTPError("OTP must be 6 digits")
        if not hmac.compare_digest(otp, self._otp_code):
            self._count("fraud.otp.rejected")
            raise InvalidOTPError("Invalid OTP")

    async def _get_card(self, card_id: str) -> Card:
        card = await self.store.get_card(card_id)
        if card is None:
            raise CardNotFoundError(card_id)
        return card

    # -- cards ---------------------------------------------------------------

    async def freeze_card(
        self, card_id: str, otp: str | None = None, require_otp: bool | None = None
    ) -> CardActionResult:
        card = await self._get_card(card_id)
        if card.status == CardStatus.CANCELLED:
            raise InvalidTransitionError("card", card.status.value, CardStatus.FROZEN.value)

        needs_otp = self.freeze_requires_otp if require_otp is None else require_otp
        if needs_otp and otp is None:
            logger.info("card_freeze_pending_otp", card_id=card_id)
            return CardActionResult(
                success=False,
                status=PENDING_OTP,
                card_id=card_id,
                card=card,
                message="OTP required to freeze card",
            )
        if otp is not None:
            self.verify_otp(otp)

        if card.status == CardStatus.FROZEN:
            return CardActionResult(
                success=True,
                status=card.status.value,
                action="CARD_FROZEN",
                card_id=card_id,
                card=card,
                message="Card is already frozen",
            )

        card = await self.store.update_card_status(card_id, CardStatus.FROZEN)
        self._count("fraud.cards.frozen")
        logger.warning("card_frozen", card_id=card_id, customer_id=card.customer_id)
        return CardActionResult(
            success=True,
            status=card.status.value,
            action="CARD_FROZEN",
            card_id=card_id,
            card=card,
            message="Card has been frozen successfully",
        )

    async def unfreeze_card(self, card_id: str, otp: str | None = None) -> CardActionResult:
        card = await self._get_card(card_id)
        if card.status == CardStatus.CANCELLED:
            raise InvalidTransitionError("card", card.status.value, CardStatus.ACTIVE.value)

        if otp is None:
            logger.info("card_unfreeze_pending_otp", card_id=card_id)
            return CardActionResult(
                success=False,
                status=PENDING_OTP,
                card_id=card_id,
                card=card,
                message="OTP required to unfreeze card",
            )
        self.verify_otp(otp)

        if card.status == CardStatus.ACTIVE:
            return CardActionResult(
                success=True,
                status=card.status.value,
                action="CARD_UNFROZEN",
                card_id=card_id,
                card=card,
                message="Card is not frozen",
            )

        card = await self.store.update_card_status(card_id, CardStatus.ACTIVE)
        self._count("fraud.cards.unfrozen")
        logger.info("card_unfrozen", card_id=card_id, customer_id=card.customer_id)
        return CardActionResult(
            success=True,
            status=card.status.value,
            action="CARD_UNFROZEN",
            card_id=card_id,
            card=card,
            message="Card has been unfrozen successfully",
        )

    # -- disputes ------------------------------------------------------------

    async def open_dispute(
        self,
        transaction_id: str,
        reason_code: str | None = None,
        confirm: bool = False,
        reason: str | None = None,
    ) -> Chargeback:
        if not confirm:
            raise ValidationFailure(
                "Dispute creation requires confirmation", {"field": "confirm"}
            )

        transaction = await self.store.get_transaction(transaction_id)
        if transaction is None:
            raise TransactionNotFoundError(transaction_id)

        dispute = await self.store.create_chargeback(
            ChargebackCreate(
                customer_id=transaction.customer_id,
                transaction_id=transaction_id,
                amount=abs(transaction.amount),
                reason=reason or DEFAULT_DISPUTE_REASON,
                reason_code=reason_code,
                status=DisputeStatus.OPEN,
            )
        )
        self._count("fraud.disputes.created")
        logger.info(
            "dispute_opened",
            dispute_id=dispute.id,
            transaction_id=transaction_id,
            reason_code=reason_code,
        )
        return dispute

    async def get_dispute(self, dispute_id: str) -> Chargeback:
        dispute = await self.store.get_chargeback(dispute_id)
        if dispute is None:
            raise DisputeNotFoundError(dispute_id)
        return dispute

    async def list_disputes(
        self, customer_id: str | None = None, transaction_id: str | None = None
    ) -> list[Chargeback]:
        return await self.store.list_chargebacks(
            customer_id=customer_id, transaction_id=transaction_id
        )

    async def advance_dispute(self, dispute_id: str, status: DisputeStatus) -> Chargeback:
        """Forward-only: OPEN -> INVESTIGATING -> RESOLVED | REJECTED."""
        dispute = await self.get_dispute(dispute_id)
        if status not in DISPUTE_TRANSITIONS[dispute.status]:
            raise InvalidTransitionError("dispute", dispute.status.value, status.value)
        updated = await self.store.update_chargeback_status(dispute_id, status)
        logger.info(
            "dispute_advanced",
            dispute_id=dispute_id,
            previous_status=dispute.status.value,
            status=status.value,
        )
        return updated

    # -- customers -----------------------------------------------------------

    async def contact_customer(
        self, customer_id: str, message: str | None = None, method: str = "EMAIL"
    ) -> ContactResult:
        method = method.upper()
        if method not in CONTACT_METHODS:
            raise ValidationFailure(f"Unsupported contact method: {method}", {"field": "method"})
        if await self.store.get_customer(customer_id) is None:
            raise CustomerNotFoundError(customer_id)

        self._count("fraud.customers.contacted")
        logger.info("customer_contact_initiated", customer_id=customer_id, method=method)
        return ContactResult(customer_id=customer_id, method=method, message=message)

    async def update_risk_level(self, customer_id: str, level: str) -> Customer:
        try:
            risk_level = RiskLevel(str(level).upper())
        except ValueError:
            raise ValidationFailure(
                f"Invalid risk level: {level}", {"field": "level", "allowed": list(RiskLevel)}
            ) from None

        customer = await self.store.get_customer(customer_id)
        if customer is None:
            raise CustomerNotFoundError(customer_id)

        flags: dict[str, Any] = {
            **customer.risk_flags,
            "level": risk_level.value,
            "updatedAt": datetime.now(UTC).isoformat(),
        }
        updated = await self.store.update_customer_flags(customer_id, flags)
        logger.info("customer_risk_level_updated", customer_id=customer_id, level=risk_level.value)
        return updated
