"""Unit tests for card freeze/unfreeze, disputes, contact and risk-level actions."""

from decimal import Decimal

import pytest

from src.domains.fraud.actions import PENDING_OTP, FraudActions
from src.domains.fraud.models import CardStatus, DisputeStatus, Transaction
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

OTP = "123456"


@pytest.fixture
def actions(store) -> FraudActions:
    return FraudActions(store, MetricsRecorder(), otp_code=OTP)


class TestFreezeCard:
    @pytest.mark.asyncio
    async def test_missing_otp_returns_pending_without_write(self, actions, store):
        result = await actions.freeze_card("card-quiet")
        assert not result.success
        assert result.status == PENDING_OTP
        assert result.action is None
        assert store.cards["card-quiet"].status == CardStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_valid_otp_freezes(self, actions, store):
        result = await actions.freeze_card("card-quiet", OTP)
        assert result.success
        assert result.status == "FROZEN"
        assert result.action == "CARD_FROZEN"
        assert store.cards["card-quiet"].status == CardStatus.FROZEN
        assert actions.metrics.count("fraud.cards.frozen") == 1

    @pytest.mark.asyncio
    async def test_wrong_otp_leaves_card_unchanged(self, actions, store):
        with pytest.raises(InvalidOTPError, match="Invalid OTP"):
            await actions.freeze_card("card-quiet", "654321")
        assert store.cards["card-quiet"].status == CardStatus.ACTIVE
        assert actions.metrics.count("fraud.otp.rejected") == 1

    @pytest.mark.parametrize("otp", ["12345", "1234567", "abcdef", ""])
    @pytest.mark.asyncio
    async def test_malformed_otp(self, actions, store, otp):
        with pytest.raises(InvalidOTPError, match="OTP must be 6 digits"):
            await actions.freeze_card("card-quiet", otp)
        assert store.cards["card-quiet"].status == CardStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_otp_can_be_waived_per_call(self, actions, store):
        result = await actions.freeze_card("card-quiet", require_otp=False)
        assert result.success
        assert store.cards["card-quiet"].status == CardStatus.FROZEN

    @pytest.mark.asyncio
    async def test_already_frozen_is_idempotent(self, actions):
        await actions.freeze_card("card-quiet", OTP)
        again = await actions.freeze_card("card-quiet", OTP)
        assert again.success
        assert again.message == "Card is already frozen"
        assert actions.metrics.count("fraud.cards.frozen") == 1

    @pytest.mark.asyncio
    async def test_cancelled_card_rejected(self, actions):
        with pytest.raises(InvalidTransitionError):
            await actions.freeze_card("card-cancelled", OTP)

    @pytest.mark.asyncio
    async def test_unknown_card(self, actions):
        with pytest.raises(CardNotFoundError):
            await actions.freeze_card("card-ghost", OTP)


class TestUnfreezeCard:
    @pytest.mark.asyncio
    async def test_always_requires_otp(self, store):
        actions = FraudActions(store, otp_code=OTP, freeze_requires_otp=False)
        await actions.freeze_card("card-quiet")
        result = await actions.unfreeze_card("card-quiet")
        assert result.status == PENDING_OTP
        assert store.cards["card-quiet"].status == CardStatus.FROZEN

    @pytest.mark.asyncio
    async def test_valid_otp_unfreezes(self, actions, store):
        await actions.freeze_card("card-quiet", OTP)
        result = await actions.unfreeze_card("card-quiet", OTP)
        assert result.success
        assert result.action == "CARD_UNFROZEN"
        assert store.cards["card-quiet"].status == CardStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_active_card_reports_not_frozen(self, actions):
        result = await actions.unfreeze_card("card-quiet", OTP)
        assert result.message == "Card is not frozen"
        assert result.status == "ACTIVE"

    @pytest.mark.asyncio
    async def test_wrong_otp(self, actions, store):
        await actions.freeze_card("card-quiet", OTP)
        with pytest.raises(InvalidOTPError):
            await actions.unfreeze_card("card-quiet", "000000")
        assert store.cards["card-quiet"].status == CardStatus.FROZEN


class TestDisputes:
    @pytest.mark.asyncio
    async def test_requires_confirmation(self, actions, store):
        with pytest.raises(ValidationFailure, match="requires confirmation"):
            await actions.open_dispute("txn-quiet")
        assert await store.list_chargebacks(transaction_id="txn-quiet") == []

    @pytest.mark.asyncio
    async def test_open_dispute(self, actions):
        dispute = await actions.open_dispute("txn-quiet", reason_code="10.4", confirm=True)
        assert dispute.status == DisputeStatus.OPEN
        assert dispute.customer_id == "cust-quiet"
        assert dispute.amount == Decimal("42.10")
        assert dispute.reason == "Fraudulent transaction"
        assert dispute.reason_code == "10.4"

    @pytest.mark.asyncio
    async def test_refund_amount_is_absolute(self, actions, store, now):
        store.add_transaction(
            Transaction(id="txn-refund", customer_id="cust-quiet", amount=Decimal("-15.00"), timestamp=now)
        )
        dispute = await actions.open_dispute("txn-refund", confirm=True, reason="Duplicate charge")
        assert dispute.amount == Decimal("15.00")
        assert dispute.reason == "Duplicate charge"

    @pytest.mark.asyncio
    async def test_unknown_transaction(self, actions):
        with pytest.raises(TransactionNotFoundError):
            await actions.open_dispute("txn-ghost", confirm=True)

    @pytest.mark.asyncio
    async def test_forward_only_progression(self, actions):
        dispute = await actions.open_dispute("txn-quiet", confirm=True)
        investigating = await actions.advance_dispute(dispute.id, DisputeStatus.INVESTIGATING)
        assert investigating.status == DisputeStatus.INVESTIGATING
        resolved = await actions.advance_dispute(dispute.id, DisputeStatus.RESOLVED)
        assert resolved.status == DisputeStatus.RESOLVED

        with pytest.raises(InvalidTransitionError):
            await actions.advance_dispute(dispute.id, DisputeStatus.OPEN)

    @pytest.mark.asyncio
    async def test_cannot_skip_investigation(self, actions):
        dispute = await actions.open_dispute("txn-quiet", confirm=True)
        with pytest.raises(InvalidTransitionError):
            await actions.advance_dispute(dispute.id, DisputeStatus.RESOLVED)

    @pytest.mark.asyncio
    async def test_list_and_get(self, actions):
        dispute = await actions.open_dispute("txn-quiet", confirm=True)
        assert [d.id for d in await actions.list_disputes(customer_id="cust-quiet")] == [dispute.id]
        assert (await actions.get_dispute(dispute.id)).id == dispute.id
        with pytest.raises(DisputeNotFoundError):
            await actions.get_dispute("cb-ghost")


class TestCustomerActions:
    @pytest.mark.asyncio
    async def test_contact_customer(self, actions):
        result = await actions.contact_customer("cust-quiet", "Please call us", method="sms")
        assert result.success
        assert result.method == "SMS"
        assert result.action == "CUSTOMER_CONTACT_INITIATED"

    @pytest.mark.asyncio
    async def test_contact_unsupported_method(self, actions):
        with pytest.raises(ValidationFailure):
            await actions.contact_customer("cust-quiet", method="PIGEON")

    @pytest.mark.asyncio
    async def test_contact_unknown_customer(self, actions):
        with pytest.raises(CustomerNotFoundError):
            await actions.contact_customer("cust-ghost")

    @pytest.mark.asyncio
    async def test_update_risk_level_merges_flags(self, actions, store):
        customer = await actions.update_risk_level("cust-risky", "high")
        assert customer.risk_flags["level"] == "HIGH"
        assert customer.risk_flags["previousFraud"] is True
        assert "updatedAt" in customer.risk_flags
        assert store.customers["cust-risky"].risk_flags["level"] == "HIGH"

    @pytest.mark.asyncio
    async def test_update_risk_level_rejects_unknown_level(self, actions):
        with pytest.raises(ValidationFailure, match="Invalid risk level"):
            await actions.update_risk_level("cust-risky", "EXTREME")
