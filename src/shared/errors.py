"""Error taxonomy for the fraud-ops core.

Lookup failures subclass ``LookupError`` and validation failures subclass
``ValueError`` so the global exception handler maps them to 404 / 400.
"""

from typing import Any


class FraudOpsError(Exception):
    """Base exception for fraud-ops errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class NotFoundError(FraudOpsError, LookupError):
    """A referenced record does not exist."""

    entity = "record"

    def __init__(self, record_id: str) -> None:
        super().__init__(
            f"{self.entity.capitalize()} not found: {record_id}",
            {f"{self.entity}_id": record_id},
        )
        self.record_id = record_id


class CustomerNotFoundError(NotFoundError):
    entity = "customer"


class CardNotFoundError(NotFoundError):
    entity = "card"


class TransactionNotFoundError(NotFoundError):
    entity = "transaction"


class AlertNotFoundError(NotFoundError):
    entity = "alert"


class DisputeNotFoundError(NotFoundError):
    entity = "dispute"


class ValidationFailure(FraudOpsError, ValueError):
    """Request rejected before any state change."""


class InvalidOTPError(ValidationFailure):
    def __init__(self, reason: str = "Invalid OTP") -> None:
        super().__init__(reason, {"field": "otp"})


class InvalidTransitionError(ValidationFailure):
    def __init__(self, entity: str, current: str, requested: str) -> None:
        super().__init__(
            f"Cannot move {entity} from {current} to {requested}",
            {"entity": entity, "current": current, "requested": requested},
        )
