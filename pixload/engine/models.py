"""Pydantic models and value types for the load engine."""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel


def check_amount(value: str) -> str:
    """Validate a money amount: finite, above zero, at most two decimals.

    Amounts stay strings so they reach the wire without float rounding.
    """
    try:
        amount = Decimal(value)
    except InvalidOperation as exc:
        raise ValueError(f"not a decimal amount: {value!r}") from exc
    if not amount.is_finite() or amount <= 0:
        raise ValueError(f"amount must be greater than zero: {value!r}")
    if amount.as_tuple().exponent < -2:
        raise ValueError(f"amount supports at most two decimal places: {value!r}")
    return value


class OutcomeCategory(StrEnum):
    SUCCESS = "success"
    CLIENT_ERROR_NOT_FOUND = "client_error_not_found"
    CLIENT_ERROR_OTHER = "client_error_other"
    SERVER_ERROR = "server_error"
    UNCLASSIFIED = "unclassified"


class WebhookEventType(StrEnum):
    CONFIRMED = "CONFIRMED"


class _WireModel(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


class ScenarioContext(_WireModel):
    """Shared, read-only state produced by scenario setup."""

    source_account_id: str
    destination_account_id: str
    destination_key: str


class TransferRequest(_WireModel):
    idempotency_key: str
    trace_id: str
    source_account_id: str
    destination_key: str
    amount: str

    @field_validator("amount")
    @classmethod
    def _check_amount(cls, value: str) -> str:
        return check_amount(value)

    def to_payload(self) -> dict[str, str]:
        """JSON body for ``POST /pix/transfers``."""
        return {
            "fromWalletId": self.source_account_id,
            "toPixKey": self.destination_key,
            "amount": self.amount,
        }


class TransferResult(_WireModel):
    end_to_end_id: str
    status: str | None = None
    idempotency_key: str


class WebhookEvent(_WireModel):
    end_to_end_id: str
    event_id: str
    event_type: WebhookEventType = WebhookEventType.CONFIRMED
    occurred_at: datetime

    def to_payload(self) -> dict[str, str]:
        """JSON body for ``POST /pix/webhook``."""
        data = self.model_dump(mode="json", by_alias=True)
        # Millisecond precision with a Z suffix, as Instant parsers expect
        data["occurredAt"] = (
            self.occurred_at.isoformat(timespec="milliseconds").replace("+00:00", "Z")
        )
        return data


# ---- creation outcome -------------------------------------------------------


@dataclass(frozen=True)
class TransferCreated:
    result: TransferResult


@dataclass(frozen=True)
class TransferFailed:
    status: int
    reason: str


CreationOutcome = TransferCreated | TransferFailed
