"""Operation variants plus API request/response schemas for the ledger."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from ledgerpay.services.ledger.models import Account, Transaction


@dataclass(frozen=True)
class CreditOperation:
    """Add money to one account."""

    caller_id: str
    account_id: str
    amount_cents: int
    description: str | None = None
    idempotency_key: str | None = None
    metadata: dict[str, Any] | None = field(default=None, compare=False)

    transaction_type = "credit"


@dataclass(frozen=True)
class DebitOperation:
    """Remove money from one account."""

    caller_id: str
    account_id: str
    amount_cents: int
    description: str | None = None
    idempotency_key: str | None = None
    metadata: dict[str, Any] | None = field(default=None, compare=False)

    transaction_type = "debit"


@dataclass(frozen=True)
class TransferOperation:
    """Move money between two accounts of the same caller."""

    caller_id: str
    from_account_id: str
    to_account_id: str
    amount_cents: int
    description: str | None = None
    idempotency_key: str | None = None
    metadata: dict[str, Any] | None = field(default=None, compare=False)

    transaction_type = "transfer"


Operation = CreditOperation | DebitOperation | TransferOperation


@dataclass(frozen=True)
class TransactionResult:
    """Persisted transaction plus whether it came from an idempotent replay."""

    transaction: Transaction
    replayed: bool


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; stored values are always UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class CreditRequest(BaseModel):
    account_id: str = Field(min_length=1)
    amount_cents: int
    description: str | None = None
    idempotency_key: str | None = Field(default=None, min_length=1, max_length=255)
    metadata: dict[str, Any] | None = None


class DebitRequest(BaseModel):
    account_id: str = Field(min_length=1)
    amount_cents: int
    description: str | None = None
    idempotency_key: str | None = Field(default=None, min_length=1, max_length=255)
    metadata: dict[str, Any] | None = None


class TransferRequest(BaseModel):
    from_account_id: str = Field(min_length=1)
    to_account_id: str = Field(min_length=1)
    amount_cents: int
    description: str | None = None
    idempotency_key: str | None = Field(default=None, min_length=1, max_length=255)
    metadata: dict[str, Any] | None = None


class TransactionResponse(BaseModel):
    """Transaction as returned to API clients."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    transaction_type: str
    from_account_id: str | None
    to_account_id: str | None
    amount_cents: int
    currency: str
    description: str | None
    status: str
    created_at: datetime

    @classmethod
    def from_transaction(cls, transaction: Transaction) -> "TransactionResponse":
        response = cls.model_validate(transaction)
        response.created_at = as_utc(response.created_at)
        return response


class CreateAccountRequest(BaseModel):
    account_name: str = Field(min_length=1, max_length=255)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    initial_balance_cents: int = Field(default=0, ge=0)


class AccountResponse(BaseModel):
    """Account as returned to API clients (owner id omitted)."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    account_name: str
    balance_cents: int
    currency: str
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_account(cls, account: Account) -> "AccountResponse":
        response = cls.model_validate(account)
        response.created_at = as_utc(response.created_at)
        response.updated_at = as_utc(response.updated_at)
        return response
