"""Ledger database models for callers, accounts, and the transaction log."""

from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from ledgerpay.common.db import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


JSONType = JSON().with_variant(JSONB(), "postgresql")

TRANSACTION_TYPES = ("credit", "debit", "transfer")


class ApiKey(Base):
    """Hashed API key; its id is the caller identity that owns accounts."""

    __tablename__ = "api_keys"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    key_hash: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    business_name: Mapped[str] = mapped_column(String(255))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )


class Account(Base):
    """Balance holder. Balance only changes through the balance mutator."""

    __tablename__ = "accounts"
    __table_args__ = (CheckConstraint("balance_cents >= 0", name="positive_balance"),)

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    owner_id: Mapped[str] = mapped_column(ForeignKey("api_keys.id"), index=True)
    account_name: Mapped[str] = mapped_column(String(255))
    balance_cents: Mapped[int] = mapped_column(BigInteger, default=0)
    currency: Mapped[str] = mapped_column(String(3), default="USD")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )


class Transaction(Base):
    """Immutable record of one completed credit, debit, or transfer."""

    __tablename__ = "transactions"
    __table_args__ = (
        CheckConstraint("amount_cents > 0", name="positive_amount"),
        CheckConstraint(
            "transaction_type IN ('credit', 'debit', 'transfer')", name="known_transaction_type"
        ),
        CheckConstraint(
            "(transaction_type = 'credit' AND from_account_id IS NULL AND to_account_id IS NOT NULL)"
            " OR (transaction_type = 'debit' AND from_account_id IS NOT NULL AND to_account_id IS NULL)"
            " OR (transaction_type = 'transfer' AND from_account_id IS NOT NULL"
            " AND to_account_id IS NOT NULL AND from_account_id <> to_account_id)",
            name="account_shape",
        ),
        UniqueConstraint("idempotency_key", name="uq_transactions_idempotency_key"),
        Index("ix_transactions_from", "from_account_id", "created_at"),
        Index("ix_transactions_to", "to_account_id", "created_at"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    idempotency_key: Mapped[str | None] = mapped_column(String(255), nullable=True)
    transaction_type: Mapped[str] = mapped_column(String(20))
    from_account_id: Mapped[str | None] = mapped_column(ForeignKey("accounts.id"), nullable=True)
    to_account_id: Mapped[str | None] = mapped_column(ForeignKey("accounts.id"), nullable=True)
    amount_cents: Mapped[int] = mapped_column(BigInteger)
    currency: Mapped[str] = mapped_column(String(3), default="USD")
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="completed")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )
    # `metadata` is reserved on declarative classes.
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSONType, nullable=True)

    def account_ids(self) -> set[str]:
        return {a for a in (self.from_account_id, self.to_account_id) if a is not None}
