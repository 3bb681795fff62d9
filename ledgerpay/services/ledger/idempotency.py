"""Idempotency guard for transaction log inserts.

Deduplication relies on the unique index over `transactions.idempotency_key`
rather than a read-before-write check, so concurrent retries sharing a key
are decided by whichever insert the store accepts first.
"""

from dataclasses import dataclass

from sqlalchemy.orm import Session

from ledgerpay.common.errors import LedgerError
from ledgerpay.common.logging import logger
from ledgerpay.services.ledger.models import Transaction
from ledgerpay.services.ledger.store import InsertStatus, LedgerStore


@dataclass(frozen=True)
class Claim:
    """Result of trying to claim a transaction slot.

    Exactly one of `transaction` (fresh, caller proceeds to mutate) or
    `existing` (key already used, caller must abandon its unit) is set.
    """

    transaction: Transaction | None = None
    existing: Transaction | None = None

    @property
    def is_duplicate(self) -> bool:
        return self.existing is not None


class IdempotencyGuard:
    """Decides between applying a new transaction and replaying a prior one."""

    def __init__(self, store: LedgerStore) -> None:
        self.store = store

    def claim(self, db: Session, **fields) -> Claim:
        """Insert the transaction row inside `db`; fall back to lookup on key conflict."""

        status, transaction = self.store.insert_transaction(db, **fields)
        if status is InsertStatus.INSERTED:
            return Claim(transaction=transaction)

        key = fields["idempotency_key"]
        existing = self.store.find_transaction_by_idempotency_key(key)
        if existing is None:
            # Conflicting row vanished between rollback and lookup; rows are append-only.
            raise LedgerError(f"idempotency key {key!r} conflicted but no transaction was found")
        logger.info("idempotent_replay idempotency_key=%s transaction_id=%s", key, existing.id)
        return Claim(existing=existing)
