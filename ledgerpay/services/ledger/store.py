"""SQLAlchemy-backed ledger store.

This is the only place that talks to the database on behalf of the
transaction engine. Balance reads for mutation always go through
`lock_account` inside an atomic unit opened by `begin_atomic`.
"""

import enum
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator

from sqlalchemy import select, update
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Session

from ledgerpay.common.errors import StoreUnavailable
from ledgerpay.common.logging import logger
from ledgerpay.services.ledger.models import Account, Transaction
from ledgerpay.services.notification.models import WebhookEndpoint, WebhookEvent


def _is_idempotency_conflict(exc: IntegrityError) -> bool:
    # PostgreSQL names the constraint, SQLite names the column; both contain this.
    return "idempotency_key" in str(exc.orig)


class InsertStatus(enum.Enum):
    """Outcome of appending a row to the transaction log."""

    INSERTED = "inserted"
    KEY_CONFLICT = "key_conflict"


class LedgerStore:
    """Atomic units of work plus the row-level primitives the engine needs."""

    def __init__(self, session_factory) -> None:
        self.session_factory = session_factory

    @contextmanager
    def begin_atomic(self) -> Iterator[Session]:
        """Yield a session whose work commits on clean exit and rolls back otherwise."""

        db = self.session_factory()
        try:
            yield db
            db.commit()
        except IntegrityError:
            db.rollback()
            raise
        except DBAPIError as exc:
            db.rollback()
            logger.error("store_error error=%s", exc)
            raise StoreUnavailable() from exc
        except BaseException:
            db.rollback()
            raise
        finally:
            db.close()

    @contextmanager
    def read(self) -> Iterator[Session]:
        """Short-lived session for reads outside any atomic unit."""

        db = self.session_factory()
        try:
            yield db
        except IntegrityError:
            raise
        except DBAPIError as exc:
            logger.error("store_error error=%s", exc)
            raise StoreUnavailable() from exc
        finally:
            db.close()

    def get_account(self, db: Session, account_id: str) -> Account | None:
        return db.get(Account, account_id)

    def lock_account(self, db: Session, account_id: str) -> Account | None:
        """Read one account row while holding its write lock for the unit's lifetime.

        `FOR NO KEY UPDATE` still blocks concurrent lockers of the row, but does
        not conflict with the key-share lock taken by foreign keys from the
        transaction row inserted earlier in the same unit.
        """

        return db.execute(
            select(Account)
            .where(Account.id == account_id)
            .with_for_update(key_share=True)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def write_account_balance(self, db: Session, account_id: str, new_balance: int) -> None:
        db.execute(
            update(Account)
            .where(Account.id == account_id)
            .values(balance_cents=new_balance, updated_at=datetime.now(timezone.utc))
        )

    def insert_transaction(self, db: Session, **fields) -> tuple[InsertStatus, Transaction | None]:
        """Append a transaction row, reporting a taken idempotency key as a status.

        Any other integrity failure is re-raised. After a conflict the session
        is unusable and the caller must abandon the unit.
        """

        transaction = Transaction(status="completed", **fields)
        db.add(transaction)
        try:
            db.flush()
        except IntegrityError as exc:
            if fields.get("idempotency_key") is None or not _is_idempotency_conflict(exc):
                raise
            db.rollback()
            return InsertStatus.KEY_CONFLICT, None
        return InsertStatus.INSERTED, transaction

    def find_transaction_by_idempotency_key(self, key: str) -> Transaction | None:
        with self.read() as db:
            return db.execute(
                select(Transaction).where(Transaction.idempotency_key == key)
            ).scalar_one_or_none()

    def get_transaction(self, transaction_id: str) -> Transaction | None:
        with self.read() as db:
            return db.get(Transaction, transaction_id)

    def list_active_webhook_endpoints(self, owner_id: str) -> list[WebhookEndpoint]:
        with self.read() as db:
            return list(
                db.execute(
                    select(WebhookEndpoint).where(
                        WebhookEndpoint.owner_id == owner_id,
                        WebhookEndpoint.is_active.is_(True),
                    )
                ).scalars()
            )

    def insert_webhook_event(self, **fields) -> None:
        """Persist one delivery record in its own unit, independent of the transaction."""

        with self.begin_atomic() as db:
            db.add(WebhookEvent(**fields))
