"""Shared fixtures: a throwaway SQLite ledger database per test."""

import os
import tempfile

_DB_DIR = tempfile.mkdtemp(prefix="ledgerpay-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{_DB_DIR}/ledger.db")
os.environ.setdefault("OTEL_ENABLED", "false")

import pytest  # noqa: E402
from sqlalchemy import func, select  # noqa: E402

from ledgerpay.common.db import Base, SessionLocal, engine  # noqa: E402
from ledgerpay.services.ledger.auth import hash_api_key  # noqa: E402
from ledgerpay.services.ledger.models import Account, ApiKey, Transaction  # noqa: E402
from ledgerpay.services.ledger.service import TransactionEngine  # noqa: E402
from ledgerpay.services.ledger.store import LedgerStore  # noqa: E402


class RecordingNotifier:
    """Stand-in notifier that remembers what the engine dispatched."""

    def __init__(self) -> None:
        self.dispatched: list[tuple[str, str]] = []

    def dispatch(self, transaction, owner_id: str) -> None:
        self.dispatched.append((transaction.id, owner_id))


@pytest.fixture(autouse=True)
def schema():
    """Fresh tables for every test."""

    Base.metadata.create_all(engine)
    yield
    Base.metadata.drop_all(engine)


@pytest.fixture
def store() -> LedgerStore:
    return LedgerStore(SessionLocal)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def ledger(store: LedgerStore, notifier: RecordingNotifier) -> TransactionEngine:
    return TransactionEngine(store, notifier=notifier)


@pytest.fixture
def make_caller():
    """Create an active API key row; returns (caller_id, raw_key)."""

    def _make(name: str = "Acme") -> tuple[str, str]:
        raw_key = f"test-key-{name}-{os.urandom(4).hex()}"
        with SessionLocal() as db:
            row = ApiKey(key_hash=hash_api_key(raw_key), business_name=name, is_active=True)
            db.add(row)
            db.commit()
        return row.id, raw_key

    return _make


@pytest.fixture
def caller(make_caller) -> str:
    caller_id, _ = make_caller()
    return caller_id


@pytest.fixture
def make_account(caller: str):
    """Create an account directly in the store, bypassing the engine."""

    def _make(balance_cents: int = 0, currency: str = "USD", owner_id: str | None = None) -> str:
        with SessionLocal() as db:
            account = Account(
                owner_id=owner_id or caller,
                account_name="test account",
                balance_cents=balance_cents,
                currency=currency,
            )
            db.add(account)
            db.commit()
        return account.id

    return _make


def balance_of(account_id: str) -> int:
    with SessionLocal() as db:
        return db.get(Account, account_id).balance_cents


def transaction_count() -> int:
    with SessionLocal() as db:
        return db.execute(select(func.count()).select_from(Transaction)).scalar_one()


@pytest.fixture(name="balance_of")
def balance_of_fixture():
    return balance_of


@pytest.fixture(name="transaction_count")
def transaction_count_fixture():
    return transaction_count
