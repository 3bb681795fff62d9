"""Idempotency guard and concurrent retries sharing a key."""

from concurrent.futures import ThreadPoolExecutor

from ledgerpay.services.ledger.idempotency import IdempotencyGuard
from ledgerpay.services.ledger.schemas import CreditOperation, TransferOperation


def _credit_fields(account_id: str, key: str | None) -> dict:
    return {
        "transaction_type": "credit",
        "from_account_id": None,
        "to_account_id": account_id,
        "amount_cents": 100,
        "currency": "USD",
        "idempotency_key": key,
    }


def test_first_claim_inserts_second_finds_existing(store, make_account, transaction_count):
    account = make_account(0)
    guard = IdempotencyGuard(store)

    with store.begin_atomic() as db:
        first = guard.claim(db, **_credit_fields(account, "abc"))
    assert first.is_duplicate is False
    assert first.transaction.idempotency_key == "abc"

    with store.begin_atomic() as db:
        second = guard.claim(db, **_credit_fields(account, "abc"))
    assert second.is_duplicate is True
    assert second.existing.id == first.transaction.id
    assert transaction_count() == 1


def test_claims_without_key_never_conflict(store, make_account, transaction_count):
    account = make_account(0)
    guard = IdempotencyGuard(store)

    for _ in range(3):
        with store.begin_atomic() as db:
            assert guard.claim(db, **_credit_fields(account, None)).is_duplicate is False

    assert transaction_count() == 3


def test_concurrent_retries_apply_exactly_once(ledger, caller, make_account, balance_of, transaction_count):
    account = make_account(0)
    op = CreditOperation(caller_id=caller, account_id=account, amount_cents=250, idempotency_key="burst-1")

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(lambda _: ledger.credit(op), range(8)))

    assert len({r.transaction.id for r in results}) == 1
    assert sum(1 for r in results if not r.replayed) == 1
    assert balance_of(account) == 250
    assert transaction_count() == 1


def test_opposite_transfers_do_not_deadlock(ledger, caller, make_account, balance_of):
    a, b = make_account(10_000), make_account(10_000)

    def move(i: int):
        if i % 2:
            return ledger.transfer(TransferOperation(caller_id=caller, from_account_id=a, to_account_id=b, amount_cents=7))
        return ledger.transfer(TransferOperation(caller_id=caller, from_account_id=b, to_account_id=a, amount_cents=13))

    with ThreadPoolExecutor(max_workers=6) as pool:
        results = list(pool.map(move, range(20)))

    # Ten transfers each way: A sends 7 ten times and receives 13 ten times.
    assert len(results) == 20
    assert balance_of(a) == 10_000 - 70 + 130
    assert balance_of(b) == 10_000 + 70 - 130
