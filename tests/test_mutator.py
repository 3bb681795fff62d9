"""Unit tests for balance arithmetic under an atomic unit."""

import pytest
from sqlalchemy.exc import IntegrityError

from ledgerpay.common.errors import AccountNotFound, InsufficientFunds, InvalidAmount, SameAccount
from ledgerpay.services.ledger.mutator import BalanceMutator


def test_credit_adds_amount(store, make_account, balance_of):
    account = make_account(1_000)
    mutator = BalanceMutator(store)

    with store.begin_atomic() as db:
        assert mutator.credit(db, account, 250) == 1_250

    assert balance_of(account) == 1_250


def test_debit_rejects_overdraft_and_keeps_balance(store, make_account, balance_of):
    account = make_account(500)
    mutator = BalanceMutator(store)

    with pytest.raises(InsufficientFunds) as excinfo:
        with store.begin_atomic() as db:
            mutator.debit(db, account, 501)

    assert excinfo.value.amount_cents == 501
    assert excinfo.value.balance_cents == 500
    assert balance_of(account) == 500


def test_debit_to_exactly_zero_is_allowed(store, make_account, balance_of):
    account = make_account(500)
    mutator = BalanceMutator(store)

    with store.begin_atomic() as db:
        mutator.debit(db, account, 500)

    assert balance_of(account) == 0


@pytest.mark.parametrize("amount", [0, -1])
def test_non_positive_amounts_are_rejected(store, make_account, amount):
    account = make_account(500)
    mutator = BalanceMutator(store)

    with pytest.raises(InvalidAmount):
        with store.begin_atomic() as db:
            mutator.credit(db, account, amount)


def test_missing_account(store):
    mutator = BalanceMutator(store)

    with pytest.raises(AccountNotFound):
        with store.begin_atomic() as db:
            mutator.credit(db, "no-such-account", 10)


def test_transfer_moves_money_atomically(store, make_account, balance_of):
    source, destination = make_account(1_000), make_account(10)
    mutator = BalanceMutator(store)

    with store.begin_atomic() as db:
        assert mutator.transfer(db, source, destination, 400) == (600, 410)

    assert balance_of(source) == 600
    assert balance_of(destination) == 410


def test_transfer_failure_leaves_both_balances(store, make_account, balance_of):
    source, destination = make_account(100), make_account(10)
    mutator = BalanceMutator(store)

    with pytest.raises(InsufficientFunds):
        with store.begin_atomic() as db:
            mutator.transfer(db, source, destination, 101)

    assert (balance_of(source), balance_of(destination)) == (100, 10)


def test_transfer_to_same_account(store, make_account):
    account = make_account(100)
    mutator = BalanceMutator(store)

    with pytest.raises(SameAccount):
        with store.begin_atomic() as db:
            mutator.transfer(db, account, account, 1)


def test_transfer_locks_rows_in_id_order(store, make_account, monkeypatch):
    a, b = make_account(100), make_account(100)
    locked: list[str] = []
    original = store.lock_account

    def recording_lock(db, account_id):
        locked.append(account_id)
        return original(db, account_id)

    monkeypatch.setattr(store, "lock_account", recording_lock)
    mutator = BalanceMutator(store)

    with store.begin_atomic() as db:
        mutator.transfer(db, a, b, 1)
    with store.begin_atomic() as db:
        mutator.transfer(db, b, a, 1)

    assert locked == sorted([a, b]) * 2


def test_store_rejects_negative_balance(store, make_account, balance_of):
    account = make_account(50)

    with pytest.raises(IntegrityError):
        with store.begin_atomic() as db:
            store.write_account_balance(db, account, -1)

    assert balance_of(account) == 50
