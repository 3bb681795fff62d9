"""Property checks over random operation sequences."""

from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from ledgerpay.common.errors import InsufficientFunds
from ledgerpay.services.ledger.schemas import CreditOperation, DebitOperation, TransferOperation

operations = st.lists(
    st.tuples(
        st.sampled_from(["credit", "debit", "transfer"]),
        st.integers(min_value=0, max_value=2),
        st.integers(min_value=0, max_value=2),
        st.integers(min_value=1, max_value=5_000),
    ),
    max_size=25,
)


@settings(max_examples=30, deadline=None, suppress_health_check=[HealthCheck.function_scoped_fixture])
@given(steps=operations, opening=st.lists(st.integers(min_value=0, max_value=5_000), min_size=3, max_size=3))
def test_balances_stay_non_negative_and_match_the_log(ledger, caller, make_account, balance_of, steps, opening):
    accounts = [make_account(balance) for balance in opening]
    expected = dict(zip(accounts, opening))

    for kind, i, j, amount in steps:
        source, destination = accounts[i], accounts[j]
        try:
            if kind == "credit":
                ledger.credit(CreditOperation(caller_id=caller, account_id=source, amount_cents=amount))
                expected[source] += amount
            elif kind == "debit":
                ledger.debit(DebitOperation(caller_id=caller, account_id=source, amount_cents=amount))
                expected[source] -= amount
            elif i != j:
                ledger.transfer(
                    TransferOperation(
                        caller_id=caller, from_account_id=source, to_account_id=destination, amount_cents=amount
                    )
                )
                expected[source] -= amount
                expected[destination] += amount
        except InsufficientFunds:
            assert expected[source] < amount

    for account in accounts:
        assert balance_of(account) == expected[account]
        assert balance_of(account) >= 0


@settings(max_examples=30, deadline=None, suppress_health_check=[HealthCheck.function_scoped_fixture])
@given(amounts=st.lists(st.integers(min_value=1, max_value=1_000), min_size=1, max_size=15))
def test_transfers_conserve_total(ledger, caller, make_account, balance_of, amounts):
    a, b = make_account(5_000), make_account(5_000)

    for n, amount in enumerate(amounts):
        source, destination = (a, b) if n % 2 else (b, a)
        try:
            ledger.transfer(
                TransferOperation(caller_id=caller, from_account_id=source, to_account_id=destination, amount_cents=amount)
            )
        except InsufficientFunds:
            pass

    assert balance_of(a) + balance_of(b) == 10_000
