"""Balance arithmetic applied inside an open atomic unit."""

from sqlalchemy.orm import Session

from ledgerpay.common.errors import AccountNotFound, InsufficientFunds, InvalidAmount, SameAccount
from ledgerpay.services.ledger.models import Account
from ledgerpay.services.ledger.store import LedgerStore


class BalanceMutator:
    """Credit/debit/transfer against freshly locked account rows.

    Callers own the unit of work: any exception raised here must roll the
    whole unit back, including the transaction row already inserted.
    """

    def __init__(self, store: LedgerStore) -> None:
        self.store = store

    def _locked(self, db: Session, account_id: str) -> Account:
        account = self.store.lock_account(db, account_id)
        if account is None:
            raise AccountNotFound()
        return account

    def credit(self, db: Session, account_id: str, amount_cents: int) -> int:
        """Add `amount_cents`; returns the new balance."""

        _check_amount(amount_cents)
        account = self._locked(db, account_id)
        new_balance = account.balance_cents + amount_cents
        self.store.write_account_balance(db, account_id, new_balance)
        return new_balance

    def debit(self, db: Session, account_id: str, amount_cents: int) -> int:
        """Remove `amount_cents` if the locked balance covers it; returns the new balance."""

        _check_amount(amount_cents)
        account = self._locked(db, account_id)
        if account.balance_cents < amount_cents:
            raise InsufficientFunds(amount_cents, account.balance_cents)
        new_balance = account.balance_cents - amount_cents
        self.store.write_account_balance(db, account_id, new_balance)
        return new_balance

    def transfer(self, db: Session, from_account_id: str, to_account_id: str, amount_cents: int) -> tuple[int, int]:
        """Move `amount_cents` between two accounts; returns (from_balance, to_balance)."""

        if from_account_id == to_account_id:
            raise SameAccount()
        _check_amount(amount_cents)

        # Lock in id order, not request order, so A->B and B->A cannot deadlock.
        locked = {
            account_id: self._locked(db, account_id)
            for account_id in sorted((from_account_id, to_account_id))
        }
        source = locked[from_account_id]
        destination = locked[to_account_id]
        if source.balance_cents < amount_cents:
            raise InsufficientFunds(amount_cents, source.balance_cents)

        from_balance = source.balance_cents - amount_cents
        to_balance = destination.balance_cents + amount_cents
        self.store.write_account_balance(db, from_account_id, from_balance)
        self.store.write_account_balance(db, to_account_id, to_balance)
        return from_balance, to_balance


def _check_amount(amount_cents: int) -> None:
    if amount_cents <= 0:
        raise InvalidAmount()
