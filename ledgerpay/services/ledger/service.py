"""Transaction engine.

Validates and applies credit, debit, and transfer operations as single atomic
units of work: the transaction row (carrying the idempotency key) and the
balance mutation commit together or not at all. Notification happens only
after commit and cannot affect the result.
"""

from time import perf_counter

from sqlalchemy.exc import IntegrityError

from ledgerpay.common.errors import (
    AccountNotFound,
    CurrencyMismatch,
    InvalidAmount,
    InvalidRequest,
    LedgerError,
    SameAccount,
    TransactionNotFound,
)
from ledgerpay.common.logging import log_context, logger
from ledgerpay.common.metrics import (
    idempotent_replays_total,
    transaction_latency_seconds,
    transactions_total,
)
from ledgerpay.common.tracing import ledger_span
from ledgerpay.services.ledger.idempotency import IdempotencyGuard
from ledgerpay.services.ledger.models import Account, Transaction
from ledgerpay.services.ledger.mutator import BalanceMutator
from ledgerpay.services.ledger.schemas import (
    CreditOperation,
    DebitOperation,
    Operation,
    TransactionResult,
    TransferOperation,
)
from ledgerpay.services.ledger.store import LedgerStore


class TransactionEngine:
    """Orchestrates the idempotency guard, balance mutator, and notifier."""

    def __init__(self, store: LedgerStore, notifier=None, service_name: str = "ledger") -> None:
        self.store = store
        self.guard = IdempotencyGuard(store)
        self.mutator = BalanceMutator(store)
        self.notifier = notifier
        self.service_name = service_name

    def credit(self, op: CreditOperation) -> TransactionResult:
        return self.execute(op)

    def debit(self, op: DebitOperation) -> TransactionResult:
        return self.execute(op)

    def transfer(self, op: TransferOperation) -> TransactionResult:
        return self.execute(op)

    def execute(self, op: Operation) -> TransactionResult:
        """Run one operation end to end and record its outcome."""

        started = perf_counter()
        try:
            with log_context(idempotency_key=op.idempotency_key), ledger_span(
                op.transaction_type,
                amount_cents=op.amount_cents,
                has_idempotency_key=op.idempotency_key is not None,
            ) as span:
                result = self._execute(op)
                span.set_attribute("ledger.replayed", result.replayed)
        except LedgerError as exc:
            transactions_total.labels(
                service=self.service_name, transaction_type=op.transaction_type, outcome=exc.code
            ).inc()
            logger.info("transaction_rejected type=%s code=%s detail=%s", op.transaction_type, exc.code, exc)
            raise
        finally:
            transaction_latency_seconds.labels(
                service=self.service_name, transaction_type=op.transaction_type
            ).observe(max(0.0, perf_counter() - started))

        outcome = "replayed" if result.replayed else "completed"
        transactions_total.labels(
            service=self.service_name, transaction_type=op.transaction_type, outcome=outcome
        ).inc()
        if result.replayed:
            idempotent_replays_total.labels(service=self.service_name, transaction_type=op.transaction_type).inc()
        else:
            self._notify(result.transaction, op.caller_id)
        return result

    def _execute(self, op: Operation) -> TransactionResult:
        fields = self._validate(op)

        try:
            with self.store.begin_atomic() as db:
                claim = self.guard.claim(db, **fields)
                if claim.is_duplicate:
                    # The guard already rolled the unit back; nothing to commit.
                    requested = {fields["from_account_id"], fields["to_account_id"]} - {None}
                    if not claim.existing.account_ids() & requested:
                        raise InvalidRequest("Idempotency key already used for another operation")
                    return TransactionResult(transaction=claim.existing, replayed=True)

                match op:
                    case CreditOperation():
                        self.mutator.credit(db, op.account_id, op.amount_cents)
                    case DebitOperation():
                        self.mutator.debit(db, op.account_id, op.amount_cents)
                    case TransferOperation():
                        self.mutator.transfer(db, op.from_account_id, op.to_account_id, op.amount_cents)
                    case _:
                        raise TypeError(f"unsupported operation {type(op).__name__}")
                transaction = claim.transaction
        except IntegrityError as exc:
            # Constraints backing the pre-checks (e.g. balance >= 0) fired.
            logger.error("ledger_constraint_violation type=%s error=%s", op.transaction_type, exc)
            raise LedgerError("Ledger constraint violated") from exc

        with log_context(transaction_id=transaction.id):
            logger.info(
                "transaction_completed type=%s transaction_id=%s amount_cents=%s",
                transaction.transaction_type,
                transaction.id,
                transaction.amount_cents,
            )
        return TransactionResult(transaction=transaction, replayed=False)

    def _validate(self, op: Operation) -> dict:
        """Fail fast on structural problems before any atomic unit is opened.

        Returns the column values for the transaction row.
        """

        if op.amount_cents <= 0:
            raise InvalidAmount()

        match op:
            case CreditOperation():
                account = self._owned_account(op.caller_id, op.account_id)
                from_id, to_id, currency = None, account.id, account.currency
            case DebitOperation():
                account = self._owned_account(op.caller_id, op.account_id)
                from_id, to_id, currency = account.id, None, account.currency
            case TransferOperation():
                if op.from_account_id == op.to_account_id:
                    raise SameAccount()
                source = self._owned_account(op.caller_id, op.from_account_id)
                destination = self._owned_account(op.caller_id, op.to_account_id)
                if source.currency != destination.currency:
                    raise CurrencyMismatch(
                        f"Cannot transfer {source.currency} to a {destination.currency} account"
                    )
                from_id, to_id, currency = source.id, destination.id, source.currency
            case _:
                raise TypeError(f"unsupported operation {type(op).__name__}")

        return {
            "transaction_type": op.transaction_type,
            "from_account_id": from_id,
            "to_account_id": to_id,
            "amount_cents": op.amount_cents,
            "currency": currency,
            "description": op.description,
            "idempotency_key": op.idempotency_key,
            "metadata_": op.metadata,
        }

    def _owned_account(self, caller_id: str, account_id: str) -> Account:
        with self.store.read() as db:
            account = self.store.get_account(db, account_id)
        # Accounts of other callers are reported as missing to avoid leaking existence.
        if account is None or account.owner_id != caller_id:
            raise AccountNotFound()
        return account

    def get_transaction(self, caller_id: str, transaction_id: str) -> Transaction:
        """Return a transaction that touches at least one of the caller's accounts."""

        transaction = self.store.get_transaction(transaction_id)
        if transaction is None:
            raise TransactionNotFound()
        with self.store.read() as db:
            owners = {
                account.owner_id
                for account_id in transaction.account_ids()
                if (account := self.store.get_account(db, account_id)) is not None
            }
        if caller_id not in owners:
            raise TransactionNotFound()
        return transaction

    def _notify(self, transaction: Transaction, owner_id: str) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier.dispatch(transaction, owner_id)
        except Exception as exc:
            logger.error("webhook_dispatch_failed transaction_id=%s error=%s", transaction.id, exc)
