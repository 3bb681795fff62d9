"""Correlation fields on log records."""

import logging

from ledgerpay.common.logging import ContextFilter, log_context, transaction_id_ctx


def _record() -> logging.LogRecord:
    record = logging.LogRecord("ledgerpay", logging.INFO, __file__, 1, "msg", (), None)
    ContextFilter().filter(record)
    return record


def test_context_fields_are_bound_and_restored():
    with log_context(transaction_id="txn-1", idempotency_key="key-1"):
        inside = _record()
        with log_context(transaction_id="txn-2", idempotency_key=None):
            nested = _record()
    outside = _record()

    assert (inside.transaction_id, inside.idempotency_key) == ("txn-1", "key-1")
    assert (nested.transaction_id, nested.idempotency_key) == ("txn-2", "key-1")
    assert outside.transaction_id == transaction_id_ctx.get() == ""
