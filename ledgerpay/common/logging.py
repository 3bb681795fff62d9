"""Structured JSON logging with request/transaction context fields."""

import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator

from pythonjsonlogger.json import JsonFormatter

from ledgerpay.common.config import settings


trace_id_ctx: ContextVar[str] = ContextVar("trace_id", default="")
transaction_id_ctx: ContextVar[str] = ContextVar("transaction_id", default="")
idempotency_key_ctx: ContextVar[str] = ContextVar("idempotency_key", default="")

_CONTEXT_VARS = {
    "trace_id": trace_id_ctx,
    "transaction_id": transaction_id_ctx,
    "idempotency_key": idempotency_key_ctx,
}


class ContextFilter(logging.Filter):
    """Inject service and correlation identifiers into every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.service_name = settings.service_name
        for name, var in _CONTEXT_VARS.items():
            setattr(record, name, var.get())
        return True


@contextmanager
def log_context(**values: str | None) -> Iterator[None]:
    """Bind correlation fields for the enclosed block; `None` leaves a field as is."""

    tokens = [
        (_CONTEXT_VARS[name], _CONTEXT_VARS[name].set(value))
        for name, value in values.items()
        if value is not None
    ]
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


def configure_logging() -> None:
    """Configure root logger once per process."""

    handler = logging.StreamHandler(sys.stdout)
    context_filter = ContextFilter()
    handler.addFilter(context_filter)
    handler.setFormatter(
        JsonFormatter(
            "%(asctime)s %(levelname)s %(service_name)s %(trace_id)s %(transaction_id)s "
            "%(idempotency_key)s %(message)s"
        )
    )

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(settings.log_level)
    root.addFilter(context_filter)
    # httpx logs every webhook request at INFO; delivery outcomes are logged here instead.
    logging.getLogger("httpx").setLevel(logging.WARNING)


logger = logging.getLogger("ledgerpay")
