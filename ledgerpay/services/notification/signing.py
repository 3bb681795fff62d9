"""Webhook event payloads and their HMAC-SHA256 signatures.

Subscribers verify deliveries by recomputing the HMAC over the exact raw
request body, so the body is serialized once and the same bytes are both
signed and sent.
"""

import hashlib
import hmac
import json
import secrets
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from ledgerpay.services.ledger.models import Transaction
from ledgerpay.services.ledger.schemas import as_utc

EVENT_TYPE = "transaction.completed"
SIGNATURE_PREFIX = "sha256="


def rfc3339(value: datetime) -> str:
    return as_utc(value).isoformat().replace("+00:00", "Z")


def transaction_data(transaction: Transaction) -> dict[str, Any]:
    return {
        "id": transaction.id,
        "type": transaction.transaction_type,
        "from_account_id": transaction.from_account_id,
        "to_account_id": transaction.to_account_id,
        "amount_cents": transaction.amount_cents,
        "currency": transaction.currency,
        "description": transaction.description,
        "status": transaction.status,
        "created_at": rfc3339(transaction.created_at),
    }


def build_event(transaction: Transaction, event_id: str | None = None) -> dict[str, Any]:
    """Build the `transaction.completed` envelope; a fresh event id unless given."""

    return {
        "event_id": event_id or str(uuid4()),
        "event_type": EVENT_TYPE,
        "timestamp": rfc3339(datetime.now(timezone.utc)),
        "data": {"transaction": transaction_data(transaction)},
    }


def serialize_event(event: dict[str, Any]) -> bytes:
    """Compact, key-order-preserving JSON encoding used on the wire."""

    return json.dumps(event, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def sign_payload(secret: str, body: bytes) -> str:
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_signature(secret: str, body: bytes, signature: str) -> bool:
    """Constant-time check of an `X-Webhook-Signature` header value."""

    return hmac.compare_digest(sign_payload(secret, body), signature)


def generate_secret() -> str:
    """32 random bytes as 64 hex characters."""

    return secrets.token_hex(32)
