"""Webhook payload shape and HMAC signatures."""

import json
from datetime import datetime, timezone

from ledgerpay.services.ledger.models import Transaction
from ledgerpay.services.notification.signing import (
    EVENT_TYPE,
    build_event,
    generate_secret,
    serialize_event,
    sign_payload,
    verify_signature,
)


def _transaction() -> Transaction:
    return Transaction(
        id="txn-1",
        transaction_type="transfer",
        from_account_id="acc-a",
        to_account_id="acc-b",
        amount_cents=1_500,
        currency="USD",
        description="Rent",
        status="completed",
        created_at=datetime(2024, 3, 1, 12, 30, tzinfo=timezone.utc),
    )


def test_known_signature():
    body = b'{"event_id":"evt-1","amount_cents":100}'

    assert sign_payload("whsec_test", body) == (
        "sha256=9fba951e100bc4ddad0acba3db841801f9e3f3e060795811e5428a8ead253b41"
    )


def test_verify_rejects_wrong_secret_and_tampered_body():
    body = serialize_event(build_event(_transaction()))
    signature = sign_payload("right", body)

    assert verify_signature("right", body, signature)
    assert not verify_signature("wrong", body, signature)
    assert not verify_signature("right", body + b" ", signature)


def test_event_envelope_shape():
    event = build_event(_transaction(), event_id="evt-42")

    assert list(event) == ["event_id", "event_type", "timestamp", "data"]
    assert event["event_id"] == "evt-42"
    assert event["event_type"] == EVENT_TYPE == "transaction.completed"
    assert event["timestamp"].endswith("Z")
    assert event["data"]["transaction"] == {
        "id": "txn-1",
        "type": "transfer",
        "from_account_id": "acc-a",
        "to_account_id": "acc-b",
        "amount_cents": 1_500,
        "currency": "USD",
        "description": "Rent",
        "status": "completed",
        "created_at": "2024-03-01T12:30:00Z",
    }


def test_naive_timestamps_are_treated_as_utc():
    transaction = _transaction()
    transaction.created_at = datetime(2024, 3, 1, 12, 30)

    assert build_event(transaction)["data"]["transaction"]["created_at"] == "2024-03-01T12:30:00Z"


def test_serialization_is_compact_and_ordered():
    event = build_event(_transaction(), event_id="evt-42")
    body = serialize_event(event)

    assert b" " not in body.replace(b'"Rent"', b"")
    assert body.startswith(b'{"event_id":"evt-42","event_type":"transaction.completed","timestamp":"')
    assert json.loads(body) == event


def test_each_event_gets_its_own_id():
    assert build_event(_transaction())["event_id"] != build_event(_transaction())["event_id"]


def test_generated_secret_is_64_hex_chars():
    secret = generate_secret()

    assert len(secret) == 64
    int(secret, 16)
