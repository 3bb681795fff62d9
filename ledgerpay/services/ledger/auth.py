"""API-key authentication resolving the caller identity for each request."""

import hashlib
from dataclasses import dataclass

from fastapi import Header
from sqlalchemy import select

from ledgerpay.common.db import SessionLocal
from ledgerpay.common.errors import InvalidApiKey
from ledgerpay.services.ledger.models import ApiKey


@dataclass(frozen=True)
class Caller:
    """Authenticated business; `id` scopes every account and webhook lookup."""

    id: str
    business_name: str


def hash_api_key(raw_key: str) -> str:
    return hashlib.sha256(raw_key.encode("utf-8")).hexdigest()


def resolve_caller(session_factory, authorization: str | None) -> Caller:
    """Map an `Authorization: Bearer <key>` header to an active API key row."""

    if not authorization or not authorization.startswith("Bearer "):
        raise InvalidApiKey()
    raw_key = authorization.removeprefix("Bearer ").strip()
    if not raw_key:
        raise InvalidApiKey()
    with session_factory() as db:
        row = db.execute(
            select(ApiKey).where(ApiKey.key_hash == hash_api_key(raw_key), ApiKey.is_active.is_(True))
        ).scalar_one_or_none()
    if row is None:
        raise InvalidApiKey()
    return Caller(id=row.id, business_name=row.business_name)


def require_caller(authorization: str | None = Header(default=None)) -> Caller:
    """FastAPI dependency for protected routes."""

    return resolve_caller(SessionLocal, authorization)
