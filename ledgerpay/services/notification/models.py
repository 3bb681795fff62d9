"""Notification persistence models (subscriber endpoints + delivery log)."""

from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from ledgerpay.common.db import Base
from ledgerpay.services.ledger.models import JSONType


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WebhookEndpoint(Base):
    """Subscriber URL plus the secret used to sign its deliveries."""

    __tablename__ = "webhook_endpoints"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    owner_id: Mapped[str] = mapped_column(ForeignKey("api_keys.id"), index=True)
    url: Mapped[str] = mapped_column(String(2048))
    secret: Mapped[str] = mapped_column(String(64))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )


class WebhookEvent(Base):
    """Stored record of one delivery attempt, successful or not."""

    __tablename__ = "webhook_events"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    webhook_endpoint_id: Mapped[str] = mapped_column(ForeignKey("webhook_endpoints.id"))
    transaction_id: Mapped[str] = mapped_column(ForeignKey("transactions.id"), index=True)
    payload: Mapped[dict] = mapped_column(JSONType)
    sent_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )
    response_status: Mapped[int | None] = mapped_column(Integer, nullable=True)
    response_body: Mapped[str | None] = mapped_column(Text, nullable=True)
