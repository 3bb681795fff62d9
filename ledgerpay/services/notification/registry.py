"""Registration of webhook endpoints per caller."""

import httpx
from sqlalchemy import select, update

from ledgerpay.common.errors import InvalidWebhookUrl, WebhookNotFound
from ledgerpay.common.logging import logger
from ledgerpay.services.notification.models import WebhookEndpoint
from ledgerpay.services.notification.signing import generate_secret

MAX_URL_LENGTH = 2048
LOCAL_HOSTS = {"localhost", "127.0.0.1", "0.0.0.0"}


def validate_webhook_url(url: str) -> None:
    """HTTPS anywhere; plain HTTP only for local development hosts."""

    if len(url) > MAX_URL_LENGTH:
        raise InvalidWebhookUrl(f"URL exceeds {MAX_URL_LENGTH} characters")
    try:
        parsed = httpx.URL(url)
    except httpx.InvalidURL as exc:
        raise InvalidWebhookUrl("Invalid URL format") from exc
    if not parsed.host:
        raise InvalidWebhookUrl("Invalid URL format")
    if parsed.scheme == "https":
        return
    if parsed.scheme == "http":
        if parsed.host in LOCAL_HOSTS:
            return
        raise InvalidWebhookUrl("HTTP is only allowed for localhost. Use HTTPS for production.")
    raise InvalidWebhookUrl("URL must use HTTP or HTTPS")


class WebhookRegistry:
    """Create, list, and soft-delete webhook endpoints for one caller at a time."""

    def __init__(self, session_factory) -> None:
        self.session_factory = session_factory

    def create_endpoint(self, owner_id: str, url: str) -> WebhookEndpoint:
        """Register `url`; the returned row carries the secret, shown to the caller once."""

        validate_webhook_url(url)
        with self.session_factory() as db:
            endpoint = WebhookEndpoint(owner_id=owner_id, url=url, secret=generate_secret(), is_active=True)
            db.add(endpoint)
            db.commit()
        logger.info("webhook_endpoint_created endpoint_id=%s", endpoint.id)
        return endpoint

    def list_endpoints(self, owner_id: str) -> list[WebhookEndpoint]:
        with self.session_factory() as db:
            return list(
                db.execute(
                    select(WebhookEndpoint)
                    .where(WebhookEndpoint.owner_id == owner_id, WebhookEndpoint.is_active.is_(True))
                    .order_by(WebhookEndpoint.created_at.desc())
                ).scalars()
            )

    def deactivate_endpoint(self, owner_id: str, endpoint_id: str) -> None:
        """Soft delete so past delivery records keep their endpoint."""

        with self.session_factory() as db:
            result = db.execute(
                update(WebhookEndpoint)
                .where(WebhookEndpoint.id == endpoint_id, WebhookEndpoint.owner_id == owner_id)
                .values(is_active=False)
            )
            if result.rowcount == 0:
                raise WebhookNotFound()
            db.commit()
        logger.info("webhook_endpoint_deactivated endpoint_id=%s", endpoint_id)
