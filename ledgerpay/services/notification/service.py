"""Best-effort signed webhook delivery for completed transactions.

Each active endpoint of the transaction owner gets exactly one POST attempt.
Outcomes are recorded in `webhook_events` and never propagate back to the
operation that produced the transaction.
"""

import asyncio
from dataclasses import dataclass
from time import perf_counter
from typing import Callable
from uuid import uuid4

import httpx

from ledgerpay.common.config import settings
from ledgerpay.common.logging import log_context, logger
from ledgerpay.common.metrics import webhook_deliveries_total, webhook_delivery_seconds
from ledgerpay.services.ledger.models import Transaction
from ledgerpay.services.ledger.store import LedgerStore
from ledgerpay.services.notification.models import WebhookEndpoint
from ledgerpay.services.notification.signing import build_event, serialize_event, sign_payload


@dataclass(frozen=True)
class DeliveryResult:
    """Outcome of one endpoint attempt."""

    event_id: str
    endpoint_id: str
    transaction_id: str
    status_code: int | None
    response_body: str | None

    @property
    def delivered(self) -> bool:
        return self.status_code is not None and 200 <= self.status_code < 300


class Notifier:
    """Fans a committed transaction out to the owner's active webhook endpoints."""

    def __init__(
        self,
        store: LedgerStore,
        service_name: str = "ledger",
        timeout_seconds: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        on_delivery: Callable[[DeliveryResult], None] | None = None,
    ) -> None:
        self.store = store
        self.service_name = service_name
        self.timeout_seconds = timeout_seconds or settings.webhook_timeout_seconds
        self.transport = transport
        # Receives every attempt's result; the seam for a future retry queue.
        self.on_delivery = on_delivery
        self._loop: asyncio.AbstractEventLoop | None = None
        self._queue: asyncio.Queue | None = None
        self._inflight: set[asyncio.Task] = set()

    async def notify(self, transaction: Transaction, owner_id: str) -> list[DeliveryResult]:
        """Deliver to every active endpoint concurrently; never raises."""

        try:
            endpoints = await asyncio.to_thread(self.store.list_active_webhook_endpoints, owner_id)
        except Exception as exc:
            logger.error("webhook_endpoint_lookup_failed transaction_id=%s error=%s", transaction.id, exc)
            return []
        if not endpoints:
            return []

        async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self.transport) as client:
            results = await asyncio.gather(
                *(self._deliver(client, endpoint, transaction) for endpoint in endpoints)
            )
        return list(results)

    async def _deliver(
        self, client: httpx.AsyncClient, endpoint: WebhookEndpoint, transaction: Transaction
    ) -> DeliveryResult:
        event_id = str(uuid4())
        event = build_event(transaction, event_id)
        body = serialize_event(event)
        headers = {
            "Content-Type": "application/json",
            "X-Webhook-Signature": sign_payload(endpoint.secret, body),
            "X-Webhook-Event-Id": event_id,
        }

        started = perf_counter()
        status_code: int | None = None
        try:
            # httpx timeouts apply per network operation; this bounds the whole attempt.
            resp = await asyncio.wait_for(
                client.post(endpoint.url, content=body, headers=headers), self.timeout_seconds
            )
            status_code = resp.status_code
            response_body = resp.text
        except (httpx.HTTPError, asyncio.TimeoutError) as exc:
            if isinstance(exc, asyncio.TimeoutError):
                response_body = f"Request failed: timed out after {self.timeout_seconds}s"
            else:
                response_body = f"Request failed: {exc!r}"
            logger.error(
                "webhook_delivery_failed endpoint_id=%s url=%s transaction_id=%s error=%r",
                endpoint.id,
                endpoint.url,
                transaction.id,
                exc,
            )
        webhook_delivery_seconds.labels(service=self.service_name).observe(max(0.0, perf_counter() - started))

        result = DeliveryResult(
            event_id=event_id,
            endpoint_id=endpoint.id,
            transaction_id=transaction.id,
            status_code=status_code,
            response_body=response_body,
        )
        if result.delivered:
            webhook_deliveries_total.labels(service=self.service_name, outcome="delivered").inc()
        else:
            webhook_deliveries_total.labels(service=self.service_name, outcome="failed").inc()
            if status_code is not None:
                logger.warning(
                    "webhook_delivery_rejected endpoint_id=%s transaction_id=%s status=%s",
                    endpoint.id,
                    transaction.id,
                    status_code,
                )

        try:
            await asyncio.to_thread(
                self.store.insert_webhook_event,
                id=event_id,
                webhook_endpoint_id=endpoint.id,
                transaction_id=transaction.id,
                payload=event,
                response_status=status_code,
                response_body=response_body,
            )
        except Exception as exc:
            logger.error("webhook_event_record_failed event_id=%s error=%s", event_id, exc)

        if self.on_delivery is not None:
            try:
                self.on_delivery(result)
            except Exception as exc:
                logger.error("webhook_delivery_hook_failed event_id=%s error=%s", event_id, exc)
        return result

    def dispatch(self, transaction: Transaction, owner_id: str) -> None:
        """Hand a committed transaction to the background loop; safe from any thread.

        When the loop is not running the notification is dropped, which is
        consistent with single-attempt delivery.
        """

        loop, queue = self._loop, self._queue
        if loop is None or queue is None or loop.is_closed():
            logger.warning("webhook_dispatch_dropped transaction_id=%s reason=notifier_not_running", transaction.id)
            webhook_deliveries_total.labels(service=self.service_name, outcome="dropped").inc()
            return
        loop.call_soon_threadsafe(queue.put_nowait, (transaction, owner_id))

    async def run_forever(self) -> None:
        """Consume dispatched transactions until cancelled."""

        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        try:
            while True:
                transaction, owner_id = await self._queue.get()
                task = asyncio.create_task(self._notify_in_context(transaction, owner_id))
                self._inflight.add(task)
                task.add_done_callback(self._inflight.discard)
        finally:
            self._loop = None
            self._queue = None
            await self._drain_inflight()

    async def _drain_inflight(self) -> None:
        """Cancel deliveries still running at shutdown and wait for them to unwind."""

        pending = list(self._inflight)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning("webhook_deliveries_cancelled count=%s reason=shutdown", len(pending))

    async def _notify_in_context(self, transaction: Transaction, owner_id: str) -> None:
        with log_context(transaction_id=transaction.id):
            try:
                await self.notify(transaction, owner_id)
            except Exception as exc:
                logger.exception("webhook_notify_failed transaction_id=%s error=%s", transaction.id, exc)
