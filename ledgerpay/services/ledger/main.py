"""Ledger service API + lifecycle.

Exposes credit/debit/transfer, account and webhook-endpoint management, and
runs the webhook notifier loop alongside the application.
"""

import asyncio
from contextlib import asynccontextmanager, suppress
from time import perf_counter
from uuid import uuid4

from fastapi import Depends, FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy import select, text

from ledgerpay.common.config import settings
from ledgerpay.common.db import Base, SessionLocal, engine
from ledgerpay.common.errors import AccountNotFound, InvalidRequest, LedgerError, StoreUnavailable
from ledgerpay.common.logging import configure_logging, log_context, logger
from ledgerpay.common.metrics import http_request_duration_seconds, http_requests_total, metrics_response
from ledgerpay.common.startup import ensure_schema, log_startup_config
from ledgerpay.common.tracing import instrument_app, setup_tracing
from ledgerpay.services.ledger.auth import Caller, require_caller
from ledgerpay.services.ledger.models import Account
from ledgerpay.services.ledger.schemas import (
    AccountResponse,
    CreateAccountRequest,
    CreditOperation,
    CreditRequest,
    DebitOperation,
    DebitRequest,
    TransactionResponse,
    TransactionResult,
    TransferOperation,
    TransferRequest,
    as_utc,
)
from ledgerpay.services.ledger.service import TransactionEngine
from ledgerpay.services.ledger.store import LedgerStore
from ledgerpay.services.notification.registry import WebhookRegistry
from ledgerpay.services.notification.service import Notifier

configure_logging()
setup_tracing(settings.service_name)
log_startup_config(
    settings.service_name,
    ["SERVICE_NAME", "DATABASE_URL", "LOG_LEVEL", "WEBHOOK_TIMEOUT_SECONDS", "AUTO_CREATE_SCHEMA"],
)
store = LedgerStore(SessionLocal)
notifier = Notifier(store, service_name=settings.service_name)
ledger = TransactionEngine(store, notifier=notifier, service_name=settings.service_name)
webhooks = WebhookRegistry(SessionLocal)


@asynccontextmanager
async def lifespan(_: FastAPI):
    """Optionally bootstrap the schema and run the notifier loop."""

    if settings.auto_create_schema:
        ensure_schema(engine, Base.metadata)
    notifier_task = asyncio.create_task(notifier.run_forever())
    yield
    notifier_task.cancel()
    # run_forever cancels its in-flight deliveries before re-raising.
    with suppress(asyncio.CancelledError):
        await notifier_task


app = FastAPI(title="LedgerPay Ledger Service", lifespan=lifespan)
instrument_app(app)


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    """Record request count and latency, and bind a trace id for logging."""

    start = perf_counter()
    route = request.url.path
    method = request.method
    status_code = 500
    try:
        with log_context(trace_id=request.headers.get("x-trace-id") or str(uuid4())):
            response = await call_next(request)
        status_code = response.status_code
        route_obj = request.scope.get("route")
        if route_obj is not None and getattr(route_obj, "path", None):
            route = route_obj.path
        return response
    finally:
        elapsed = max(0.0, perf_counter() - start)
        http_request_duration_seconds.labels(
            service=settings.service_name,
            route=route,
            method=method,
        ).observe(elapsed)
        http_requests_total.labels(
            service=settings.service_name,
            route=route,
            method=method,
            status_code=str(status_code),
        ).inc()


@app.exception_handler(LedgerError)
async def ledger_error_handler(_: Request, exc: LedgerError):
    """Render every ledger error as `{"error": {"code", "message"}}`."""

    body = {"error": {"code": exc.code, "message": exc.detail}}
    if exc.status_code >= 500:
        logger.error("request_failed code=%s error=%s", exc.code, exc)
        body["error"]["message"] = exc.message
    return JSONResponse(status_code=exc.status_code, content=body)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Malformed bodies use the same error shape as ledger errors."""

    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = f"{location}: {first.get('msg')}" if location else InvalidRequest.message
    return await ledger_error_handler(request, InvalidRequest(message))


def _transaction_response(result: TransactionResult, response: Response) -> TransactionResponse:
    # First application answers 201; an idempotent replay answers 200.
    response.status_code = 200 if result.replayed else 201
    return TransactionResponse.from_transaction(result.transaction)


@app.post("/api/v1/transactions/credit", response_model=TransactionResponse, status_code=201)
def create_credit(req: CreditRequest, response: Response, caller: Caller = Depends(require_caller)):
    """Add money to one of the caller's accounts."""

    result = ledger.credit(
        CreditOperation(
            caller_id=caller.id,
            account_id=req.account_id,
            amount_cents=req.amount_cents,
            description=req.description,
            idempotency_key=req.idempotency_key,
            metadata=req.metadata,
        )
    )
    return _transaction_response(result, response)


@app.post("/api/v1/transactions/debit", response_model=TransactionResponse, status_code=201)
def create_debit(req: DebitRequest, response: Response, caller: Caller = Depends(require_caller)):
    """Remove money from one of the caller's accounts."""

    result = ledger.debit(
        DebitOperation(
            caller_id=caller.id,
            account_id=req.account_id,
            amount_cents=req.amount_cents,
            description=req.description,
            idempotency_key=req.idempotency_key,
            metadata=req.metadata,
        )
    )
    return _transaction_response(result, response)


@app.post("/api/v1/transactions/transfer", response_model=TransactionResponse, status_code=201)
def create_transfer(req: TransferRequest, response: Response, caller: Caller = Depends(require_caller)):
    """Move money between two of the caller's accounts."""

    result = ledger.transfer(
        TransferOperation(
            caller_id=caller.id,
            from_account_id=req.from_account_id,
            to_account_id=req.to_account_id,
            amount_cents=req.amount_cents,
            description=req.description,
            idempotency_key=req.idempotency_key,
            metadata=req.metadata,
        )
    )
    return _transaction_response(result, response)


@app.get("/api/v1/transactions/{transaction_id}", response_model=TransactionResponse)
def get_transaction(transaction_id: str, caller: Caller = Depends(require_caller)):
    """Fetch one transaction touching the caller's accounts."""

    return TransactionResponse.from_transaction(ledger.get_transaction(caller.id, transaction_id))


@app.post("/api/v1/accounts", response_model=AccountResponse, status_code=201)
def create_account(req: CreateAccountRequest, caller: Caller = Depends(require_caller)):
    """Open an account owned by the caller."""

    with SessionLocal() as db:
        account = Account(
            owner_id=caller.id,
            account_name=req.account_name,
            currency=req.currency.upper(),
            balance_cents=req.initial_balance_cents,
        )
        db.add(account)
        db.commit()
    logger.info("account_created account_id=%s", account.id)
    return AccountResponse.from_account(account)


@app.get("/api/v1/accounts/{account_id}", response_model=AccountResponse)
def get_account(account_id: str, caller: Caller = Depends(require_caller)):
    """Return one account; other callers' accounts are reported as missing."""

    with SessionLocal() as db:
        account = db.execute(
            select(Account).where(Account.id == account_id, Account.owner_id == caller.id)
        ).scalar_one_or_none()
    if account is None:
        raise AccountNotFound()
    return AccountResponse.from_account(account)


@app.get("/api/v1/accounts", response_model=list[AccountResponse])
def list_accounts(caller: Caller = Depends(require_caller)):
    """List the caller's accounts, newest first."""

    with SessionLocal() as db:
        accounts = db.execute(
            select(Account).where(Account.owner_id == caller.id).order_by(Account.created_at.desc())
        ).scalars().all()
    return [AccountResponse.from_account(a) for a in accounts]


class WebhookEndpointRequest(BaseModel):
    """Body for `POST /api/v1/webhooks`."""

    url: str = Field(min_length=1)


@app.post("/api/v1/webhooks", status_code=201)
def create_webhook(req: WebhookEndpointRequest, caller: Caller = Depends(require_caller)):
    """Register an endpoint; the signing secret is only ever returned here."""

    endpoint = webhooks.create_endpoint(caller.id, req.url)
    return {
        "id": endpoint.id,
        "url": endpoint.url,
        "secret": endpoint.secret,
        "is_active": endpoint.is_active,
        "created_at": as_utc(endpoint.created_at),
    }


@app.get("/api/v1/webhooks")
def list_webhooks(caller: Caller = Depends(require_caller)):
    """List active endpoints without their secrets."""

    return [
        {
            "id": endpoint.id,
            "url": endpoint.url,
            "is_active": endpoint.is_active,
            "created_at": as_utc(endpoint.created_at),
        }
        for endpoint in webhooks.list_endpoints(caller.id)
    ]


@app.delete("/api/v1/webhooks/{webhook_id}", status_code=204)
def delete_webhook(webhook_id: str, caller: Caller = Depends(require_caller)):
    """Soft-delete an endpoint; it stops receiving deliveries."""

    webhooks.deactivate_endpoint(caller.id, webhook_id)
    return Response(status_code=204)


@app.get("/metrics")
def metrics():
    """Prometheus scrape endpoint."""

    return metrics_response()


@app.get("/health")
def health():
    """Container health probe endpoint; checks database connectivity."""

    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
    except Exception as exc:
        raise StoreUnavailable() from exc
    return {"status": "healthy", "database": "connected"}
