"""Error taxonomy for ledger operations.

Every error carries a stable machine-readable `code` and the HTTP status the
API layer answers with.
"""


class LedgerError(Exception):
    """Base class for errors surfaced to callers."""

    code = "internal_error"
    status_code = 500
    message = "An internal error occurred"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.message)

    @property
    def detail(self) -> str:
        return str(self)


class InvalidRequest(LedgerError):
    code = "invalid_request"
    status_code = 400
    message = "Invalid request"


class InvalidAmount(InvalidRequest):
    code = "invalid_amount"
    message = "Amount must be positive"


class SameAccount(InvalidRequest):
    code = "same_account"
    message = "Cannot transfer to same account"


class CurrencyMismatch(InvalidRequest):
    code = "currency_mismatch"
    message = "Accounts must share a currency"


class InvalidWebhookUrl(InvalidRequest):
    code = "invalid_webhook_url"
    message = "Invalid webhook URL"


class InvalidApiKey(LedgerError):
    code = "invalid_api_key"
    status_code = 401
    message = "Invalid API key"


class AccountNotFound(LedgerError):
    code = "account_not_found"
    status_code = 404
    message = "Account not found"


class TransactionNotFound(LedgerError):
    code = "transaction_not_found"
    status_code = 404
    message = "Transaction not found"


class WebhookNotFound(LedgerError):
    code = "webhook_not_found"
    status_code = 404
    message = "Webhook endpoint not found"


class InsufficientFunds(LedgerError):
    """Balance precondition failed; keeps both numbers for diagnosis."""

    code = "insufficient_funds"
    status_code = 422

    def __init__(self, amount_cents: int, balance_cents: int) -> None:
        self.amount_cents = amount_cents
        self.balance_cents = balance_cents
        super().__init__(
            f"Insufficient funds: attempted {amount_cents}, available {balance_cents}"
        )


class StoreUnavailable(LedgerError):
    """Transient storage failure; safe to retry with the same idempotency key."""

    code = "store_unavailable"
    status_code = 503
    message = "Ledger store unavailable"
