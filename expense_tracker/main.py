import threading
from dataclasses import replace
from datetime import date
from decimal import Decimal

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from expense_tracker.aggregation import compute_totals, sorted_by_date_desc
from expense_tracker.config import configure_logging, load_settings
from expense_tracker.currency_conversion import ExchangeRateApiProvider
from expense_tracker.ledger_store import LedgerStore
from expense_tracker.storage import KeyValueStore, create_store_engine
from expense_tracker.transactions import (
    NeedsManualRate,
    Transaction,
    TransactionForm,
    allowed_payment_methods,
    default_form,
    normalize_transaction,
)

settings = load_settings()
configure_logging(settings.log_level)

app = FastAPI(title="Expense Tracker")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.frontend_origin],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

BASE_CURRENCY = settings.base_currency
engine = create_store_engine(settings.database_url)
ledger_store = LedgerStore(KeyValueStore(engine))
rate_provider = ExchangeRateApiProvider(
    api_key=settings.exchange_rate_api_key,
    base_url=settings.exchange_rate_api_base_url,
    timeout_seconds=settings.exchange_rate_timeout_seconds,
)

PENDING_ID = 0

# Submissions and resets both rewrite the whole snapshot; one at a time.
ledger_lock = threading.Lock()


@app.on_event("startup")
def init_ledger() -> None:
    ledger_store.load()


class TransactionResponse(BaseModel):
    id: int
    date: str
    description: str
    category: str
    amount: Decimal
    currency: str
    payment_method: str
    type: str
    base_amount: Decimal
    base_currency: str
    exchange_rate: Decimal


class SummaryResponse(BaseModel):
    income: Decimal
    expense: Decimal
    net: Decimal
    base_currency: str
    entry_count: int


def to_response(transaction: Transaction) -> TransactionResponse:
    return TransactionResponse(
        id=transaction.id,
        date=transaction.date,
        description=transaction.description,
        category=transaction.category,
        amount=transaction.amount,
        currency=transaction.currency,
        payment_method=transaction.payment_method,
        type=transaction.type,
        base_amount=transaction.base_amount,
        base_currency=transaction.base_currency,
        exchange_rate=transaction.exchange_rate,
    )


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.get("/transactions", response_model=list[TransactionResponse])
def list_transactions() -> list[TransactionResponse]:
    return [to_response(txn) for txn in sorted_by_date_desc(ledger_store.transactions)]


@app.get("/transactions/form-defaults", response_model=TransactionForm)
def form_defaults() -> TransactionForm:
    return default_form(BASE_CURRENCY, date.today())


@app.post("/transactions", response_model=TransactionResponse)
def create_transaction(payload: TransactionForm) -> TransactionResponse:
    # Rate lookup happens outside the lock; the id is assigned under it.
    try:
        result = normalize_transaction(
            payload,
            BASE_CURRENCY,
            PENDING_ID,
            rate_provider=rate_provider,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    if isinstance(result, NeedsManualRate):
        raise HTTPException(
            status_code=409,
            detail={
                "code": "manual_rate_required",
                "message": "Currency not recognised. Input exchange rate.",
                "currency": result.currency,
                "base_currency": result.base_currency,
            },
        )

    with ledger_lock:
        transaction = replace(result, id=ledger_store.next_id)
        try:
            ledger_store.append(transaction)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
    return to_response(transaction)


@app.post("/transactions/reset", response_model=list[TransactionResponse])
def reset_transactions() -> list[TransactionResponse]:
    with ledger_lock:
        transactions = ledger_store.reset()
    return [to_response(txn) for txn in sorted_by_date_desc(transactions)]


@app.get("/payment-methods", response_model=list[str])
def payment_methods(type: str = Query("Expense")) -> list[str]:
    try:
        return allowed_payment_methods(type)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.get("/summary", response_model=SummaryResponse)
def summary() -> SummaryResponse:
    transactions = ledger_store.transactions
    totals = compute_totals(transactions)
    return SummaryResponse(
        income=totals.income,
        expense=totals.expense,
        net=totals.net,
        base_currency=BASE_CURRENCY,
        entry_count=len(transactions),
    )
