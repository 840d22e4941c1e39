from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
import math
from typing import Any, Mapping

from pydantic import BaseModel

from expense_tracker.currency_conversion import (
    RateProvider,
    Unresolved,
    normalize_currency,
    resolve_rate,
)

INPUT_DATE_FORMAT = "%Y-%m-%d"
DISPLAY_DATE_FORMAT = "%d-%m-%Y"
DEFAULT_CATEGORY = "Food & Drink"
ONE = Decimal("1")
ZERO = Decimal("0")


class TransactionType:
    EXPENSE = "Expense"
    INCOME = "Income"
    values = (EXPENSE, INCOME)

    @classmethod
    def validate(cls, value: str) -> str:
        normalized = value.strip().lower()
        for option in cls.values:
            if option.lower() == normalized:
                return option
        raise TransactionValidationError("type", "Select a valid transaction type.")


class PaymentMethod:
    CASH = "Cash"
    CREDIT_CARD = "Credit Card"
    DEBIT_CARD = "Debit Card"
    BANK_TRANSFER = "Bank Transfer"
    expense_values = (CASH, CREDIT_CARD, DEBIT_CARD, BANK_TRANSFER)
    income_values = (CASH, BANK_TRANSFER)

    @classmethod
    def allowed_for(cls, transaction_type: str) -> tuple[str, ...]:
        if TransactionType.validate(transaction_type) == TransactionType.INCOME:
            return cls.income_values
        return cls.expense_values

    @classmethod
    def validate(cls, value: str, transaction_type: str) -> str:
        normalized = " ".join(value.split()).lower()
        canonical = next(
            (option for option in cls.expense_values if option.lower() == normalized),
            None,
        )
        if transaction_type == TransactionType.INCOME:
            if canonical not in cls.income_values:
                raise TransactionValidationError(
                    "payment_method", "Income must be recorded as Cash or Bank Transfer."
                )
        elif canonical is None:
            raise TransactionValidationError("payment_method", "Select a valid payment method.")
        return canonical


class TransactionValidationError(ValueError):
    def __init__(self, field: str, message: str) -> None:
        super().__init__(message)
        self.field = field
        self.message = message


@dataclass(frozen=True)
class Transaction:
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

    def to_record(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "date": self.date,
            "description": self.description,
            "amount": self.amount,
            "category": self.category,
            "paymentMethod": self.payment_method,
            "type": self.type,
            "currency": self.currency,
            "baseAmount": self.base_amount,
            "baseCurrency": self.base_currency,
            "exchangeRate": self.exchange_rate,
        }

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Transaction":
        """Build a transaction from its stored JSON form.

        Raises ``ValueError`` for any missing or malformed field. Records
        written before ``exchangeRate`` was stored get it derived from the
        two amounts.
        """
        if not isinstance(record, Mapping):
            raise ValueError("Transaction record must be an object.")
        try:
            record_id = record["id"]
            if isinstance(record_id, bool) or not isinstance(record_id, int):
                raise ValueError("Transaction id must be an integer.")
            display_date = format_display_date(parse_display_date(str(record["date"])))
            amount = _coerce_decimal(record["amount"])
            base_amount = _coerce_decimal(record["baseAmount"])
            currency = normalize_currency(str(record["currency"]))
            base_currency = normalize_currency(str(record["baseCurrency"]))
            transaction_type = TransactionType.validate(str(record["type"]))
            payment_method = PaymentMethod.validate(
                str(record["paymentMethod"]), transaction_type
            )
            raw_rate = record.get("exchangeRate")
        except KeyError as exc:
            raise ValueError(f"Transaction record missing field {exc.args[0]!r}.") from exc

        if raw_rate is not None:
            exchange_rate = _coerce_decimal(raw_rate)
        elif currency == base_currency:
            exchange_rate = ONE
        elif amount != ZERO:
            exchange_rate = base_amount / amount
        else:
            raise ValueError("Transaction record missing exchangeRate.")

        return cls(
            id=record_id,
            date=display_date,
            description=str(record.get("description") or "").strip(),
            category=str(record.get("category") or "").strip(),
            amount=amount,
            currency=currency,
            payment_method=payment_method,
            type=transaction_type,
            base_amount=base_amount,
            base_currency=base_currency,
            exchange_rate=exchange_rate,
        )


@dataclass(frozen=True)
class NeedsManualRate:
    currency: str
    base_currency: str
    reason: str


class TransactionForm(BaseModel):
    date: str = ""
    description: str = ""
    amount: Decimal | None = None
    currency: str = ""
    category: str = ""
    payment_method: str = PaymentMethod.CASH
    type: str = TransactionType.EXPENSE
    exchange_rate: Decimal | None = None

    @classmethod
    def validate_payload(cls, payload: "TransactionForm") -> "TransactionForm":
        parsed_date = parse_input_date(payload.date)
        if parsed_date is None:
            raise TransactionValidationError("date", "Select a valid date.")
        payload.date = parsed_date.isoformat()

        if payload.amount is None or not payload.amount.is_finite() or payload.amount <= 0:
            raise TransactionValidationError("amount", "Enter a valid amount greater than zero.")
        if not fits_json_number(payload.amount):
            raise TransactionValidationError("amount", "Amount is too large.")

        try:
            payload.currency = normalize_currency(payload.currency)
        except ValueError as exc:
            raise TransactionValidationError(
                "currency", "Enter a valid 3-letter currency code."
            ) from exc

        payload.category = payload.category.strip()
        if not payload.category:
            raise TransactionValidationError("category", "Category is required.")
        payload.description = payload.description.strip()

        payload.type = TransactionType.validate(payload.type)
        payload.payment_method = PaymentMethod.validate(payload.payment_method, payload.type)

        if payload.exchange_rate is not None:
            if (
                not payload.exchange_rate.is_finite()
                or payload.exchange_rate < 0
                or not fits_json_number(payload.exchange_rate)
            ):
                raise TransactionValidationError("exchange_rate", "Enter a valid exchange rate.")
            if payload.exchange_rate == 0:
                payload.exchange_rate = None
        return payload


def normalize_transaction(
    form: TransactionForm,
    base_currency: str,
    transaction_id: int,
    rate_provider: RateProvider | None = None,
) -> Transaction | NeedsManualRate:
    """Turn raw form input into a finished transaction.

    Validation failures raise ``TransactionValidationError``. When the rate
    cannot be resolved the result is ``NeedsManualRate`` and nothing is
    built; the caller re-prompts for a manual rate and submits again.
    """
    form = TransactionForm.validate_payload(form)
    base = normalize_currency(base_currency)
    amount = form.amount

    if form.currency == base:
        base_amount = amount
        exchange_rate = ONE
    else:
        resolution = resolve_rate(
            form.currency,
            base,
            manual_rate=form.exchange_rate,
            rate_provider=rate_provider,
        )
        if isinstance(resolution, Unresolved):
            return NeedsManualRate(
                currency=form.currency,
                base_currency=base,
                reason=resolution.reason,
            )
        exchange_rate = resolution.rate
        base_amount = amount * exchange_rate
        if not fits_json_number(base_amount):
            raise TransactionValidationError(
                "amount", f"Amount is too large to convert to {base}."
            )

    return Transaction(
        id=transaction_id,
        date=format_display_date(date.fromisoformat(form.date)),
        description=form.description,
        category=form.category,
        amount=amount,
        currency=form.currency,
        payment_method=form.payment_method,
        type=form.type,
        base_amount=base_amount,
        base_currency=base,
        exchange_rate=exchange_rate,
    )


def default_form(base_currency: str, today: date | None = None) -> TransactionForm:
    return TransactionForm(
        date=(today or date.today()).isoformat(),
        currency=normalize_currency(base_currency),
        category=DEFAULT_CATEGORY,
    )


def allowed_payment_methods(transaction_type: str) -> list[str]:
    return list(PaymentMethod.allowed_for(transaction_type))


def parse_input_date(value: str | None) -> date | None:
    cleaned = value.strip() if value else ""
    if not cleaned:
        return None
    try:
        return datetime.strptime(cleaned, INPUT_DATE_FORMAT).date()
    except ValueError:
        return None


def parse_display_date(value: str) -> date:
    try:
        return datetime.strptime(value.strip(), DISPLAY_DATE_FORMAT).date()
    except ValueError as exc:
        raise ValueError("Date must be in DD-MM-YYYY format.") from exc


def format_display_date(value: date) -> str:
    return value.strftime(DISPLAY_DATE_FORMAT)


def fits_json_number(value: Decimal) -> bool:
    # snapshots store amounts as JSON floats
    return math.isfinite(float(value))


def _coerce_decimal(value: Any) -> Decimal:
    if isinstance(value, bool):
        raise ValueError("Amount must be a number.")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError("Amount must be a number.") from exc
    if not amount.is_finite():
        raise ValueError("Amount must be a finite number.")
    return amount
