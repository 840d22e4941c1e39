from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, List

from expense_tracker.transactions import Transaction, TransactionType, parse_display_date

ZERO = Decimal("0")


@dataclass(frozen=True)
class LedgerTotals:
    income: Decimal
    expense: Decimal
    net: Decimal


def compute_totals(transactions: Iterable[Transaction]) -> LedgerTotals:
    """Sum base-currency amounts per type in a single pass."""
    income = ZERO
    expense = ZERO
    for txn in transactions:
        if txn.type == TransactionType.INCOME:
            income += _coerce_amount(txn.base_amount)
        elif txn.type == TransactionType.EXPENSE:
            expense += _coerce_amount(txn.base_amount)
    return LedgerTotals(income=income, expense=expense, net=income - expense)


def sorted_by_date_desc(transactions: Iterable[Transaction]) -> List[Transaction]:
    # sorted() stays stable with reverse=True, so same-day entries keep ledger order
    return sorted(transactions, key=lambda txn: parse_display_date(txn.date), reverse=True)


def _coerce_amount(amount: Decimal) -> Decimal:
    if isinstance(amount, Decimal):
        return amount
    return Decimal(str(amount))
