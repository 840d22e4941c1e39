import unittest
from datetime import date
from decimal import Decimal
from unittest import mock

from expense_tracker.currency_conversion import RateProviderUnavailable
from expense_tracker.transactions import (
    NeedsManualRate,
    Transaction,
    TransactionForm,
    TransactionValidationError,
    allowed_payment_methods,
    default_form,
    normalize_transaction,
)


def make_form(**overrides) -> TransactionForm:
    values = {
        "date": "2025-03-09",
        "description": " Coffee beans ",
        "amount": Decimal("100"),
        "currency": "SGD",
        "category": " Groceries ",
        "payment_method": "Cash",
        "type": "Expense",
    }
    values.update(overrides)
    return TransactionForm(**values)


class NormalizeTransactionTests(unittest.TestCase):
    def setUp(self) -> None:
        self.provider = mock.Mock()
        self.provider.get_rate.return_value = Decimal("1.35")

    def test_base_currency_amount_is_unchanged(self) -> None:
        txn = normalize_transaction(make_form(), "SGD", 7, rate_provider=self.provider)

        self.assertIsInstance(txn, Transaction)
        self.assertEqual(txn.id, 7)
        self.assertEqual(txn.base_amount, Decimal("100"))
        self.assertEqual(txn.exchange_rate, Decimal("1"))
        self.assertEqual(txn.base_currency, "SGD")
        self.provider.get_rate.assert_not_called()

    def test_foreign_currency_uses_remote_rate(self) -> None:
        form = make_form(amount=Decimal("50"), currency="usd")

        txn = normalize_transaction(form, "SGD", 1, rate_provider=self.provider)

        self.assertEqual(txn.currency, "USD")
        self.assertEqual(txn.exchange_rate, Decimal("1.35"))
        self.assertEqual(txn.base_amount, Decimal("67.5"))
        self.provider.get_rate.assert_called_once_with("USD", "SGD")

    def test_manual_rate_is_used_without_lookup(self) -> None:
        form = make_form(amount=Decimal("20"), currency="EUR", exchange_rate=Decimal("1.5"))

        txn = normalize_transaction(form, "SGD", 1, rate_provider=self.provider)

        self.assertEqual(txn.base_amount, Decimal("30"))
        self.assertEqual(txn.exchange_rate, Decimal("1.5"))
        self.provider.get_rate.assert_not_called()

    def test_unreachable_service_needs_manual_rate(self) -> None:
        self.provider.get_rate.side_effect = RateProviderUnavailable("Down")

        with self.assertLogs("expense_tracker.currency_conversion", level="WARNING"):
            result = normalize_transaction(
                make_form(currency="USD"), "SGD", 1, rate_provider=self.provider
            )

        self.assertIsInstance(result, NeedsManualRate)
        self.assertEqual(result.currency, "USD")
        self.assertEqual(result.base_currency, "SGD")

    def test_base_amount_equals_amount_times_rate(self) -> None:
        for amount, rate in (("12.34", "0.7421"), ("0.01", "3.14159"), ("999.99", "1")):
            with self.subTest(amount=amount, rate=rate):
                form = make_form(amount=Decimal(amount), currency="JPY", exchange_rate=Decimal(rate))
                txn = normalize_transaction(form, "SGD", 1)
                self.assertEqual(txn.base_amount, txn.amount * txn.exchange_rate)

    def test_base_currency_is_injected(self) -> None:
        txn = normalize_transaction(
            make_form(currency="EUR"), "eur", 1, rate_provider=self.provider
        )

        self.assertEqual(txn.base_currency, "EUR")
        self.assertEqual(txn.exchange_rate, Decimal("1"))

    def test_date_is_reformatted_and_text_trimmed(self) -> None:
        txn = normalize_transaction(make_form(date="2024-12-31"), "SGD", 1)

        self.assertEqual(txn.date, "31-12-2024")
        self.assertEqual(txn.description, "Coffee beans")
        self.assertEqual(txn.category, "Groceries")

    def test_type_and_payment_method_are_canonicalised(self) -> None:
        txn = normalize_transaction(
            make_form(type="income", payment_method="bank transfer"), "SGD", 1
        )

        self.assertEqual(txn.type, "Income")
        self.assertEqual(txn.payment_method, "Bank Transfer")


class ValidationTests(unittest.TestCase):
    def assert_rejected(self, field: str, message: str, **overrides) -> None:
        provider = mock.Mock()
        with self.assertRaises(TransactionValidationError) as ctx:
            normalize_transaction(make_form(**overrides), "SGD", 1, rate_provider=provider)
        self.assertEqual(ctx.exception.field, field)
        self.assertEqual(str(ctx.exception), message)
        provider.get_rate.assert_not_called()

    def test_income_paid_by_card_is_rejected(self) -> None:
        self.assert_rejected(
            "payment_method",
            "Income must be recorded as Cash or Bank Transfer.",
            type="Income",
            payment_method="Credit Card",
            currency="USD",
        )

    def test_unknown_expense_method_is_rejected(self) -> None:
        self.assert_rejected("payment_method", "Select a valid payment method.", payment_method="Cheque")

    def test_invalid_dates_are_rejected(self) -> None:
        for value in ("", "2025-02-30", "31-12-2024", "not a date"):
            with self.subTest(value=value):
                self.assert_rejected("date", "Select a valid date.", date=value)

    def test_non_positive_amount_is_rejected(self) -> None:
        for value in (Decimal("0"), Decimal("-5"), None):
            with self.subTest(value=value):
                self.assert_rejected("amount", "Enter a valid amount greater than zero.", amount=value)

    def test_bad_currency_is_rejected(self) -> None:
        for value in ("US", "US1", "DOLLAR"):
            with self.subTest(value=value):
                self.assert_rejected("currency", "Enter a valid 3-letter currency code.", currency=value)

    def test_blank_category_is_rejected(self) -> None:
        self.assert_rejected("category", "Category is required.", category="   ")

    def test_unknown_type_is_rejected(self) -> None:
        self.assert_rejected("type", "Select a valid transaction type.", type="Transfer")

    def test_negative_manual_rate_is_rejected(self) -> None:
        self.assert_rejected(
            "exchange_rate", "Enter a valid exchange rate.", currency="USD", exchange_rate=Decimal("-1")
        )

    def test_amount_beyond_float_range_is_rejected(self) -> None:
        self.assert_rejected("amount", "Amount is too large.", amount=Decimal("1e400"))

    def test_manual_rate_beyond_float_range_is_rejected(self) -> None:
        self.assert_rejected(
            "exchange_rate", "Enter a valid exchange rate.", currency="USD", exchange_rate=Decimal("1e400")
        )

    def test_converted_amount_beyond_float_range_is_rejected(self) -> None:
        provider = mock.Mock()
        provider.get_rate.return_value = Decimal("10")

        with self.assertRaises(TransactionValidationError) as ctx:
            normalize_transaction(
                make_form(amount=Decimal("1e308"), currency="USD"), "SGD", 1, rate_provider=provider
            )

        self.assertEqual(ctx.exception.field, "amount")
        self.assertEqual(str(ctx.exception), "Amount is too large to convert to SGD.")


class TransactionRecordTests(unittest.TestCase):
    def test_record_round_trip_uses_camel_case_keys(self) -> None:
        txn = normalize_transaction(
            make_form(currency="USD", exchange_rate=Decimal("1.3")), "SGD", 4
        )

        record = txn.to_record()

        self.assertEqual(record["paymentMethod"], "Cash")
        self.assertEqual(record["baseAmount"], Decimal("130.0"))
        self.assertEqual(Transaction.from_record(record), txn)

    def test_missing_exchange_rate_is_derived(self) -> None:
        txn = Transaction.from_record(
            {
                "id": 3,
                "date": "01-02-2025",
                "description": "Book",
                "amount": 10,
                "category": "Books",
                "paymentMethod": "Cash",
                "type": "Expense",
                "currency": "USD",
                "baseAmount": 13.5,
                "baseCurrency": "SGD",
            }
        )

        self.assertEqual(txn.exchange_rate, Decimal("1.35"))

    def test_malformed_record_raises_value_error(self) -> None:
        with self.assertRaises(ValueError):
            Transaction.from_record({"id": 1, "date": "2025-01-01"})


class FormDefaultsTests(unittest.TestCase):
    def test_default_form_uses_base_currency_and_today(self) -> None:
        form = default_form("sgd", today=date(2025, 6, 1))

        self.assertEqual(form.date, "2025-06-01")
        self.assertEqual(form.currency, "SGD")
        self.assertEqual(form.category, "Food & Drink")
        self.assertEqual(form.payment_method, "Cash")
        self.assertEqual(form.type, "Expense")

    def test_allowed_payment_methods_depend_on_type(self) -> None:
        self.assertEqual(allowed_payment_methods("Income"), ["Cash", "Bank Transfer"])
        self.assertEqual(
            allowed_payment_methods("Expense"),
            ["Cash", "Credit Card", "Debit Card", "Bank Transfer"],
        )


if __name__ == "__main__":
    unittest.main()
