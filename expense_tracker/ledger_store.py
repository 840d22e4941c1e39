from __future__ import annotations

from decimal import Decimal
import json
import logging
from pathlib import Path
from typing import Any, Iterable

from expense_tracker.storage import KeyValueStore
from expense_tracker.transactions import Transaction

logger = logging.getLogger(__name__)

TRANSACTIONS_KEY = "expense-transactions"
SEED_PATH = Path(__file__).parent / "data" / "transactions.json"


class StorageCorrupt(ValueError):
    """Raised when the stored ledger snapshot cannot be parsed."""


class LedgerStore:
    """Most-recent-first ledger persisted as one JSON snapshot.

    Every mutation rewrites the full snapshot. Ids come from a counter kept
    in a second slot next to the snapshot, so they never go backwards after
    appends.
    """

    def __init__(
        self,
        store: KeyValueStore,
        seed_path: Path = SEED_PATH,
        storage_key: str = TRANSACTIONS_KEY,
    ) -> None:
        self.store = store
        self.seed_path = Path(seed_path)
        self.storage_key = storage_key
        self.counter_key = f"{storage_key}:next-id"
        self._transactions: list[Transaction] | None = None
        self._next_id = 1

    @property
    def transactions(self) -> tuple[Transaction, ...]:
        if self._transactions is None:
            self.load()
        return tuple(self._transactions)

    @property
    def next_id(self) -> int:
        if self._transactions is None:
            self.load()
        return self._next_id

    def load(self) -> list[Transaction]:
        raw = self.store.get(self.storage_key)
        if raw is None:
            logger.info("No stored ledger under %r; seeding", self.storage_key)
            transactions = self.load_seed()
        else:
            try:
                transactions = parse_snapshot(raw)
            except StorageCorrupt as exc:
                logger.warning("Stored ledger is corrupt, reseeding: %s", exc)
                transactions = self.load_seed()

        self._transactions = transactions
        self._next_id = max(self._stored_counter(), _next_id_after(transactions))
        self._persist()
        return list(transactions)

    def append(self, transaction: Transaction) -> None:
        """Prepend ``transaction`` and rewrite the snapshot.

        The snapshot is encoded before anything changes, so a transaction
        that cannot be stored raises ``ValueError`` and leaves the ledger as
        it was.
        """
        if self._transactions is None:
            self.load()
        transactions = [transaction, *self._transactions]
        snapshot = dump_snapshot(transactions)
        self._transactions = transactions
        self._next_id = max(self._next_id, transaction.id + 1)
        self._write(snapshot)
        logger.info("Appended transaction id=%d entries=%d", transaction.id, len(self._transactions))

    def reset(self) -> list[Transaction]:
        self.store.remove(self.storage_key)
        self.store.remove(self.counter_key)
        self._transactions = self.load_seed()
        self._next_id = _next_id_after(self._transactions)
        self._persist()
        logger.info("Ledger reset to seed entries=%d", len(self._transactions))
        return list(self._transactions)

    def load_seed(self) -> list[Transaction]:
        return [
            Transaction.from_record(record)
            for record in json.loads(self.seed_path.read_text(encoding="utf-8"), parse_float=Decimal)
        ]

    def _stored_counter(self) -> int:
        raw = self.store.get(self.counter_key)
        if raw is None:
            return 1
        try:
            return int(raw)
        except ValueError:
            logger.warning("Stored id counter %r is not an integer; recomputing", raw)
            return 1

    def _persist(self) -> None:
        self._write(dump_snapshot(self._transactions))

    def _write(self, snapshot: str) -> None:
        self.store.set(self.storage_key, snapshot)
        self.store.set(self.counter_key, str(self._next_id))


def parse_snapshot(raw: str) -> list[Transaction]:
    try:
        records = json.loads(raw, parse_float=Decimal)
    except json.JSONDecodeError as exc:
        raise StorageCorrupt(f"invalid JSON: {exc}") from exc
    if not isinstance(records, list):
        raise StorageCorrupt("snapshot is not a list of transactions")
    transactions = []
    for index, record in enumerate(records):
        try:
            transactions.append(Transaction.from_record(record))
        except ValueError as exc:
            raise StorageCorrupt(f"record {index}: {exc}") from exc
    return transactions


def dump_snapshot(transactions: Iterable[Transaction]) -> str:
    try:
        return json.dumps(
            [txn.to_record() for txn in transactions],
            default=_json_default,
            allow_nan=False,
        )
    except ValueError as exc:
        raise ValueError("Transaction amounts are too large to store.") from exc


def _next_id_after(transactions: Iterable[Transaction]) -> int:
    return max((txn.id for txn in transactions), default=0) + 1


def _json_default(obj: Any) -> Any:
    if isinstance(obj, Decimal):
        return float(obj)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")
