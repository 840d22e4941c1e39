from __future__ import annotations

from sqlalchemy import Column, MetaData, String, Table, Text, create_engine, delete, insert, select
from sqlalchemy.engine import Engine

metadata = MetaData()

key_value_store = Table(
    "key_value_store",
    metadata,
    Column("key", String(255), primary_key=True),
    Column("value", Text, nullable=False),
)


def create_store_engine(database_url: str) -> Engine:
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
    return create_engine(database_url, connect_args=connect_args)


class KeyValueStore:
    """String slots in a single table, each write replacing the whole value."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self._schema_ready = False

    def create_schema(self) -> None:
        if not self._schema_ready:
            metadata.create_all(self.engine)
            self._schema_ready = True

    def get(self, key: str) -> str | None:
        self.create_schema()
        with self.engine.begin() as conn:
            return conn.execute(
                select(key_value_store.c.value).where(key_value_store.c.key == key)
            ).scalar_one_or_none()

    def set(self, key: str, value: str) -> None:
        self.create_schema()
        with self.engine.begin() as conn:
            conn.execute(delete(key_value_store).where(key_value_store.c.key == key))
            conn.execute(insert(key_value_store).values(key=key, value=value))

    def remove(self, key: str) -> None:
        self.create_schema()
        with self.engine.begin() as conn:
            conn.execute(delete(key_value_store).where(key_value_store.c.key == key))
