from sqlalchemy.engine import Engine

from readreceipts.store.base import ReceiptStore, is_unique_violation
from readreceipts.store.mysql import MySQLStore
from readreceipts.store.postgres import PostgresStore
from readreceipts.store.sqlite import SQLiteStore

_BACKENDS: dict[str, type[ReceiptStore]] = {
    "postgresql": PostgresStore,
    "mysql": MySQLStore,
    "mariadb": MySQLStore,
    "sqlite": SQLiteStore,
}


def new_store(engine: Engine) -> ReceiptStore:
    """Pick the store backend matching the engine's SQL dialect."""
    try:
        backend = _BACKENDS[engine.dialect.name]
    except KeyError:
        raise ValueError(f"unsupported database driver: {engine.dialect.name}") from None
    return backend(engine)


__all__ = [
    "MySQLStore",
    "PostgresStore",
    "ReceiptStore",
    "SQLiteStore",
    "is_unique_violation",
    "new_store",
]
