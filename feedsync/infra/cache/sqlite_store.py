from __future__ import annotations

import sqlite3

from feedsync.common.time import getNowIso
from feedsync.domain.ports.storage import PersistentStoreProtocol
from feedsync.errors import StorageError
from feedsync.infra.cache.schema import ensure_schema
from feedsync.infra.cache.sqlite_engine import SqliteEngine

UPSERT_SQL = """
    INSERT INTO kv_store(key, value, updated_at)
    VALUES (?, ?, ?)
    ON CONFLICT(key) DO UPDATE SET value=excluded.value, updated_at=excluded.updated_at
"""


class SqlitePersistentStore(PersistentStoreProtocol):
    """
    Назначение/ответственность:
        Персистентное key-value хранилище поверх SQLite (таблица kv_store).
    Инварианты/гарантии:
        - Запись по ключу - last-writer-wins, без блокировок между экземплярами.
        - Любая sqlite3.Error превращается в StorageError.
    Взаимодействия:
        Используется TieredFetchCoordinator (через CacheEntryRepository) и ActionLedger.
    """

    def __init__(self, engine: SqliteEngine):
        self.engine = engine
        try:
            self.schema_version = ensure_schema(engine)
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to prepare cache schema: {exc}") from exc

    def get(self, key: str) -> str | None:
        try:
            row = self.engine.fetchone("SELECT value FROM kv_store WHERE key = ?", (key,))
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to read key: {exc}", key=key) from exc
        return row["value"] if row is not None else None

    def set(self, key: str, value: str) -> None:
        try:
            self.engine.execute(UPSERT_SQL, (key, value, getNowIso()))
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to write key: {exc}", key=key) from exc

    def list_keys(self, prefix: str | None = None) -> list[str]:
        try:
            if prefix:
                return self.engine.fetchcolumn(
                    "SELECT key FROM kv_store WHERE substr(key, 1, ?) = ? ORDER BY key",
                    (len(prefix), prefix),
                )
            return self.engine.fetchcolumn("SELECT key FROM kv_store ORDER BY key")
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to list keys: {exc}") from exc

    def delete_prefix(self, prefix: str) -> int:
        """
        Назначение:
            Удаляет записи по префиксу (команда `cache clear`). Возвращает число удалённых.
        """
        try:
            with self.engine.transaction():
                return self.engine.execute(
                    "DELETE FROM kv_store WHERE substr(key, 1, ?) = ?",
                    (len(prefix), prefix),
                )
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to clear keys: {exc}") from exc
