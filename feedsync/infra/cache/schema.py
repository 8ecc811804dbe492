from __future__ import annotations

from feedsync.infra.cache.sqlite_engine import SqliteEngine

SCHEMA_VERSION = 1


def ensure_schema(engine: SqliteEngine) -> int:
    """
    Назначение:
        Создать meta и таблицу key-value хранилища, вернуть версию схемы.
    """
    with engine.transaction():
        _create_meta(engine)
        current_version = _get_schema_version(engine) or 0
        if current_version == 0:
            _create_kv_table(engine)
            _set_schema_version(engine, SCHEMA_VERSION)
            return SCHEMA_VERSION
    return current_version


def _create_meta(engine: SqliteEngine) -> None:
    engine.execute(
        """
        CREATE TABLE IF NOT EXISTS meta (
            key TEXT PRIMARY KEY,
            value TEXT
        )
        """
    )


def _create_kv_table(engine: SqliteEngine) -> None:
    engine.execute(
        """
        CREATE TABLE IF NOT EXISTS kv_store (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )


def _get_schema_version(engine: SqliteEngine) -> int | None:
    row = engine.fetchone("SELECT value FROM meta WHERE key='schema_version'")
    if row is None:
        return None
    try:
        return int(row[0])
    except (TypeError, ValueError):
        return None


def _set_schema_version(engine: SqliteEngine, version: int) -> None:
    engine.execute(
        """
        INSERT INTO meta(key, value)
        VALUES (?, ?)
        ON CONFLICT(key) DO UPDATE SET value=excluded.value
        """,
        ("schema_version", str(version)),
    )
