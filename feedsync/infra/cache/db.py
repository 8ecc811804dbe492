from __future__ import annotations

import sqlite3
from pathlib import Path


def getCacheDbPath(cacheDir: str) -> str:
    """
    Возвращает путь к файлу персистентного кэша в указанном каталоге.
    """
    return str(Path(cacheDir) / "feedsync_cache.sqlite3")


def openCacheDb(dbPath: str) -> sqlite3.Connection:
    """
    Открывает/создаёт SQLite БД с нужными PRAGMA/timeout.
    Соединение в autocommit-режиме; транзакции открываются явно (SqliteEngine.transaction).
    Используется из фоновых потоков, доступ сериализует SqlitePersistentStore.
    """
    if dbPath != ":memory:":
        Path(dbPath).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(dbPath, timeout=5.0, isolation_level=None, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode = WAL")
    conn.execute("PRAGMA synchronous = NORMAL")
    conn.execute("PRAGMA busy_timeout = 5000")
    return conn
