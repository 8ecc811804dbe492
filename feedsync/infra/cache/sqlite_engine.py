from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from typing import Any, Iterator


class SqliteEngine:
    """
    Назначение/ответственность:
        Единственная точка доступа к соединению кэша. Соединение общее для фоновых
        задач и потоков опроса (check_same_thread=False), поэтому все обращения
        сериализуются здесь.
    Контракт:
        - transaction() держит блокировку до commit/rollback.
        - Ошибки sqlite3 не перехватываются: их переводит в StorageError вызывающий слой.
    """

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self._lock = threading.RLock()

    def execute(self, sql: str, params: tuple[Any, ...] = ()) -> int:
        """Выполняет команду и возвращает rowcount."""
        with self._lock:
            return self.conn.execute(sql, params).rowcount

    def fetchone(self, sql: str, params: tuple[Any, ...] = ()) -> sqlite3.Row | None:
        with self._lock:
            return self.conn.execute(sql, params).fetchone()

    def fetchcolumn(self, sql: str, params: tuple[Any, ...] = ()) -> list[Any]:
        """Первый столбец всех строк результата."""
        with self._lock:
            return [row[0] for row in self.conn.execute(sql, params)]

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self._lock:
            self.conn.execute("BEGIN IMMEDIATE")
            try:
                yield
            except Exception:
                self.conn.rollback()
                raise
            self.conn.commit()

    def close(self) -> None:
        with self._lock:
            self.conn.close()
