from __future__ import annotations

import json
import logging
import threading
from typing import Any, Callable

from feedsync.common.time import getNowMs
from feedsync.domain.models import CacheEntry
from feedsync.domain.ports.storage import MemoryCacheProtocol, PersistentStoreProtocol
from feedsync.errors import StorageError

logger = logging.getLogger(__name__)


class CacheEntryRepository:
    """
    Назначение/ответственность:
        Доступ к двум уровням кэша (память, персистентное хранилище) для CacheEntry.
    Инварианты/гарантии:
        - stored_at не убывает для ключа между успешными записями.
        - Ошибка хранилища не фатальна: чтение -> промах, запись -> WARNING в лог.
    """

    def __init__(
        self,
        memory: MemoryCacheProtocol,
        store: PersistentStoreProtocol,
        clock: Callable[[], int] = getNowMs,
    ):
        self.memory = memory
        self.store = store
        self.clock = clock
        self._last_stored_at: dict[str, int] = {}
        self._lock = threading.Lock()

    def read_memory(self, key: str) -> CacheEntry | None:
        return self.memory.get(key)

    def read_persistent(self, key: str) -> CacheEntry | None:
        """
        Контракт:
            - None при отсутствии ключа, ошибке хранилища или битом JSON.
        """
        try:
            raw = self.store.get(key)
        except StorageError as exc:
            logger.warning(f"Persistent cache read failed key={key}: {exc.message}")
            return None
        if raw is None:
            return None
        try:
            entry = CacheEntry.from_dict(json.loads(raw))
        except ValueError:
            entry = None
        if entry is None:
            logger.warning(f"Persistent cache entry is corrupted key={key}")
            return None
        self._remember(key, entry.stored_at)
        return entry

    def warm_memory(self, key: str, entry: CacheEntry) -> None:
        """Поднимает запись из персистентного уровня в память, не затирая более свежую."""
        current = self.memory.get(key)
        if current is not None and current.stored_at >= entry.stored_at:
            return
        self.memory.set(key, entry)

    def write(self, key: str, payload: Any) -> CacheEntry:
        """
        Назначение:
            Записывает новое значение в оба уровня с текущей меткой времени.
        Алгоритм:
            - stored_at = max(now, предыдущий stored_at по ключу).
            - Память обновляется всегда; ошибка персистентной записи логируется.
        """
        with self._lock:
            previous = self._last_stored_at.get(key)
            current = self.memory.get(key)
            if current is not None:
                previous = max(previous or 0, current.stored_at)
            stored_at = self.clock()
            if previous is not None and stored_at < previous:
                stored_at = previous
            entry = CacheEntry(payload=payload, stored_at=stored_at)
            self._last_stored_at[key] = stored_at
            self.memory.set(key, entry)

        try:
            self.store.set(key, json.dumps(entry.to_dict(), ensure_ascii=False))
        except StorageError as exc:
            logger.warning(f"Persistent cache write failed key={key}: {exc.message}")
        except (TypeError, ValueError) as exc:
            logger.warning(f"Payload is not JSON-serializable key={key}: {exc}")
        return entry

    def _remember(self, key: str, stored_at: int) -> None:
        with self._lock:
            previous = self._last_stored_at.get(key)
            if previous is None or stored_at > previous:
                self._last_stored_at[key] = stored_at
