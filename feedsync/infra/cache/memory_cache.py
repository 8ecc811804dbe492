from __future__ import annotations

import threading

from feedsync.domain.models import CacheEntry
from feedsync.domain.ports.storage import MemoryCacheProtocol


class MemoryCache(MemoryCacheProtocol):
    """
    Назначение/ответственность:
        Кэш первого уровня в памяти процесса.
    Жизненный цикл:
        Создаётся один раз при старте приложения и передаётся контроллерам лент по ссылке.
        Очищается вместе с процессом.
    """

    def __init__(self) -> None:
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> CacheEntry | None:
        with self._lock:
            return self._entries.get(key)

    def set(self, key: str, entry: CacheEntry) -> None:
        with self._lock:
            self._entries[key] = entry

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._entries
