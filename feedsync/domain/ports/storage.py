from __future__ import annotations

from typing import Protocol

from feedsync.domain.models import CacheEntry


class PersistentStoreProtocol(Protocol):
    """
    Назначение/ответственность:
        Порт key-value хранилища, переживающего перезапуск процесса.
    Контракт:
        - get() возвращает строку или None, если ключа нет.
        - Ошибки хранилища выражаются StorageError.
    """

    def get(self, key: str) -> str | None: ...
    def set(self, key: str, value: str) -> None: ...


class MemoryCacheProtocol(Protocol):
    """
    Назначение/ответственность:
        Порт кэша в памяти процесса (первый уровень).
    """

    def get(self, key: str) -> CacheEntry | None: ...
    def set(self, key: str, entry: CacheEntry) -> None: ...
    def clear(self) -> None: ...
