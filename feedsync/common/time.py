from __future__ import annotations

import time
from datetime import datetime, timezone


def getNowIso() -> str:
    """
    Назначение:
        Возвращает текущее время в ISO 8601 с timezone.
    """
    return datetime.now().astimezone().isoformat()


def getNowMs() -> int:
    """
    Назначение:
        Текущее время в миллисекундах от epoch (метка stored_at у CacheEntry).
    """
    return int(time.time() * 1000)


def msToIso(valueMs: int | None) -> str | None:
    """Преобразует epoch-миллисекунды в ISO 8601 (UTC) для вывода."""
    if valueMs is None:
        return None
    return datetime.fromtimestamp(valueMs / 1000, tz=timezone.utc).isoformat()


def getDurationMs(startMonotonic: float, endMonotonic: float) -> int:
    """
    Назначение:
        Считает длительность в миллисекундах по monotonic timestamps.
    """
    return int((endMonotonic - startMonotonic) * 1000)
