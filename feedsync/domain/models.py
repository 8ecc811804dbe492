from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping


Entity = Mapping[str, Any]
MergedCollection = tuple[Entity, ...]


class ConnectivityState(str, Enum):
    """
    Назначение:
        Состояние связности ленты. Начальное значение ONLINE до первого результата.
    """

    ONLINE = "online"
    OFFLINE = "offline"


class SnapshotSource(str, Enum):
    """Откуда пришли данные, видимые подписчику."""

    MEMORY = "memory"
    PERSISTENT = "persistent"
    NETWORK = "network"


class ActionKind(str, Enum):
    """
    Назначение:
        Вид мутирующего действия над сущностью.
    """

    VIEWED = "viewed"
    LIKED = "liked"

    @property
    def api_action(self) -> str:
        """Значение поля action в теле PATCH /posts/{id}."""
        if self is ActionKind.VIEWED:
            return "view"
        return "like"

    @property
    def counter_field(self) -> str:
        if self is ActionKind.VIEWED:
            return "views"
        return "likes"


@dataclass(frozen=True)
class ActionToken:
    """
    Назначение:
        Пара (entity_id, kind), идентифицирующая уже отправленное действие.
    """

    entity_id: str
    kind: ActionKind

    def to_list(self) -> list[str]:
        return [self.entity_id, self.kind.value]

    @classmethod
    def from_list(cls, raw: Any) -> "ActionToken | None":
        if not isinstance(raw, (list, tuple)) or len(raw) != 2:
            return None
        entity_id, kind = raw
        if not isinstance(entity_id, str) or not entity_id:
            return None
        try:
            return cls(entity_id=entity_id, kind=ActionKind(kind))
        except ValueError:
            return None


@dataclass(frozen=True)
class CacheEntry:
    """
    Назначение:
        Последнее удачное значение по ключу кэша.
    Инварианты/гарантии:
        - stored_at (epoch ms) не убывает для одного ключа между успешными записями.
    """

    payload: Any
    stored_at: int

    def to_dict(self) -> dict[str, Any]:
        return {"payload": self.payload, "storedAt": self.stored_at}

    @classmethod
    def from_dict(cls, raw: Any) -> "CacheEntry | None":
        if not isinstance(raw, dict) or "payload" not in raw:
            return None
        stored_at = raw.get("storedAt")
        if not isinstance(stored_at, int) or isinstance(stored_at, bool):
            return None
        return cls(payload=raw["payload"], stored_at=stored_at)


@dataclass(frozen=True)
class Page:
    """
    Назначение:
        Одна страница выдачи.
    Инварианты/гарантии:
        - page_index >= 1.
    """

    items: tuple[Any, ...]
    page_index: int = 1

    def __post_init__(self) -> None:
        if self.page_index < 1:
            raise ValueError("page_index must be >= 1")
        if not isinstance(self.items, tuple):
            object.__setattr__(self, "items", tuple(self.items))


@dataclass(frozen=True)
class FeedSnapshot:
    """
    Назначение:
        То, что видит подписчик TieredFetchCoordinator в каждый момент.
    Контракт:
        - data остаётся последним удачным значением даже при refresh_failed=True.
    """

    key: str
    data: Any = None
    state: ConnectivityState = ConnectivityState.ONLINE
    source: SnapshotSource | None = None
    stored_at: int | None = None
    refresh_failed: bool = False
    error_code: str | None = None

    @property
    def has_data(self) -> bool:
        return self.data is not None


@dataclass
class ConnectivityStatus:
    """Текущее состояние машины связности с метаданными для UI."""

    state: ConnectivityState = ConnectivityState.ONLINE
    consecutive_failures: int = 0
    last_online_at: str | None = None
    last_error_code: str | None = None
