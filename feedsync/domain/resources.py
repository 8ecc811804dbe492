from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from feedsync.domain.cache_key import build_cache_key

DEFAULT_PAGE_SIZE = 10


@dataclass(frozen=True)
class FeedResource:
    """
    Назначение/ответственность:
        Описание постраничного ресурса REST API (лента, категория, автор, клан, поиск).
    Инварианты/гарантии:
        - page_size > 0.
        - cache_key() детерминирован и зависит от kind/resource_id/params/страницы.
    """

    kind: str
    path: str
    resource_id: str | None = None
    params: dict[str, Any] = field(default_factory=dict)
    page_size: int = DEFAULT_PAGE_SIZE
    id_field: str = "id"
    live: bool = True

    def __post_init__(self) -> None:
        if self.page_size <= 0:
            raise ValueError("page_size must be positive")

    def cache_key(self, page: int) -> str:
        return build_cache_key(self.kind, self.resource_id, self.params, page, page)

    def query_params(self, page: int) -> dict[str, Any]:
        """Параметры запроса страницы: фильтры ресурса + page (с 1) + limit."""
        query = {k: v for k, v in self.params.items() if v is not None}
        query["page"] = page
        query["limit"] = self.page_size
        return query


def global_feed(page_size: int = DEFAULT_PAGE_SIZE, id_field: str = "id") -> FeedResource:
    return FeedResource(kind="feed", path="/posts", page_size=page_size, id_field=id_field)


def category_feed(category: str, page_size: int = DEFAULT_PAGE_SIZE, id_field: str = "id") -> FeedResource:
    return FeedResource(
        kind="category",
        path="/posts",
        resource_id=category,
        params={"category": category},
        page_size=page_size,
        id_field=id_field,
    )


def author_feed(author_id: str, page_size: int = DEFAULT_PAGE_SIZE, id_field: str = "id") -> FeedResource:
    return FeedResource(
        kind="author",
        path="/posts",
        resource_id=author_id,
        params={"author": author_id},
        page_size=page_size,
        id_field=id_field,
    )


def clan_feed(tag: str, page_size: int = DEFAULT_PAGE_SIZE, id_field: str = "id") -> FeedResource:
    return FeedResource(
        kind="clan",
        path="/posts",
        resource_id=tag,
        params={"clanTag": tag},
        page_size=page_size,
        id_field=id_field,
    )


def search_feed(query: str, page_size: int = DEFAULT_PAGE_SIZE, id_field: str = "id") -> FeedResource:
    # Поиск не опрашивается по таймеру: результаты не «живые».
    return FeedResource(
        kind="search",
        path="/search",
        params={"q": query},
        page_size=page_size,
        id_field=id_field,
        live=False,
    )


RESOURCE_FACTORIES = {
    "feed": lambda _id, size, id_field: global_feed(size, id_field),
    "category": category_feed,
    "author": author_feed,
    "clan": clan_feed,
    "search": search_feed,
}


def make_resource(kind: str, resource_id: str | None, page_size: int, id_field: str = "id") -> FeedResource:
    """
    Назначение:
        Фабрика ресурса по имени вида (используется CLI).
    """
    factory = RESOURCE_FACTORIES.get(kind)
    if factory is None:
        raise ValueError(f"Unsupported feed kind: {kind}")
    if kind != "feed" and not resource_id:
        raise ValueError(f"Feed kind '{kind}' requires an id")
    return factory(resource_id, page_size, id_field)
