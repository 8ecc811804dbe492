from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping

from feedsync.domain.models import Entity, MergedCollection, Page

logger = logging.getLogger(__name__)

ITEMS_KEYS = ("items", "posts", "data", "result")


def extract_items(payload: Any) -> list[Any]:
    """
    Назначение:
        Достаёт массив сущностей из ответа списочного эндпоинта.
    Контракт:
        - Список возвращается как есть; для dict ищутся ключи items/posts/data/result.
        - Неожиданный формат не прерывает работу: пустой список + WARNING.
    """
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in ITEMS_KEYS:
            if key in payload and isinstance(payload[key], list):
                return payload[key]
    logger.warning(f"Malformed payload: no items array (type={type(payload).__name__})")
    return []


def entity_id(entity: Any, id_field: str = "id") -> str | None:
    """Возвращает id сущности или None, если сущность не может участвовать в мердже."""
    if not isinstance(entity, Mapping):
        return None
    value = entity.get(id_field)
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (str, int)):
        text = str(value)
        return text or None
    return None


def _put_all(ordered: dict[str, Entity], items: Iterable[Any], id_field: str) -> None:
    dropped = 0
    for item in items:
        key = entity_id(item, id_field)
        if key is None:
            dropped += 1
            continue
        # Повторный id заменяет значение, позиция в dict сохраняется.
        ordered[key] = item
    if dropped:
        logger.debug(f"Dropped {dropped} entities without '{id_field}'")


def append_page(existing: Iterable[Entity], page: Page, id_field: str = "id") -> MergedCollection:
    """
    Назначение:
        Добавляет страницу к уже показанной коллекции.
    Алгоритм:
        - Упорядоченная карта id -> entity: сначала existing, затем page.items.
        - Повторный id: значение заменяется (свежие данные), позиция не меняется.
        - Пустая страница возвращает existing без изменений.
    """
    ordered: dict[str, Entity] = {}
    _put_all(ordered, existing, id_field)
    if page.items:
        _put_all(ordered, page.items, id_field)
    return tuple(ordered.values())


def replace_with_page(page: Page, id_field: str = "id") -> MergedCollection:
    """
    Назначение:
        Путь refresh: старая коллекция отбрасывается, карта строится только из страницы.
    """
    ordered: dict[str, Entity] = {}
    _put_all(ordered, page.items, id_field)
    return tuple(ordered.values())


def merge_pages(pages: Iterable[Page], id_field: str = "id") -> MergedCollection:
    """
    Назначение:
        Собирает коллекцию из набора страниц в порядке возрастания page_index.
    """
    collection: MergedCollection = ()
    for page in sorted(pages, key=lambda p: p.page_index):
        collection = append_page(collection, page, id_field)
    return collection


def has_more(page: Page, page_size: int) -> bool:
    """
    Назначение:
        Эвристика «есть ещё страницы»: True тогда и только тогда, когда страница полная.
    Ограничения:
        - Это не гарантия. Полная последняя страница даёт True, и следующий запрос
          вернёт пустую страницу, которая и завершит пагинацию.
        - Если сервер отдаёт курсор или total, используйте resolve_has_more.
    """
    return len(page.items) == page_size


def resolve_has_more(payload: Any, page: Page, page_size: int) -> bool:
    """
    Назначение:
        Определяет наличие следующей страницы, предпочитая подсказки сервера.
    Алгоритм:
        - Пустая страница -> False.
        - pagination.hasNextPage (bool) -> его значение.
        - total (int) -> page_index * page_size < total.
        - Иначе эвристика has_more().
    """
    if not page.items:
        return False
    if isinstance(payload, dict):
        pagination = payload.get("pagination")
        if isinstance(pagination, dict) and isinstance(pagination.get("hasNextPage"), bool):
            return pagination["hasNextPage"]
        total = payload.get("total")
        if isinstance(total, int) and not isinstance(total, bool):
            return page.page_index * page_size < total
    return has_more(page, page_size)


def page_from_payload(payload: Any, page_index: int) -> Page:
    return Page(items=tuple(extract_items(payload)), page_index=page_index)
