from __future__ import annotations

from typing import Any, Mapping
from urllib.parse import quote

CACHE_KEY_PREFIX = "feedsync:v1"


def _enc(value: Any) -> str:
    # ':' '&' '=' и '%' экранируются, поэтому разделители не встречаются внутри компонентов.
    return quote(str(value), safe="")


def build_cache_key(
    kind: str,
    resource_id: str | None = None,
    params: Mapping[str, Any] | None = None,
    first_page: int = 1,
    last_page: int | None = None,
) -> str:
    """
    Назначение:
        Детерминированный ключ кэша по (тип ресурса, id/параметры, диапазон страниц).
    Контракт:
        - Разные ресурсы/параметры/диапазоны дают разные строки.
        - Порядок параметров не влияет на ключ; параметры со значением None пропускаются.
    Пример:
        build_cache_key("category", "anime", {}, 1, 1) -> "feedsync:v1:category:anime:-:p1-1"
    """
    if not kind:
        raise ValueError("kind is required")
    if last_page is None:
        last_page = first_page
    if first_page < 1 or last_page < first_page:
        raise ValueError(f"Invalid page range: {first_page}-{last_page}")

    rid = _enc(resource_id) if resource_id is not None else "-"
    pairs = sorted((str(k), v) for k, v in (params or {}).items() if v is not None)
    query = "&".join(f"{_enc(k)}={_enc(v)}" for k, v in pairs) or "-"
    return f"{CACHE_KEY_PREFIX}:{_enc(kind)}:{rid}:{query}:p{first_page}-{last_page}"


def is_feed_cache_key(key: str) -> bool:
    return key.startswith(CACHE_KEY_PREFIX + ":")
