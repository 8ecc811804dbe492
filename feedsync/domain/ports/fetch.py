from __future__ import annotations

import json as jsonlib
from dataclasses import dataclass
from typing import Any, Callable, Protocol

from feedsync.domain.resources import FeedResource
from feedsync.errors import MalformedPayloadError


@dataclass(frozen=True)
class FetchResponse:
    """
    Назначение:
        Нормализованный ответ транспорта: признак ok, статус и тело.
    Контракт:
        - ok=False трактуется TieredFetchCoordinator как ошибка запроса.
        - json() возвращает разобранное тело или бросает MalformedPayloadError.
    """

    ok: bool
    status_code: int | None = None
    body: Any = None
    text: str | None = None
    error_code: str | None = None

    def json(self) -> Any:
        if self.body is not None:
            return self.body
        if self.text is None:
            raise MalformedPayloadError("Empty response body")
        try:
            return jsonlib.loads(self.text)
        except ValueError as exc:
            raise MalformedPayloadError("Invalid JSON response") from exc


Fetcher = Callable[[], FetchResponse]


class FeedApiProtocol(Protocol):
    """
    Назначение/ответственность:
        Порт REST API ленты: чтение страниц и отправка действий.
    """

    def fetch(self, path: str, params: dict[str, Any] | None = None) -> FetchResponse: ...

    def send_action(self, entity_id: str, action: str, fingerprint: str | None) -> FetchResponse: ...

    def page_fetcher(self, resource: FeedResource, page: int) -> Fetcher: ...
