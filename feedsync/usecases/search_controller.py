from __future__ import annotations

import logging
import threading
from typing import Any, Callable

from feedsync.common.scheduling import Debouncer
from feedsync.domain.models import MergedCollection
from feedsync.domain.resources import FeedResource, search_feed
from feedsync.usecases.feed_controller import FeedController

logger = logging.getLogger(__name__)

DEFAULT_SEARCH_DEBOUNCE_SECONDS = 0.4
DEFAULT_MIN_QUERY_LENGTH = 2

FeedFactory = Callable[[FeedResource], FeedController]


class SearchController:
    """
    Назначение/ответственность:
        Поиск по мере ввода: debounce запроса, одна активная выдача за раз.
    Контракт:
        - set_query() откладывает поиск на debounce_seconds; новый ввод отменяет прежний.
        - Запрос короче min_query_length очищает выдачу без сетевого вызова.
        - Новый запрос закрывает FeedController предыдущего (его поздние ответы игнорируются).
    """

    def __init__(
        self,
        feed_factory: FeedFactory,
        debounce_seconds: float = DEFAULT_SEARCH_DEBOUNCE_SECONDS,
        min_query_length: int = DEFAULT_MIN_QUERY_LENGTH,
        page_size: int = 10,
        id_field: str = "id",
    ):
        self.feed_factory = feed_factory
        self.min_query_length = min_query_length
        self.page_size = page_size
        self.id_field = id_field
        self._debouncer = Debouncer(debounce_seconds, self._run_query)
        self._query = ""
        self._active: FeedController | None = None
        self._active_query: str | None = None
        self._lock = threading.Lock()

    @property
    def query(self) -> str:
        return self._query

    @property
    def active_query(self) -> str | None:
        return self._active_query

    @property
    def controller(self) -> FeedController | None:
        return self._active

    @property
    def items(self) -> MergedCollection:
        active = self._active
        return active.items if active is not None else ()

    @property
    def users(self) -> list[Any]:
        active = self._active
        payload = active.page_payload(1) if active is not None else None
        if isinstance(payload, dict) and isinstance(payload.get("users"), list):
            return payload["users"]
        return []

    @property
    def has_more(self) -> bool:
        active = self._active
        return active.has_more if active is not None else False

    def set_query(self, text: str) -> None:
        query = (text or "").strip()
        with self._lock:
            self._query = query
        if len(query) < self.min_query_length:
            self._debouncer.cancel()
            self._replace(None, None)
            return
        self._debouncer.call(query)

    def load_more(self) -> bool:
        active = self._active
        return active.load_more() if active is not None else False

    def close(self) -> None:
        self._debouncer.cancel()
        self._replace(None, None)

    def _run_query(self, query: str) -> None:
        with self._lock:
            if query != self._query or query == self._active_query:
                return
        logger.debug(f"Search query dispatched: {query!r}")
        resource = search_feed(query, page_size=self.page_size, id_field=self.id_field)
        controller = self.feed_factory(resource)
        if self._replace(controller, query):
            controller.mount()

    def _replace(self, controller: FeedController | None, query: str | None) -> bool:
        """
        Контракт:
            - Новая выдача ставится, только если query всё ещё текущий запрос;
              иначе она закрывается, не будучи смонтированной, и возвращается False.
        """
        with self._lock:
            installed = controller is None or query == self._query
            if installed:
                discarded = self._active
                self._active = controller
                self._active_query = query
            else:
                discarded = controller
        if discarded is not None:
            discarded.close()
        if not installed:
            logger.debug(f"Stale search result discarded: {query!r}")
        return installed
