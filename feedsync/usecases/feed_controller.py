from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Mapping

from feedsync.domain.models import (
    ActionKind,
    ActionToken,
    FeedSnapshot,
    MergedCollection,
    Page,
    SnapshotSource,
)
from feedsync.domain.pagination import entity_id, merge_pages, page_from_payload, resolve_has_more
from feedsync.domain.ports.fetch import Fetcher
from feedsync.domain.resources import FeedResource
from feedsync.infra.ledger.action_ledger import ActionLedger
from feedsync.usecases.tiered_fetch import TieredFetchCoordinator

logger = logging.getLogger(__name__)

FetcherFactory = Callable[[FeedResource, int], Fetcher]
ControllerListener = Callable[["FeedController"], None]

ACTION_FLAGS = {ActionKind.LIKED: "liked", ActionKind.VIEWED: "viewed"}


class FeedController:
    """
    Назначение/ответственность:
        Состояние одного спискового экрана: страницы, курсор пагинации,
        оптимистичные правки и видимая коллекция.
    Инварианты/гарантии:
        - items - чистая проекция страниц 1..cursor (merge_pages) с наложенными правками;
          пересчитывается при каждом изменении, а не мутируется.
        - load_more() в OFFLINE - no-op (без сетевого запроса).
        - refresh() сбрасывает курсор на 1 и заменяет коллекцию страницей 1.
        - Пустая страница завершает пагинацию, не меняя коллекцию.
    Взаимодействия:
        TieredFetchCoordinator (кэш/сеть/связность), ActionLedger (флаги liked/viewed).
    """

    def __init__(
        self,
        resource: FeedResource,
        coordinator: TieredFetchCoordinator,
        fetcher_factory: FetcherFactory,
        ledger: ActionLedger | None = None,
        poll_interval: float | None = None,
    ):
        self.resource = resource
        self.coordinator = coordinator
        self.fetcher_factory = fetcher_factory
        self.ledger = ledger
        self.poll_interval = poll_interval
        self._pages: dict[int, Page] = {}
        self._payloads: dict[int, Any] = {}
        self._cursor = 1
        self._has_more = False
        self._pending_page: int | None = None
        self._failed_page: int | None = None
        self._refresh_failed = False
        self._overlays: dict[str, dict[str, Any]] = {}
        self._page_subscribers: dict[int, Callable[[FeedSnapshot], None]] = {}
        self._listeners: list[ControllerListener] = []
        self._items: MergedCollection = ()
        self._mounted = False
        self._closed = False
        self._lock = threading.RLock()

    @property
    def items(self) -> MergedCollection:
        return self._items

    @property
    def cursor(self) -> int:
        return self._cursor

    @property
    def has_more(self) -> bool:
        return self._has_more

    @property
    def is_offline(self) -> bool:
        return self.coordinator.connectivity.is_offline

    @property
    def refresh_failed(self) -> bool:
        return self._refresh_failed

    @property
    def is_loading_more(self) -> bool:
        return self._pending_page is not None

    def subscribe(self, listener: ControllerListener) -> Callable[[], None]:
        with self._lock:
            if listener not in self._listeners:
                self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def mount(self) -> None:
        """Загружает страницу 1 («живой» ключ с опросом)."""
        with self._lock:
            if self._closed:
                raise RuntimeError("Feed controller is closed")
            if self._mounted:
                return
            self._mounted = True
        self._load_page(1, live=self.resource.live)

    def load_more(self) -> bool:
        """
        Назначение:
            Запросить следующую страницу.
        Выходные данные:
            True, если запрос отправлен; False для no-op (офлайн, конец данных,
            уже идёт загрузка, контроллер закрыт).
        """
        with self._lock:
            if self._closed or not self._mounted:
                return False
            if self.coordinator.connectivity.is_offline:
                logger.debug(f"load_more ignored: {self.resource.kind} is offline")
                return False
            if not self._has_more or self._pending_page is not None:
                return False
            page = self._cursor + 1
            self._pending_page = page
        self._load_page(page, live=False)
        return True

    def refresh(self) -> None:
        """
        Назначение:
            Pull-to-refresh: курсор -> 1, страницы > 1 отбрасываются,
            страница 1 запрашивается в обход кэша и заменяет коллекцию.
        """
        with self._lock:
            if self._closed:
                return
            self._cursor = 1
            self._pending_page = None
            self._failed_page = None
            for index in [i for i in self._pages if i > 1]:
                self._pages.pop(index, None)
                self._payloads.pop(index, None)
            if 1 in self._pages:
                self._has_more = resolve_has_more(self._payloads[1], self._pages[1], self.resource.page_size)
            self._recompute()
        self._emit()
        if not self._mounted:
            self.mount()
            return
        self.coordinator.refresh(self.resource.cache_key(1), self.fetcher_factory(self.resource, 1))

    def retry(self) -> bool:
        """Повтор последнего неудачного запроса (или страницы 1) после ухода в офлайн."""
        with self._lock:
            if self._closed:
                return False
            page = self._failed_page or 1
            if page > 1:
                self._pending_page = page
        return self.coordinator.retry(self.resource.cache_key(page))

    def apply_local_patch(self, entity: str, patch: Mapping[str, Any]) -> None:
        """
        Назначение:
            Оптимистичная правка сущности; держится до прихода свежей страницы с этой сущностью.
        """
        with self._lock:
            if self._closed:
                return
            overlay = self._overlays.setdefault(entity, {})
            overlay.update(patch)
            self._recompute()
        self._emit()

    def page_payload(self, page: int = 1) -> Any:
        """Сырой ответ сервера для страницы (например, users в выдаче поиска)."""
        with self._lock:
            return self._payloads.get(page)

    def find(self, entity: str) -> Mapping[str, Any] | None:
        for item in self._items:
            if entity_id(item, self.resource.id_field) == entity:
                return item
        return None

    def close(self) -> None:
        """Демонтаж экрана: опрос останавливается, поздние ответы игнорируются."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._listeners.clear()
        self.coordinator.close()

    def _load_page(self, page: int, live: bool) -> None:
        with self._lock:
            subscriber = self._page_subscribers.get(page)
            if subscriber is None:
                subscriber = self._make_page_subscriber(page)
                self._page_subscribers[page] = subscriber
        self.coordinator.load(
            self.resource.cache_key(page),
            self.fetcher_factory(self.resource, page),
            live=live,
            poll_interval=self.poll_interval,
            subscriber=subscriber,
        )

    def _make_page_subscriber(self, page: int) -> Callable[[FeedSnapshot], None]:
        def on_snapshot(snapshot: FeedSnapshot) -> None:
            self._on_page_snapshot(page, snapshot)

        return on_snapshot

    def _on_page_snapshot(self, page: int, snapshot: FeedSnapshot) -> None:
        with self._lock:
            if self._closed:
                return
            if page > self._cursor and page != self._pending_page:
                # Страница за пределами курсора (например, после refresh) не показывается.
                return

            self._refresh_failed = snapshot.refresh_failed
            if snapshot.refresh_failed:
                self._failed_page = page
                if page == self._pending_page and snapshot.data is None:
                    self._pending_page = None
            elif page == self._failed_page:
                self._failed_page = None

            if snapshot.data is not None:
                self._accept_page(page, snapshot)
            self._recompute()
        self._emit()

    def _accept_page(self, page: int, snapshot: FeedSnapshot) -> None:
        parsed = page_from_payload(snapshot.data, page)
        if page == self._pending_page:
            self._pending_page = None
            if not parsed.items:
                self._has_more = False
                return
            self._cursor = page

        self._pages[page] = parsed
        self._payloads[page] = snapshot.data
        if snapshot.source == SnapshotSource.NETWORK and not snapshot.refresh_failed:
            for item in parsed.items:
                key = entity_id(item, self.resource.id_field)
                if key is not None:
                    self._overlays.pop(key, None)
        if page == self._cursor:
            self._has_more = resolve_has_more(snapshot.data, parsed, self.resource.page_size)

    def _recompute(self) -> None:
        visible = [p for i, p in sorted(self._pages.items()) if i <= self._cursor]
        merged = merge_pages(visible, self.resource.id_field)
        self._items = tuple(self._decorate(item) for item in merged)

    def _decorate(self, item: Mapping[str, Any]) -> Mapping[str, Any]:
        key = entity_id(item, self.resource.id_field)
        overlay = self._overlays.get(key) if key is not None else None
        flags: dict[str, Any] = {}
        if key is not None and self.ledger is not None:
            for kind, flag in ACTION_FLAGS.items():
                if self.ledger.has_fired(ActionToken(entity_id=key, kind=kind)):
                    flags[flag] = True
        if not overlay and not flags:
            return item
        return {**item, **(overlay or {}), **flags}

    def _emit(self) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(self)
            except Exception as exc:
                logger.error(f"Error in feed listener: {exc}")
