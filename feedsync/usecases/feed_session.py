from __future__ import annotations

import logging

from feedsync.common.scheduling import PollingTask, ThreadTaskRunner
from feedsync.domain.ports.fetch import FeedApiProtocol
from feedsync.domain.ports.scheduling import PollerFactory, TaskRunnerProtocol
from feedsync.domain.ports.storage import MemoryCacheProtocol, PersistentStoreProtocol
from feedsync.domain.resources import FeedResource
from feedsync.infra.cache.entry_repository import CacheEntryRepository
from feedsync.infra.ledger.action_ledger import DEFAULT_LEDGER_CAPACITY, ActionLedger
from feedsync.usecases.action_dispatcher import ActionDispatcher
from feedsync.usecases.feed_controller import FeedController
from feedsync.usecases.search_controller import DEFAULT_SEARCH_DEBOUNCE_SECONDS, SearchController
from feedsync.usecases.tiered_fetch import DEFAULT_POLL_INTERVAL_SECONDS, TieredFetchCoordinator

logger = logging.getLogger(__name__)


class FeedSession:
    """
    Назначение/ответственность:
        Сборка процесса: общие уровни кэша, HTTP-клиент, журнал действий и фоновый раннер.
        Открывает контроллеры лент, поиска и отправку действий поверх общих зависимостей.
    Взаимодействия:
        - Кэш в памяти и хранилище общие для всех лент процесса.
        - У каждой ленты свой TieredFetchCoordinator (свой опрос и своя связность).
    """

    def __init__(
        self,
        client: FeedApiProtocol,
        memory: MemoryCacheProtocol,
        store: PersistentStoreProtocol,
        runner: TaskRunnerProtocol | None = None,
        poller_factory: PollerFactory = PollingTask,
        poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
        ledger_capacity: int = DEFAULT_LEDGER_CAPACITY,
        fingerprint: str | None = None,
        id_field: str = "id",
    ):
        self.client = client
        self.memory = memory
        self.store = store
        self.runner = runner or ThreadTaskRunner()
        self.poller_factory = poller_factory
        self.poll_interval_seconds = poll_interval_seconds
        self.id_field = id_field
        self.repository = CacheEntryRepository(memory, store)
        self.ledger = ActionLedger(store, capacity=ledger_capacity)
        self.dispatcher = ActionDispatcher(self.ledger, client, self.runner, fingerprint=fingerprint, id_field=id_field)
        self._controllers: list[FeedController] = []

    def open_feed(self, resource: FeedResource) -> FeedController:
        """Создаёт контроллер ленты (не смонтированный)."""
        coordinator = TieredFetchCoordinator(
            repository=self.repository,
            runner=self.runner,
            poller_factory=self.poller_factory,
            poll_interval_seconds=self.poll_interval_seconds,
            name=resource.kind,
        )
        controller = FeedController(
            resource=resource,
            coordinator=coordinator,
            fetcher_factory=self.client.page_fetcher,
            ledger=self.ledger,
        )
        self._controllers.append(controller)
        return controller

    def open_search(
        self,
        debounce_seconds: float = DEFAULT_SEARCH_DEBOUNCE_SECONDS,
        page_size: int = 10,
        id_field: str | None = None,
    ) -> SearchController:
        return SearchController(
            self.open_feed,
            debounce_seconds=debounce_seconds,
            page_size=page_size,
            id_field=id_field or self.id_field,
        )

    def close(self) -> None:
        for controller in self._controllers:
            controller.close()
        self._controllers.clear()
        logger.debug("Feed session closed")
