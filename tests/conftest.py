from __future__ import annotations

from typing import Any, Callable

import pytest

from feedsync.common.scheduling import InlineTaskRunner
from feedsync.domain.ports.fetch import FetchResponse
from feedsync.domain.resources import FeedResource
from feedsync.errors import StorageError
from feedsync.infra.cache.entry_repository import CacheEntryRepository
from feedsync.infra.cache.memory_cache import MemoryCache
from feedsync.infra.ledger.action_ledger import ActionLedger
from feedsync.usecases.feed_controller import FeedController
from feedsync.usecases.tiered_fetch import TieredFetchCoordinator


class FakeStore:
    def __init__(self):
        self.data: dict[str, str] = {}
        self.fail_reads = False
        self.fail_writes = False
        self.writes = 0

    def get(self, key: str) -> str | None:
        if self.fail_reads:
            raise StorageError("disk unavailable", key=key)
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        if self.fail_writes:
            raise StorageError("disk full", key=key)
        self.writes += 1
        self.data[key] = value


class ManualRunner:
    """Копит задачи до явного run_all(): позволяет задать порядок завершений."""

    def __init__(self):
        self.tasks: list[tuple[str | None, Callable[[], None]]] = []

    def submit(self, task: Callable[[], None], name: str | None = None) -> None:
        self.tasks.append((name, task))

    def pop(self, index: int = 0) -> Callable[[], None]:
        return self.tasks.pop(index)[1]

    def run_all(self) -> None:
        while self.tasks:
            _, task = self.tasks.pop(0)
            task()


class ManualPoller:
    def __init__(self, interval: float, action: Callable[[], None], name: str):
        self.interval = interval
        self.action = action
        self.name = name
        self.running = False
        self.starts = 0
        self.stops = 0

    @property
    def is_running(self) -> bool:
        return self.running

    def start(self) -> None:
        self.running = True
        self.starts += 1

    def stop(self) -> None:
        self.running = False
        self.stops += 1

    def fire(self) -> None:
        if self.running:
            self.action()


class PollerRecorder:
    def __init__(self):
        self.created: list[ManualPoller] = []

    def __call__(self, interval: float, action: Callable[[], None], name: str) -> ManualPoller:
        poller = ManualPoller(interval, action, name)
        self.created.append(poller)
        return poller

    @property
    def running(self) -> list[ManualPoller]:
        return [p for p in self.created if p.is_running]


class ScriptedApi:
    """
    Fake FeedApi: ответы по номеру страницы.
    Значение - payload (ok=True), FetchResponse или исключение; список значений отдаётся по очереди,
    последнее повторяется.
    """

    def __init__(self, pages: dict[int, Any] | None = None):
        self.pages: dict[int, Any] = dict(pages or {})
        self.calls: list[int] = []
        self.actions: list[tuple[str, str, str | None]] = []
        self.action_response: Any = FetchResponse(ok=True, status_code=200, body={})

    def set_page(self, page: int, value: Any) -> None:
        self.pages[page] = value

    def page_fetcher(self, resource: FeedResource, page: int):
        def fetcher() -> FetchResponse:
            self.calls.append(page)
            value = self.pages.get(page, [])
            if isinstance(value, list) and value and isinstance(value[0], (FetchResponse, Exception)):
                value = value.pop(0) if len(value) > 1 else value[0]
            if isinstance(value, Exception):
                raise value
            if isinstance(value, FetchResponse):
                return value
            return FetchResponse(ok=True, status_code=200, body=value)

        return fetcher

    def fetch(self, path: str, params: dict | None = None) -> FetchResponse:
        raise AssertionError("fetch() is not used by feed controllers")

    def send_action(self, entity_id: str, action: str, fingerprint: str | None) -> FetchResponse:
        self.actions.append((entity_id, action, fingerprint))
        if isinstance(self.action_response, Exception):
            raise self.action_response
        return self.action_response


def make_posts(start: int, count: int, **extra) -> list[dict]:
    return [{"_id": f"p{i}", "title": f"Post {i}", "likes": 0, "views": 0, **extra} for i in range(start, start + count)]


def offline_response(status: int = 503) -> FetchResponse:
    return FetchResponse(ok=False, status_code=status, error_code="HTTP_5XX")


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def memory() -> MemoryCache:
    return MemoryCache()


@pytest.fixture
def clock():
    class Clock:
        def __init__(self):
            self.now = 1_700_000_000_000

        def __call__(self) -> int:
            return self.now

    return Clock()


@pytest.fixture
def repository(memory, store, clock) -> CacheEntryRepository:
    return CacheEntryRepository(memory, store, clock=clock)


@pytest.fixture
def pollers() -> PollerRecorder:
    return PollerRecorder()


@pytest.fixture
def api() -> ScriptedApi:
    return ScriptedApi()


@pytest.fixture
def ledger(store) -> ActionLedger:
    return ActionLedger(store, capacity=200)


@pytest.fixture
def make_coordinator(repository, pollers):
    def factory(runner=None, name: str = "feed") -> TieredFetchCoordinator:
        return TieredFetchCoordinator(
            repository=repository,
            runner=runner or InlineTaskRunner(),
            poller_factory=pollers,
            name=name,
        )

    return factory


@pytest.fixture
def make_controller(make_coordinator, api, ledger):
    def factory(resource: FeedResource, runner=None) -> FeedController:
        return FeedController(
            resource=resource,
            coordinator=make_coordinator(runner=runner, name=resource.kind),
            fetcher_factory=api.page_fetcher,
            ledger=ledger,
        )

    return factory


@pytest.fixture
def fake_helpers():
    class Helpers:
        posts = staticmethod(make_posts)
        offline = staticmethod(offline_response)

    return Helpers


@pytest.fixture
def manual_runner() -> ManualRunner:
    return ManualRunner()
