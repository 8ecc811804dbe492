from __future__ import annotations

import dataclasses
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable

from feedsync.common.scheduling import PollingTask
from feedsync.domain.connectivity import ConnectivityMachine
from feedsync.domain.error_codes import ErrorCode
from feedsync.domain.models import FeedSnapshot, SnapshotSource
from feedsync.domain.ports.fetch import Fetcher
from feedsync.domain.ports.scheduling import PollerFactory, PollerProtocol, TaskRunnerProtocol
from feedsync.errors import AppError
from feedsync.infra.cache.entry_repository import CacheEntryRepository

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 12.0

SnapshotCallback = Callable[[FeedSnapshot], None]


class FeedObservable:
    """
    Назначение/ответственность:
        Наблюдаемое значение по одному ключу кэша: текущий FeedSnapshot + подписчики.
    Контракт:
        - subscribe() возвращает функцию отписки; повторная подписка того же callback игнорируется.
        - Исключения подписчиков логируются и не влияют на остальных.
    """

    def __init__(self, key: str, initial: FeedSnapshot):
        self.key = key
        self._snapshot = initial
        self._subscribers: list[SnapshotCallback] = []
        self._lock = threading.Lock()

    @property
    def snapshot(self) -> FeedSnapshot:
        return self._snapshot

    def subscribe(self, callback: SnapshotCallback) -> Callable[[], None]:
        with self._lock:
            if callback not in self._subscribers:
                self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def _set(self, snapshot: FeedSnapshot) -> None:
        self._snapshot = snapshot

    def _notify(self, snapshot: FeedSnapshot) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(snapshot)
            except Exception as exc:
                logger.error(f"Error in snapshot subscriber key={self.key}: {exc}")


@dataclass
class _KeyState:
    observable: FeedObservable
    fetcher: Fetcher
    live: bool = False
    poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS
    poller: PollerProtocol | None = None
    in_flight: int = 0


class TieredFetchCoordinator:
    """
    Назначение/ответственность:
        Оркестрация уровней кэша и сети для одной ленты (stale-while-revalidate).
    Алгоритм load():
        - (a) значение из памяти отдаётся синхронно, если есть;
        - (b) иначе в фоне читается персистентное хранилище и, если свежих данных ещё нет,
          значение показывается и поднимается в память;
        - (c) в любом случае в фоне вызывается fetcher().
    Инварианты/гарантии:
        - Успех: оба уровня кэша перезаписываются, связность -> ONLINE, подписчики уведомляются.
        - Ошибка: связность -> OFFLINE, данные не очищаются, refresh_failed=True.
        - Для одного ключа побеждает последнее завершение (last-completion-wins).
        - Опрос «живых» ключей идёт только в ONLINE; при переходе в OFFLINE он
          останавливается и возобновляется только после удачного retry()/refresh().
        - После close() поздние завершения игнорируются: без записи в кэш, без уведомлений,
          без смены связности.
        - Ошибки слоя запросов не пробрасываются наружу.
    """

    def __init__(
        self,
        repository: CacheEntryRepository,
        runner: TaskRunnerProtocol,
        connectivity: ConnectivityMachine | None = None,
        poller_factory: PollerFactory = PollingTask,
        poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
        name: str = "feed",
    ):
        self.repository = repository
        self.runner = runner
        self.connectivity = connectivity or ConnectivityMachine(name)
        self.poller_factory = poller_factory
        self.poll_interval_seconds = poll_interval_seconds
        self.name = name
        self._keys: dict[str, _KeyState] = {}
        self._closed = False
        self._lock = threading.RLock()

    @property
    def closed(self) -> bool:
        return self._closed

    def observable(self, key: str) -> FeedObservable | None:
        with self._lock:
            state = self._keys.get(key)
            return state.observable if state else None

    def is_loading(self, key: str) -> bool:
        with self._lock:
            state = self._keys.get(key)
            return bool(state and state.in_flight > 0)

    def is_polling(self, key: str) -> bool:
        with self._lock:
            state = self._keys.get(key)
            return bool(state and state.poller is not None and state.poller.is_running)

    def load(
        self,
        key: str,
        fetcher: Fetcher,
        live: bool = False,
        poll_interval: float | None = None,
        subscriber: SnapshotCallback | None = None,
    ) -> FeedObservable:
        """
        Назначение:
            Показать данные по ключу из кэша и ревалидировать их по сети.
        Выходные данные:
            FeedObservable; subscriber (если передан) подписывается до любых уведомлений.
        """
        with self._lock:
            if self._closed:
                raise RuntimeError(f"Coordinator {self.name} is closed")
            state = self._ensure_key(key, fetcher)
            state.live = state.live or live
            if poll_interval is not None:
                state.poll_interval = poll_interval
            if subscriber is not None:
                state.observable.subscribe(subscriber)

            memory_entry = self.repository.read_memory(key)
            snapshot = None
            if memory_entry is not None and state.observable.snapshot.source != SnapshotSource.NETWORK:
                snapshot = dataclasses.replace(
                    state.observable.snapshot,
                    data=memory_entry.payload,
                    source=SnapshotSource.MEMORY,
                    stored_at=memory_entry.stored_at,
                    state=self.connectivity.state,
                )
                state.observable._set(snapshot)
            elif state.observable.snapshot.data is not None:
                snapshot = state.observable.snapshot

        if snapshot is not None:
            logger.debug(f"Cached value served key={key} source={snapshot.source}")
            state.observable._notify(snapshot)
        else:
            self.runner.submit(lambda: self._hydrate_from_store(key), name="hydrate")

        self._dispatch_fetch(key, resume_polling=False, reason="load")

        if state.live:
            self._start_poller(key)
        return state.observable

    def refresh(self, key: str, fetcher: Fetcher | None = None) -> FeedObservable:
        """
        Назначение:
            Pull-to-refresh: минуя уровни кэша, вызвать fetcher и заменить значение.
            Удачный refresh возобновляет приостановленный опрос.
        """
        with self._lock:
            if self._closed:
                raise RuntimeError(f"Coordinator {self.name} is closed")
            if fetcher is None:
                state = self._keys.get(key)
                if state is None:
                    raise KeyError(key)
                fetcher = state.fetcher
            state = self._ensure_key(key, fetcher)
        self._dispatch_fetch(key, resume_polling=True, reason="refresh")
        return state.observable

    def retry(self, key: str) -> bool:
        """
        Назначение:
            Ручной повтор последнего fetcher по ключу (кнопка «повторить» в офлайне).
        Выходные данные:
            False, если ключ неизвестен или координатор закрыт.
        """
        with self._lock:
            if self._closed or key not in self._keys:
                return False
        self._dispatch_fetch(key, resume_polling=True, reason="retry")
        return True

    def close(self) -> None:
        """
        Назначение:
            Демонтаж ленты: остановить опрос и игнорировать поздние ответы.
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True
            pollers = [s.poller for s in self._keys.values() if s.poller is not None]
            for state in self._keys.values():
                state.poller = None
        for poller in pollers:
            poller.stop()
        logger.debug(f"Coordinator {self.name} closed")

    def _ensure_key(self, key: str, fetcher: Fetcher) -> _KeyState:
        state = self._keys.get(key)
        if state is None:
            initial = FeedSnapshot(key=key, state=self.connectivity.state)
            state = _KeyState(
                observable=FeedObservable(key, initial),
                fetcher=fetcher,
                poll_interval=self.poll_interval_seconds,
            )
            self._keys[key] = state
        else:
            state.fetcher = fetcher
        return state

    def _hydrate_from_store(self, key: str) -> None:
        entry = self.repository.read_persistent(key)
        if entry is None:
            return
        with self._lock:
            if self._closed:
                return
            state = self._keys.get(key)
            if state is None or state.observable.snapshot.data is not None:
                # Свежее значение уже пришло (память или сеть) - персистентное не нужно.
                return
            self.repository.warm_memory(key, entry)
            snapshot = dataclasses.replace(
                state.observable.snapshot,
                data=entry.payload,
                source=SnapshotSource.PERSISTENT,
                stored_at=entry.stored_at,
                state=self.connectivity.state,
            )
            state.observable._set(snapshot)
        logger.debug(f"Persistent cache hit key={key}")
        state.observable._notify(snapshot)

    def _dispatch_fetch(self, key: str, resume_polling: bool, reason: str) -> None:
        with self._lock:
            state = self._keys[key]
            fetcher = state.fetcher
            state.in_flight += 1
        self.runner.submit(lambda: self._run_fetch(key, fetcher, resume_polling, reason), name=f"fetch-{reason}")

    def _run_fetch(self, key: str, fetcher: Fetcher, resume_polling: bool, reason: str) -> None:
        payload: Any = None
        error_code: str | None = None
        try:
            response = fetcher()
            if not response.ok:
                error_code = response.error_code or ErrorCode.from_status(response.status_code).value
            else:
                payload = response.json()
        except AppError as exc:
            error_code = ErrorCode.from_app_code(exc.code).value
        except Exception as exc:
            logger.error(f"Unexpected fetch error key={key}: {exc}")
            error_code = ErrorCode.UNEXPECTED_ERROR.value

        if error_code is None:
            self._apply_success(key, payload, resume_polling, reason)
        else:
            self._apply_failure(key, error_code, reason)

    def _apply_success(self, key: str, payload: Any, resume_polling: bool, reason: str) -> None:
        with self._lock:
            state = self._keys.get(key)
            if state is not None:
                state.in_flight = max(0, state.in_flight - 1)
            if self._closed or state is None:
                logger.debug(f"Ignored late response key={key} reason={reason}")
                return
            entry = self.repository.write(key, payload)
            self.connectivity.record_success()
            snapshot = FeedSnapshot(
                key=key,
                data=entry.payload,
                state=self.connectivity.state,
                source=SnapshotSource.NETWORK,
                stored_at=entry.stored_at,
                refresh_failed=False,
                error_code=None,
            )
            state.observable._set(snapshot)
        logger.debug(f"Fetch ok key={key} reason={reason}")
        state.observable._notify(snapshot)
        if resume_polling:
            self._resume_polling()

    def _apply_failure(self, key: str, error_code: str, reason: str) -> None:
        with self._lock:
            state = self._keys.get(key)
            if state is not None:
                state.in_flight = max(0, state.in_flight - 1)
            if self._closed or state is None:
                logger.debug(f"Ignored late failure key={key} reason={reason}")
                return
            self.connectivity.record_failure(error_code)
            snapshot = dataclasses.replace(
                state.observable.snapshot,
                state=self.connectivity.state,
                refresh_failed=True,
                error_code=error_code,
            )
            state.observable._set(snapshot)
        logger.warning(f"Fetch failed key={key} reason={reason} code={error_code}; serving last known data")
        self._suspend_polling()
        state.observable._notify(snapshot)

    def _poll_tick(self, key: str) -> None:
        with self._lock:
            if self._closed or key not in self._keys:
                return
        if not self.connectivity.is_online:
            return
        self._dispatch_fetch(key, resume_polling=False, reason="poll")

    def _start_poller(self, key: str) -> None:
        with self._lock:
            state = self._keys.get(key)
            if self._closed or state is None or not state.live:
                return
            if not self.connectivity.is_online:
                logger.debug(f"Poller not started key={key}: {self.name} is offline")
                return
            if state.poller is not None and state.poller.is_running:
                return
            poller = self.poller_factory(state.poll_interval, lambda: self._poll_tick(key), f"poll-{self.name}")
            if not self.connectivity.is_online:
                return
            state.poller = poller
            poller.start()

    def _suspend_polling(self) -> None:
        with self._lock:
            pollers = [s.poller for s in self._keys.values() if s.poller is not None]
            for state in self._keys.values():
                state.poller = None
        for poller in pollers:
            poller.stop()
        if pollers:
            logger.info(f"Polling suspended for {self.name} (offline)")

    def _resume_polling(self) -> None:
        with self._lock:
            if self._closed:
                return
            live_keys = [k for k, s in self._keys.items() if s.live]
        for key in live_keys:
            self._start_poller(key)
