from __future__ import annotations

import logging
import threading
from typing import Callable

from feedsync.domain.ports.scheduling import PollerProtocol, TaskRunnerProtocol

logger = logging.getLogger(__name__)


class InlineTaskRunner(TaskRunnerProtocol):
    """
    Назначение:
        Выполняет задачу сразу в вызывающем потоке.
    Применение:
        CLI (одна команда = один проход) и тесты.
    """

    def submit(self, task: Callable[[], None], name: str | None = None) -> None:
        _run_guarded(task, name)


class ThreadTaskRunner(TaskRunnerProtocol):
    """
    Назначение:
        Запускает каждую задачу в отдельном daemon-потоке, не блокируя вызывающий код.
    """

    def __init__(self, namePrefix: str = "feedsync"):
        self.namePrefix = namePrefix
        self._threads: list[threading.Thread] = []
        self._lock = threading.Lock()

    def submit(self, task: Callable[[], None], name: str | None = None) -> None:
        thread = threading.Thread(
            target=_run_guarded,
            args=(task, name),
            daemon=True,
            name=f"{self.namePrefix}-{name or 'task'}",
        )
        with self._lock:
            self._threads = [t for t in self._threads if t.is_alive()]
            self._threads.append(thread)
        thread.start()

    def join(self, timeout: float | None = None) -> None:
        """Ожидает завершения запущенных задач (используется при остановке CLI)."""
        with self._lock:
            threads = list(self._threads)
        for thread in threads:
            thread.join(timeout=timeout)


def _run_guarded(task: Callable[[], None], name: str | None) -> None:
    try:
        task()
    except Exception as exc:
        logger.error(f"Background task {name or 'task'} failed: {exc}")


class PollingTask(PollerProtocol):
    """
    Назначение/ответственность:
        Отменяемая периодическая задача на threading.Event.
    Контракт:
        - start() идемпотентен: повторный вызов при работающем цикле ничего не делает.
        - stop() останавливает цикл и ждёт поток (кроме вызова из самого цикла).
        - tick() выполняет одну итерацию синхронно.
    """

    def __init__(self, intervalSeconds: float, action: Callable[[], None], name: str = "poll"):
        if intervalSeconds <= 0:
            raise ValueError("intervalSeconds must be positive")
        self.intervalSeconds = intervalSeconds
        self.action = action
        self.name = name
        self._thread: threading.Thread | None = None
        self._stop = threading.Event()

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self._stop.is_set()

    def start(self) -> None:
        if self.is_running:
            return
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._loop, args=(self._stop,), daemon=True, name=self.name)
        self._thread.start()
        logger.debug(f"Polling started: {self.name} every {self.intervalSeconds}s")

    def stop(self) -> None:
        self._stop.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=5)
        self._thread = None
        logger.debug(f"Polling stopped: {self.name}")

    def tick(self) -> None:
        try:
            self.action()
        except Exception as exc:
            logger.error(f"Error in polling tick {self.name}: {exc}")

    def _loop(self, stopEvent: threading.Event) -> None:
        while not stopEvent.is_set():
            if stopEvent.wait(timeout=self.intervalSeconds):
                break
            self.tick()


class Debouncer:
    """
    Назначение:
        Откладывает вызов до паузы во вводе (поиск по мере набора текста).
    Контракт:
        - Каждый call() отменяет предыдущий отложенный вызов.
        - cancel() отменяет ожидающий вызов.
        - delaySeconds=0 означает синхронный вызов без таймера.
    """

    def __init__(self, delaySeconds: float, action: Callable[..., None]):
        self.delaySeconds = delaySeconds
        self.action = action
        self._timer: threading.Timer | None = None
        self._lock = threading.Lock()

    def call(self, *args) -> None:
        self.cancel()
        if self.delaySeconds <= 0:
            self.action(*args)
            return
        timer = threading.Timer(self.delaySeconds, self.action, args=args)
        timer.daemon = True
        with self._lock:
            self._timer = timer
        timer.start()

    def cancel(self) -> None:
        with self._lock:
            timer = self._timer
            self._timer = None
        if timer is not None:
            timer.cancel()
