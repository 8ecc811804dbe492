from __future__ import annotations

import logging
import threading
from typing import Callable, List

from feedsync.common.time import getNowIso
from feedsync.domain.models import ConnectivityState, ConnectivityStatus

logger = logging.getLogger(__name__)

ConnectivityListener = Callable[[ConnectivityState, ConnectivityState], None]


class ConnectivityMachine:
    """
    Назначение/ответственность:
        Машина состояний ONLINE/OFFLINE одной логической ленты.
    Инварианты/гарантии:
        - Начальное состояние ONLINE.
        - Переходы только по завершению запроса: успех -> ONLINE, ошибка -> OFFLINE.
        - Параллельные завершения сериализуются; авторитетно последнее завершение.
        - Промежуточного состояния «проверка» нет.
    Взаимодействия:
        Слушатели вызываются только при смене состояния, вне блокировки.
    """

    def __init__(self, name: str = "feed"):
        self.name = name
        self._status = ConnectivityStatus()
        self._listeners: List[ConnectivityListener] = []
        self._lock = threading.Lock()

    @property
    def state(self) -> ConnectivityState:
        return self._status.state

    @property
    def is_online(self) -> bool:
        return self._status.state == ConnectivityState.ONLINE

    @property
    def is_offline(self) -> bool:
        return self._status.state == ConnectivityState.OFFLINE

    @property
    def consecutive_failures(self) -> int:
        return self._status.consecutive_failures

    def record_success(self) -> ConnectivityState:
        with self._lock:
            old = self._status.state
            self._status.state = ConnectivityState.ONLINE
            self._status.consecutive_failures = 0
            self._status.last_online_at = getNowIso()
            self._status.last_error_code = None
        self._after_transition(old, ConnectivityState.ONLINE)
        return ConnectivityState.ONLINE

    def record_failure(self, error_code: str | None = None) -> ConnectivityState:
        with self._lock:
            old = self._status.state
            self._status.state = ConnectivityState.OFFLINE
            self._status.consecutive_failures += 1
            self._status.last_error_code = error_code
        self._after_transition(old, ConnectivityState.OFFLINE)
        return ConnectivityState.OFFLINE

    def subscribe(self, listener: ConnectivityListener) -> Callable[[], None]:
        """
        Регистрирует слушателя смены состояния (old, new).
        Возвращает функцию отписки.
        """
        with self._lock:
            if listener not in self._listeners:
                self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _after_transition(self, old: ConnectivityState, new: ConnectivityState) -> None:
        if old == new:
            return
        logger.info(f"Connectivity {self.name}: {old.value} -> {new.value}")
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(old, new)
            except Exception as exc:
                logger.error(f"Error in connectivity listener: {exc}")

    def get_status_display(self) -> dict:
        """Сводка для UI/CLI."""
        return {
            "feed": self.name,
            "status": self._status.state.value,
            "is_online": self.is_online,
            "failures": self._status.consecutive_failures,
            "last_online": self._status.last_online_at,
            "error": self._status.last_error_code,
        }
