from __future__ import annotations

from typing import Callable, Protocol


class TaskRunnerProtocol(Protocol):
    """
    Назначение/ответственность:
        Порт фонового выполнения задач (сетевые вызовы, чтение/запись хранилища).
    Контракт:
        - submit() не бросает исключений задачи наружу; задача сама отвечает за обработку ошибок.
    """

    def submit(self, task: Callable[[], None], name: str | None = None) -> None: ...


class PollerProtocol(Protocol):
    """
    Назначение/ответственность:
        Отменяемая периодическая задача (ревалидация «живых» ключей).
    """

    def start(self) -> None: ...
    def stop(self) -> None: ...

    @property
    def is_running(self) -> bool: ...


PollerFactory = Callable[[float, Callable[[], None], str], PollerProtocol]
