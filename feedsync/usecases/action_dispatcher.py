from __future__ import annotations

import logging
from typing import Any, Mapping

from feedsync.domain.models import ActionKind, ActionToken
from feedsync.domain.pagination import entity_id
from feedsync.domain.ports.fetch import FeedApiProtocol
from feedsync.domain.ports.scheduling import TaskRunnerProtocol
from feedsync.errors import AppError
from feedsync.infra.ledger.action_ledger import ActionLedger
from feedsync.usecases.feed_controller import FeedController

logger = logging.getLogger(__name__)


def build_optimistic_patch(entity: Mapping[str, Any], kind: ActionKind, fingerprint: str | None) -> dict[str, Any]:
    """
    Назначение:
        Локальная правка счётчика для оптимистичного отображения действия.
    Алгоритм:
        - likes-список -> добавляется {"fingerprint": ...};
        - число (или отсутствие поля) -> +1.
    """
    field = kind.counter_field
    current = entity.get(field)
    if isinstance(current, list):
        return {field: [*current, {"fingerprint": fingerprint}]}
    if isinstance(current, bool) or not isinstance(current, (int, float)):
        current = 0
    return {field: current + 1}


class ActionDispatcher:
    """
    Назначение/ответственность:
        Однократная отправка просмотров и лайков с оптимистичным обновлением ленты.
    Инварианты/гарантии:
        - Действие отправляется не более одного раза на (entity_id, kind), пока токен в журнале.
        - Токен пишется до отправки; при ошибке сервера откат не выполняется.
        - Ошибка отправки логируется и не пробрасывается.
    """

    def __init__(
        self,
        ledger: ActionLedger,
        client: FeedApiProtocol,
        runner: TaskRunnerProtocol,
        fingerprint: str | None = None,
        id_field: str = "id",
    ):
        self.ledger = ledger
        self.client = client
        self.runner = runner
        self.fingerprint = fingerprint
        self.id_field = id_field

    def record_view(self, entity: Mapping[str, Any], controller: FeedController | None = None) -> bool:
        return self.dispatch(entity, ActionKind.VIEWED, controller)

    def like(self, entity: Mapping[str, Any], controller: FeedController | None = None) -> bool:
        return self.dispatch(entity, ActionKind.LIKED, controller)

    def dispatch(self, entity: Mapping[str, Any], kind: ActionKind, controller: FeedController | None = None) -> bool:
        """
        Выходные данные:
            True, если действие принято к отправке; False, если оно уже было отправлено
            или у сущности нет id.
        """
        id_field = controller.resource.id_field if controller is not None else self.id_field
        key = entity_id(entity, id_field)
        if key is None:
            logger.warning(f"Action {kind.value} skipped: entity has no {id_field}")
            return False

        if not self.ledger.mark_fired(ActionToken(entity_id=key, kind=kind)):
            logger.debug(f"Action {kind.value} already fired for {key}")
            return False

        if controller is not None:
            current = controller.find(key) or entity
            controller.apply_local_patch(key, build_optimistic_patch(current, kind, self.fingerprint))

        self.runner.submit(lambda: self._send(key, kind), name=f"action-{kind.value}")
        return True

    def _send(self, key: str, kind: ActionKind) -> None:
        try:
            response = self.client.send_action(key, kind.api_action, self.fingerprint)
        except AppError as exc:
            logger.warning(f"Action {kind.value} for {key} failed: {exc.code} {exc.message}")
            return
        if not response.ok:
            logger.warning(f"Action {kind.value} for {key} rejected: status={response.status_code}")
            return
        logger.info(f"Action {kind.value} sent for {key}")
