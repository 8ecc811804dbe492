from __future__ import annotations

import json
import logging
import threading
from collections import OrderedDict

from feedsync.domain.models import ActionToken
from feedsync.domain.ports.storage import PersistentStoreProtocol
from feedsync.errors import StorageError

logger = logging.getLogger(__name__)

LEDGER_STORAGE_KEY = "feedsync:ledger:actions"
DEFAULT_LEDGER_CAPACITY = 200


class ActionLedger:
    """
    Назначение/ответственность:
        Персистентный журнал уже отправленных действий (просмотр/лайк по id),
        не допускающий повторной отправки.
    Инварианты/гарантии:
        - has_fired/mark_fired безопасно вызывать повторно для одного токена.
        - Не более capacity токенов; при переполнении вытесняется самый старый.
        - Повторный mark_fired не «омолаживает» токен.
        - Откатов нет: токен удаляется только вытеснением.
    Ограничения:
        - Очень старая сущность после вытеснения может получить действие повторно.
    """

    def __init__(
        self,
        store: PersistentStoreProtocol,
        capacity: int = DEFAULT_LEDGER_CAPACITY,
        storage_key: str = LEDGER_STORAGE_KEY,
    ):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.store = store
        self.capacity = capacity
        self.storage_key = storage_key
        self._tokens: OrderedDict[ActionToken, None] = OrderedDict()
        self._loaded = False
        self._lock = threading.Lock()

    def has_fired(self, token: ActionToken) -> bool:
        with self._lock:
            self._ensure_loaded()
            return token in self._tokens

    def mark_fired(self, token: ActionToken) -> bool:
        """
        Контракт:
            - True, если токен записан впервые; False, если он уже был в журнале.
            - Запись в хранилище синхронная и под блокировкой, порядок снимков сохраняется.
            - Ошибка записи логируется; журнал в памяти продолжает блокировать повторы
              в текущей сессии.
            - Пока сохранённый журнал не прочитан, запись не выполняется: снимок сессии
              затёр бы токены прошлых сессий.
        """
        with self._lock:
            loaded = self._ensure_loaded()
            if token in self._tokens:
                return False
            self._tokens[token] = None
            while len(self._tokens) > self.capacity:
                evicted, _ = self._tokens.popitem(last=False)
                logger.debug(f"Ledger evicted {evicted.entity_id}/{evicted.kind.value}")
            if loaded:
                self._save([t.to_list() for t in self._tokens])
            else:
                logger.debug(f"Ledger save deferred until stored tokens are read: {token.entity_id}")
        return True

    def tokens(self) -> list[ActionToken]:
        """Токены от самого старого к самому новому."""
        with self._lock:
            self._ensure_loaded()
            return list(self._tokens)

    def __len__(self) -> int:
        return len(self.tokens())

    def _ensure_loaded(self) -> bool:
        """
        Контракт:
            - True, если журнал из хранилища уже прочитан.
            - Ошибка чтения не помечает журнал загруженным: следующий вызов повторит чтение,
              а токены текущей сессии будут добавлены после сохранённых.
        """
        if self._loaded:
            return True
        try:
            raw = self.store.get(self.storage_key)
        except StorageError as exc:
            logger.warning(f"Ledger load failed, gating from session tokens only: {exc.message}")
            return False
        self._loaded = True
        session = list(self._tokens)
        self._tokens = OrderedDict((token, None) for token in self._parse(raw))
        for token in session:
            self._tokens.setdefault(token, None)
        while len(self._tokens) > self.capacity:
            self._tokens.popitem(last=False)
        return True

    def _parse(self, raw: str | None) -> list[ActionToken]:
        if not raw:
            return []
        try:
            data = json.loads(raw)
        except ValueError:
            logger.warning("Ledger payload is corrupted, starting empty")
            return []
        if not isinstance(data, list):
            logger.warning("Ledger payload is not a list, starting empty")
            return []
        tokens = []
        for item in data:
            token = ActionToken.from_list(item)
            if token is not None:
                tokens.append(token)
        return tokens

    def _save(self, snapshot: list[list[str]]) -> None:
        try:
            self.store.set(self.storage_key, json.dumps(snapshot, ensure_ascii=False))
        except StorageError as exc:
            logger.warning(f"Ledger save failed: {exc.message}")
