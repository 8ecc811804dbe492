from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict


@dataclass
class AppError(Exception):
    """
    Унифицированная ошибка приложения.
    """

    category: str
    code: str
    message: str
    retryable: bool = False
    details: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category,
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details or {},
        }


class StorageError(AppError):
    def __init__(self, message: str, key: str | None = None, details: dict | None = None):
        """
        Назначение:
            Ошибка чтения/записи персистентного хранилища.
        Контракт:
            - Не фатальна: вызывающий код трактует её как промах кэша.
        """
        super().__init__(
            category="storage",
            code="STORAGE_ERROR",
            message=message,
            retryable=True,
            details=details or ({"key": key} if key else {}),
        )
        self.key = key


class MalformedPayloadError(AppError):
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(
            category="payload",
            code="MALFORMED_PAYLOAD",
            message=message,
            retryable=False,
            details=details or {},
        )


__all__ = ["AppError", "StorageError", "MalformedPayloadError"]
