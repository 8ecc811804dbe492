from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
    """
    Назначение:
        Единая таксономия кодов ошибок для FetchResponse и состояния ленты.
    """

    NETWORK_ERROR = "NETWORK_ERROR"
    HTTP_ERROR = "HTTP_ERROR"
    HTTP_4XX = "HTTP_4XX"
    HTTP_5XX = "HTTP_5XX"
    INVALID_JSON = "INVALID_JSON"
    MALFORMED_PAYLOAD = "MALFORMED_PAYLOAD"
    STORAGE_ERROR = "STORAGE_ERROR"
    UNEXPECTED_ERROR = "UNEXPECTED_ERROR"

    @classmethod
    def from_status(cls, status_code: int | None) -> "ErrorCode":
        """
        Назначение:
            Подбор общего кода по HTTP-статусу.
        """
        if status_code is None:
            return cls.NETWORK_ERROR
        if 400 <= status_code <= 499:
            return cls.HTTP_4XX
        if 500 <= status_code <= 599:
            return cls.HTTP_5XX
        return cls.HTTP_ERROR

    @classmethod
    def from_app_code(cls, code: str | None) -> "ErrorCode":
        """
        Назначение:
            Маппинг строкового кода AppError в ErrorCode.
        Алгоритм:
            - Известные коды маппятся напрямую.
            - HTTP_<status> маппится через from_status.
            - Иначе UNEXPECTED_ERROR.
        """
        if not code:
            return cls.UNEXPECTED_ERROR
        if code in cls.__members__:
            return cls[code]
        if code.startswith("HTTP_"):
            suffix = code[len("HTTP_"):]
            if suffix.isdigit():
                return cls.from_status(int(suffix))
            return cls.HTTP_ERROR
        return cls.UNEXPECTED_ERROR
