from __future__ import annotations

import logging
from pathlib import Path

LIBRARY_LOGGER_NAME = "feedsync"

LOG_FORMAT = "%(asctime)s %(levelname)s runId=%(runId)s comp=%(component)s msg=%(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"


class EnsureFieldsFilter(logging.Filter):
    """
    Назначение:
        Гарантирует наличие полей runId и component в LogRecord.
        Для записей библиотечных логгеров (feedsync.usecases.* и т.п.)
        component берётся из последнего сегмента имени логгера.
    """

    def __init__(self, runId: str, defaultComponent: str = "core"):
        super().__init__()
        self.runId = runId
        self.defaultComponent = defaultComponent

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "runId"):
            record.runId = self.runId
        if not hasattr(record, "component"):
            if record.name.startswith(f"{LIBRARY_LOGGER_NAME}.") and ".cli." not in record.name:
                record.component = record.name.rsplit(".", 1)[-1]
            else:
                record.component = self.defaultComponent
        return True


def mapLogLevel(levelName: str) -> int:
    """
    Назначение:
        Преобразует строковый уровень логирования в logging level.
    Входные данные:
        levelName: ERROR|WARN|WARNING|INFO|DEBUG
    """
    value = (levelName or "").strip().upper()
    if value == "ERROR":
        return logging.ERROR
    if value in ("WARN", "WARNING"):
        return logging.WARNING
    if value == "INFO":
        return logging.INFO
    if value == "DEBUG":
        return logging.DEBUG
    raise ValueError(f"Unsupported log level: {levelName}")


def createCommandLogger(commandName: str, logDir: str, runId: str, logLevel: str) -> tuple[logging.Logger, str]:
    """
    Назначение:
        Создаёт логгер команды и файл лога; туда же направляются записи
        библиотечного логгера feedsync (кэш, координатор, HTTP-клиент).

    Выходные данные:
        (logger, logFilePath)
    """
    Path(logDir).mkdir(parents=True, exist_ok=True)
    logFilePath = str(Path(logDir) / f"{commandName}_{runId}.log")

    level = mapLogLevel(logLevel)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    fileHandler = logging.FileHandler(logFilePath, encoding="utf-8")
    fileHandler.setLevel(level)
    fileHandler.setFormatter(formatter)
    fileHandler.addFilter(EnsureFieldsFilter(runId=runId))

    loggerName = f"{LIBRARY_LOGGER_NAME}.cli.{commandName}.{runId}"
    logger = logging.getLogger(loggerName)
    logger.handlers.clear()
    logger.propagate = False
    logger.setLevel(level)
    logger.addHandler(fileHandler)

    libraryLogger = logging.getLogger(LIBRARY_LOGGER_NAME)
    libraryLogger.handlers.clear()
    libraryLogger.setLevel(level)
    libraryLogger.addHandler(fileHandler)

    return logger, logFilePath


def closeCommandLogger(logger: logging.Logger) -> None:
    """Закрывает файловые хендлеры команды и отвязывает их от библиотечного логгера."""
    libraryLogger = logging.getLogger(LIBRARY_LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        if handler in libraryLogger.handlers:
            libraryLogger.removeHandler(handler)
        handler.close()


def logEvent(logger: logging.Logger, level: int, runId: str, component: str, message: str) -> None:
    """Унифицированная запись событий с runId/component."""
    logger.log(level, message, extra={"runId": runId, "component": component})
