from __future__ import annotations

from dataclasses import dataclass, fields
from pathlib import Path
import os
import yaml


@dataclass(frozen=True)
class Settings:
    # API
    base_url: str | None = None
    app_secret: str | None = None
    device_fingerprint: str | None = None
    id_field: str = "_id"

    # Paths
    cache_dir: str = "./cache"
    log_dir: str = "./logs"
    log_level: str = "INFO"

    # Feed
    page_size: int = 10
    poll_interval_seconds: float = 12.0
    ledger_capacity: int = 200

    # HTTP
    timeout_seconds: float = 20.0
    retries: int = 3
    retry_backoff_seconds: float = 0.5


@dataclass(frozen=True)
class LoadedSettings:
    settings: Settings
    sources_used: list[str]


ENV_NAMES = {
    "base_url": "FEEDSYNC_BASE_URL",
    "app_secret": "FEEDSYNC_APP_SECRET",
    "device_fingerprint": "FEEDSYNC_DEVICE_FINGERPRINT",
    "id_field": "FEEDSYNC_ID_FIELD",
    "cache_dir": "FEEDSYNC_CACHE_DIR",
    "log_dir": "FEEDSYNC_LOG_DIR",
    "log_level": "FEEDSYNC_LOG_LEVEL",
    "page_size": "FEEDSYNC_PAGE_SIZE",
    "poll_interval_seconds": "FEEDSYNC_POLL_INTERVAL_SECONDS",
    "ledger_capacity": "FEEDSYNC_LEDGER_CAPACITY",
    "timeout_seconds": "FEEDSYNC_TIMEOUT_SECONDS",
    "retries": "FEEDSYNC_RETRIES",
    "retry_backoff_seconds": "FEEDSYNC_RETRY_BACKOFF_SECONDS",
}

INT_FIELDS = ("page_size", "ledger_capacity", "retries")
FLOAT_FIELDS = ("poll_interval_seconds", "timeout_seconds", "retry_backoff_seconds")


def _read_yaml_config(path: Path) -> dict:
    if not path.exists():
        return {}
    if not path.is_file():
        return {}
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            return {}
        return data


def _env_get(name: str) -> str | None:
    v = os.getenv(name)
    if v is None or v.strip() == "":
        return None
    return v.strip()


def _coerce(name: str, value):
    if value is None:
        return None
    try:
        if name in INT_FIELDS:
            if isinstance(value, bool):
                raise ValueError(value)
            return int(value)
        if name in FLOAT_FIELDS:
            if isinstance(value, bool):
                raise ValueError(value)
            return float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Invalid value for {name}: {value!r}") from exc
    return str(value)


def validateSettings(settings: Settings) -> None:
    """
    Назначение:
        Проверка диапазонов числовых параметров.
    Поведение:
        ValueError с понятным сообщением (CLI превращает его в exit code 2).
    """
    if settings.page_size <= 0:
        raise ValueError("page_size must be positive")
    if settings.poll_interval_seconds <= 0:
        raise ValueError("poll_interval_seconds must be positive")
    if settings.ledger_capacity <= 0:
        raise ValueError("ledger_capacity must be positive")
    if settings.timeout_seconds <= 0:
        raise ValueError("timeout_seconds must be positive")
    if settings.retries < 0:
        raise ValueError("retries must be >= 0")
    if settings.retry_backoff_seconds < 0:
        raise ValueError("retry_backoff_seconds must be >= 0")
    if not settings.id_field:
        raise ValueError("id_field must not be empty")


def loadSettings(
    config_path: str | None,
    cli_overrides: dict,
) -> LoadedSettings:
    """
    Priority: CLI > ENV > config > defaults
    """
    sources: list[str] = []
    defaults = Settings()
    names = [f.name for f in fields(Settings)]

    # 1) config file
    cfg: dict = {}
    if config_path:
        cfg = _read_yaml_config(Path(config_path))
        if cfg:
            sources.append("config")

    # 2) env
    env = {name: _env_get(ENV_NAMES[name]) for name in names}
    if any(v is not None for v in env.values()):
        sources.append("env")

    merged = {name: cfg.get(name, getattr(defaults, name)) for name in names}

    for name, value in env.items():
        if value is not None:
            merged[name] = value

    # 3) apply CLI overrides (only those explicitly passed)
    if any(v is not None for v in cli_overrides.values()):
        sources.append("cli")

    for k, v in cli_overrides.items():
        if v is None or k not in merged:
            continue
        merged[k] = v

    settings = Settings(**{name: _coerce(name, merged[name]) for name in names})
    validateSettings(settings)
    return LoadedSettings(settings=settings, sources_used=sources)
