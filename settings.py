from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


_WINDOW_SECONDS_ENV = "CROWD_WINDOW_SECONDS"
_SIMILARITY_WINDOW_ENV = "CROWD_SIMILARITY_WINDOW_SECONDS"
_STORE_PATH_ENV = "CROWD_STORE_PATH"
_REGISTRY_PATH_ENV = "CROWD_REGISTRY_PATH"
_STORE_TIMEOUT_ENV = "CROWD_STORE_TIMEOUT_SECONDS"
_RETENTION_ENV = "CROWD_RETENTION_SECONDS"
_TOKEN_SALT_ENV = "CROWD_TOKEN_SALT"
_DELIVERY_WORKERS_ENV = "ALERT_DELIVERY_WORKERS"
_DELIVERY_TIMEOUT_ENV = "ALERT_DELIVERY_TIMEOUT_SECONDS"
_LOG_LEVEL_ENV = "LOG_LEVEL"


@dataclass(frozen=True)
class Settings:
    window_seconds: int
    similarity_window_seconds: int
    store_path: Optional[str]
    registry_path: Optional[str]
    store_timeout_seconds: float
    retention_seconds: int
    token_salt: str
    delivery_workers: int
    delivery_timeout_seconds: float
    log_level: str


def _read_str_env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or default


def _read_optional_env(name: str, default: Optional[str]) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or None


def _read_positive_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = int(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_positive_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = float(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_log_level(default: str) -> str:
    value = os.getenv(_LOG_LEVEL_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    return candidate.upper()


@lru_cache
def get_settings() -> Settings:
    return Settings(
        window_seconds=_read_positive_int(_WINDOW_SECONDS_ENV, 60),
        similarity_window_seconds=_read_positive_int(_SIMILARITY_WINDOW_ENV, 120),
        store_path=_read_optional_env(_STORE_PATH_ENV, "./tmp/observations.json"),
        registry_path=_read_optional_env(_REGISTRY_PATH_ENV, "./tmp/registry.json"),
        store_timeout_seconds=_read_positive_float(_STORE_TIMEOUT_ENV, 5.0),
        retention_seconds=_read_positive_int(_RETENTION_ENV, 3600),
        # The salt is kept verbatim; whitespace is a legitimate salt character.
        token_salt=os.getenv(_TOKEN_SALT_ENV) or "",
        delivery_workers=_read_positive_int(_DELIVERY_WORKERS_ENV, 4),
        delivery_timeout_seconds=_read_positive_float(_DELIVERY_TIMEOUT_ENV, 5.0),
        log_level=_read_log_level("INFO"),
    )
