from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


_UPLOAD_STORE_NAME_ENV = "UPLOAD_STORE_NAME"
_UPLOAD_STORE_ROOT_ENV = "UPLOAD_STORE_ROOT_PATH"
_DATA_DIR_ENV = "DATA_DIR"
_WORKER_COUNT_ENV = "IMPORT_WORKER_COUNT"
_HISTORY_WINDOW_ENV = "HISTORY_WINDOW"
_LOG_LEVEL_ENV = "LOG_LEVEL"
_DEFAULT_USER_ENV = "DEFAULT_USER_EMAIL"


@dataclass(frozen=True)
class Settings:
    upload_store_name: str
    upload_store_root_path: Optional[str]
    data_dir: Optional[str]
    import_workers: int
    history_window: int
    log_level: str
    default_user_email: str


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
        upload_store_name=_read_str_env(_UPLOAD_STORE_NAME_ENV, "uploads"),
        upload_store_root_path=_read_optional_env(_UPLOAD_STORE_ROOT_ENV, "./tmp/uploads"),
        data_dir=_read_optional_env(_DATA_DIR_ENV, "./tmp/data"),
        import_workers=_read_positive_int(_WORKER_COUNT_ENV, 4),
        history_window=_read_positive_int(_HISTORY_WINDOW_ENV, 10),
        log_level=_read_log_level("INFO"),
        default_user_email=_read_str_env(_DEFAULT_USER_ENV, "import@localhost"),
    )
