from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

DEFAULT_BASE_URL = "http://localhost:8000"
DEFAULT_POLL_INTERVAL = 0.5
DEFAULT_TIMEOUT = 120.0

_BASE_URL_ENV = "API_BASE_URL"
_POLL_INTERVAL_ENV = "CLI_POLL_INTERVAL"
_TIMEOUT_ENV = "CLI_POLL_TIMEOUT"
_USER_EMAIL_ENV = "CLI_USER_EMAIL"


@dataclass(frozen=True)
class CLIConfig:
    base_url: str = DEFAULT_BASE_URL
    poll_interval: float = DEFAULT_POLL_INTERVAL
    poll_timeout: float = DEFAULT_TIMEOUT
    user_email: Optional[str] = None


def _positive_float_env(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    try:
        parsed = float(raw) if raw else default
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def load_config(
    base_url: Optional[str] = None,
    poll_interval: Optional[float] = None,
    poll_timeout: Optional[float] = None,
    user_email: Optional[str] = None,
) -> CLIConfig:
    """Merge explicit options over environment variables over defaults."""
    url = base_url or os.getenv(_BASE_URL_ENV) or DEFAULT_BASE_URL
    return CLIConfig(
        base_url=url.rstrip("/"),
        poll_interval=(
            poll_interval
            if poll_interval is not None
            else _positive_float_env(_POLL_INTERVAL_ENV, DEFAULT_POLL_INTERVAL)
        ),
        poll_timeout=(
            poll_timeout
            if poll_timeout is not None
            else _positive_float_env(_TIMEOUT_ENV, DEFAULT_TIMEOUT)
        ),
        user_email=user_email or os.getenv(_USER_EMAIL_ENV) or None,
    )
