import os
from typing import Any

from settings import SETTINGS


def _env_bool(name: str, default: bool) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return v.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    v = os.getenv(name)
    if v is None or not v.strip():
        return default
    return int(v.strip())


def _env_float(name: str, default: float) -> float:
    v = os.getenv(name)
    if v is None or not v.strip():
        return default
    return float(v.strip())


def get_setting(name: str) -> Any:
    """Return a setting, letting an environment variable of the same name win.

    The type of the default in ``SETTINGS`` decides how the env value is parsed.
    """

    default = SETTINGS[name]
    if isinstance(default, bool):
        return _env_bool(name, default)
    if isinstance(default, int):
        return _env_int(name, default)
    if isinstance(default, float):
        return _env_float(name, default)
    v = os.getenv(name)
    return v if v is not None and v.strip() else default


class Config:
    """Base configuration loaded from environment variables."""

    SECRET_KEY = os.getenv("SECRET_KEY", "dev-not-secret")

    # Feature flags
    ENABLE_ADMIN: bool = _env_bool("ENABLE_ADMIN", True)

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
