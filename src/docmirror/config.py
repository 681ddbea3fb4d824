"""Environment-driven settings.

Every StoreRegistry argument left as None falls back to these values.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        return default
    return value if value >= 0 else default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = float(raw.strip())
    except ValueError:
        return default
    return value if value >= 0 else default


@dataclass(frozen=True)
class Settings:
    # Debounce window between the first unflushed mutation and its save
    update_delay_ms: int

    # Upper bound on the forced flush at interpreter exit, in seconds
    shutdown_grace: float

    # Where the local storage adapter keeps its files
    storage_dir: Path

    # Register the atexit flush when the default registry is created
    flush_at_exit: bool


def get_settings() -> Settings:
    return Settings(
        update_delay_ms=_env_int("DOCMIRROR_UPDATE_DELAY_MS", 100),
        shutdown_grace=_env_float("DOCMIRROR_SHUTDOWN_GRACE", 5.0),
        storage_dir=Path(os.getenv("DOCMIRROR_STORAGE_DIR", ".docmirror")),
        flush_at_exit=_env_bool("DOCMIRROR_FLUSH_AT_EXIT", True),
    )
