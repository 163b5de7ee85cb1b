"""Runtime logging configuration with bounded retention."""

from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path

DEFAULT_LOG_PATH = "work/logs/story_forge.log"

_CONFIGURED = False


def int_env(name: str, default: int, *, minimum: int, maximum: int) -> int:
    """Read an integer env var, clamped; malformed values fall back to default."""
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return max(minimum, min(maximum, value))


def _level(name: str, default: int) -> int:
    level_name = os.environ.get(name, "").strip().upper()
    level = logging.getLevelName(level_name) if level_name else default
    return level if isinstance(level, int) else default


def configure_runtime_logging() -> None:
    """Configure console + rotating file logs once per process."""
    global _CONFIGURED
    if _CONFIGURED:
        return

    level = _level("STORY_FORGE_LOG_LEVEL", logging.INFO)
    log_path = Path(os.environ.get("STORY_FORGE_LOG_PATH", "").strip() or DEFAULT_LOG_PATH)
    max_bytes = int_env(
        "STORY_FORGE_LOG_MAX_BYTES", 5 * 1024 * 1024, minimum=64 * 1024, maximum=100 * 1024 * 1024
    )
    backup_count = int_env("STORY_FORGE_LOG_BACKUP_COUNT", 10, minimum=1, maximum=120)

    log_path.parent.mkdir(parents=True, exist_ok=True)
    formatter = logging.Formatter(
        fmt="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S%z",
    )
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)

    file_handler = RotatingFileHandler(
        filename=log_path,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    file_handler.setFormatter(formatter)

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    root.addHandler(stream_handler)
    root.addHandler(file_handler)

    logging.getLogger("uvicorn.access").setLevel(
        _level("STORY_FORGE_ACCESS_LOG_LEVEL", logging.WARNING)
    )
    # httpx logs one INFO line per assistant provider request.
    logging.getLogger("httpx").setLevel(_level("STORY_FORGE_HTTPX_LOG_LEVEL", logging.WARNING))

    _CONFIGURED = True
