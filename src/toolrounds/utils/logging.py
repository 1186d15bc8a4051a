"""Logging setup for the toolrounds console host.

Everything goes to a rotating log file. Only warnings and errors reach the
terminal, on stderr, so they never interleave with streamed assistant text
on stdout.
"""

from __future__ import annotations

import logging
import logging.handlers
import os
import sys
from pathlib import Path

__all__ = ["setup_logging", "get_log_path"]

LOG_DIR_ENV = "TOOLROUNDS_LOG_DIR"
LOG_FILE_NAME = "toolrounds.log"
LOG_FORMAT = "%(asctime)s %(levelname)-7s [%(name)s] %(message)s"

_QUIET_LOGGERS = ("asyncio", "httpx", "httpcore", "openai")
_state: dict[str, Path] = {}


def setup_logging(
    level: int = logging.INFO,
    *,
    log_dir: Path | str | None = None,
    console: bool = True,
    max_bytes: int = 1_000_000,
    backup_count: int = 3,
    force: bool = False,
) -> Path:
    """Install root handlers once and return the log file path.

    Later calls are no-ops unless ``force`` is set. The directory comes from
    ``log_dir``, then ``$TOOLROUNDS_LOG_DIR``, then ``~/.toolrounds/logs``.
    """

    current = _state.get("path")
    if current is not None and not force:
        return current

    directory = Path(log_dir or os.environ.get(LOG_DIR_ENV) or Path.home() / ".toolrounds" / "logs")
    directory = directory.expanduser()
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / LOG_FILE_NAME

    formatter = logging.Formatter(LOG_FORMAT, datefmt="%H:%M:%S")
    file_handler = logging.handlers.RotatingFileHandler(
        path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
    )
    file_handler.setFormatter(formatter)
    handlers: list[logging.Handler] = [file_handler]
    if console:
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setLevel(max(level, logging.WARNING))
        stderr_handler.setFormatter(formatter)
        handlers.append(stderr_handler)

    logging.basicConfig(level=level, handlers=handlers, force=True)
    logging.captureWarnings(True)

    # Request-level chatter from the HTTP stack drowns out round logs.
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    _state["path"] = path
    return path


def get_log_path() -> Path | None:
    """The active log file, or None before :func:`setup_logging` runs."""

    return _state.get("path")
