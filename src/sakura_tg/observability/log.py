"""structlog setup."""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Any

import structlog

from sakura_tg.config.models import LoggingConfig

LOG_FILE_NAME = "sakura.log"
_FILE_HANDLER_NAME = "sakura-error-file"


def _install_error_file(log_dir: str | None) -> Path | None:
    root = logging.getLogger()
    for handler in list(root.handlers):
        if handler.get_name() == _FILE_HANDLER_NAME:
            root.removeHandler(handler)
            handler.close()
    if log_dir is None:
        return None

    directory = Path(log_dir)
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / LOG_FILE_NAME
    file_handler = logging.FileHandler(path, encoding="utf-8")
    file_handler.set_name(_FILE_HANDLER_NAME)
    file_handler.setLevel(logging.ERROR)
    file_handler.setFormatter(logging.Formatter("%(message)s"))
    root.addHandler(file_handler)
    return path


def configure_logging(config: LoggingConfig | None = None) -> Path | None:
    """Configure structlog on top of stdlib logging.

    Returns the error log file when ``log_dir`` is set.
    """
    config = config or LoggingConfig()
    level = logging.getLevelName(config.level.value.upper())

    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=level)
    logging.getLogger().setLevel(level)
    # httpx logs every request line, including the token-bearing URL
    logging.getLogger("httpx").setLevel(logging.WARNING)
    error_file = _install_error_file(config.log_dir)

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if config.json_output:
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.stdlib.LoggerFactory(),
    )
    return error_file
