from __future__ import annotations

import logging
import sys
import time
from logging.handlers import TimedRotatingFileHandler

from inkwell.config import LoggingConfig

TRACE_LEVEL = 5
LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"
ROOT_LOGGER_NAME = "inkwell"

logging.addLevelName(TRACE_LEVEL, "TRACE")


def _build_formatter(config: LoggingConfig) -> logging.Formatter:
    formatter = logging.Formatter(LOG_FORMAT)
    if config.utc:
        formatter.converter = time.gmtime
    return formatter


def _file_handler(config: LoggingConfig) -> logging.Handler:
    config.directory.mkdir(parents=True, exist_ok=True)
    path = config.directory / config.filename
    if config.daily_rotation:
        return TimedRotatingFileHandler(
            path,
            when="midnight",
            backupCount=config.retention_days,
            encoding="utf-8",
            utc=config.utc,
        )
    return logging.FileHandler(path, encoding="utf-8")


def configure_logging(config: LoggingConfig) -> None:
    level = TRACE_LEVEL if config.level == "TRACE" else getattr(logging, config.level)
    formatter = _build_formatter(config)

    handlers: list[logging.Handler] = []
    if config.output in {"console", "both"}:
        handlers.append(logging.StreamHandler(sys.stdout))
    if config.output in {"file", "both"}:
        handlers.append(_file_handler(config))

    root = logging.getLogger(ROOT_LOGGER_NAME)
    for existing in list(root.handlers):
        root.removeHandler(existing)
        existing.close()
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)
    root.setLevel(level)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
