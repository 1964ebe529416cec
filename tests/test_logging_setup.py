from __future__ import annotations

import logging
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

from inkwell.config import LoggingConfig
from inkwell.logging_setup import ROOT_LOGGER_NAME, TRACE_LEVEL, configure_logging, get_logger


def _reset() -> None:
    configure_logging(LoggingConfig(output="console", level="INFO"))


def test_file_output_writes_rotating_log(tmp_path: Path) -> None:
    config = LoggingConfig(output="file", directory=tmp_path / "logs", retention_days=3)
    try:
        configure_logging(config)
        root = logging.getLogger(ROOT_LOGGER_NAME)
        handlers = root.handlers
        assert len(handlers) == 1
        assert isinstance(handlers[0], TimedRotatingFileHandler)
        assert handlers[0].backupCount == 3

        get_logger("inkwell.tests").info("written to file")
        handlers[0].flush()
        assert "written to file" in (tmp_path / "logs" / "inkwell.log").read_text(encoding="utf-8")
    finally:
        _reset()


def test_trace_level_is_registered() -> None:
    try:
        configure_logging(LoggingConfig(output="console", level="TRACE"))
        assert logging.getLevelName(TRACE_LEVEL) == "TRACE"
        assert logging.getLogger(ROOT_LOGGER_NAME).level == TRACE_LEVEL
    finally:
        _reset()


def test_reconfiguring_replaces_handlers(tmp_path: Path) -> None:
    try:
        configure_logging(LoggingConfig(output="both", directory=tmp_path, daily_rotation=False))
        configure_logging(LoggingConfig(output="both", directory=tmp_path, daily_rotation=False))
        assert len(logging.getLogger(ROOT_LOGGER_NAME).handlers) == 2
    finally:
        _reset()
