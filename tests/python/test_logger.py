"""Tests for the logging helpers."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from raisecheck.telemetry import logger


def test_get_logger_rejects_empty_names() -> None:
    with pytest.raises(ValueError):
        logger.get_logger("")


def test_get_logger_returns_named_logger() -> None:
    log = logger.get_logger("raisecheck.effects.checker")
    assert log.name == "raisecheck.effects.checker"


def test_configure_from_file(tmp_path: Path) -> None:
    path = tmp_path / "logging.yaml"
    path.write_text(
        "version: 1\nloggers:\n  raisecheck:\n    level: DEBUG\n    handlers: [stderr]\n",
        encoding="utf-8",
    )
    try:
        logger.configure(path, force=True)
        assert logging.getLogger("raisecheck").level == logging.DEBUG
    finally:
        logger.configure(force=True)
    assert logging.getLogger("raisecheck").level == logging.WARNING


def test_set_level() -> None:
    try:
        logger.set_level("INFO")
        assert logging.getLogger("raisecheck").level == logging.INFO
    finally:
        logger.set_level("WARNING")


@pytest.mark.parametrize(
    ("verbose", "level"),
    [(0, "WARNING"), (1, "INFO"), (2, "DEBUG"), (5, "DEBUG"), (-1, "WARNING")],
)
def test_level_for_verbosity(verbose, level) -> None:
    assert logger.level_for_verbosity(verbose) == level


def test_default_handler_writes_checker_lines() -> None:
    logger.configure(Path("/nonexistent/logging.yaml"), force=True)
    try:
        checker_logger = logging.getLogger(logger.ROOT_LOGGER)
        assert checker_logger.propagate is False
        (handler,) = checker_logger.handlers
        record = logging.LogRecord(
            "raisecheck.effects.checker", logging.INFO, __file__, 1, "checked %s", ("demo.rc",), None
        )
        assert handler.format(record) == "INFO raisecheck.effects.checker: checked demo.rc"
    finally:
        logger.configure(force=True)
