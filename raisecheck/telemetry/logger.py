"""Logging setup for the checker.

Checker modules log through ``get_logger(__name__)``: how each forwarding
function and closure was resolved goes out at DEBUG, one summary per checked
unit at INFO.  Everything sits under the ``raisecheck`` logger, which writes
terse ``LEVEL name: message`` lines to stderr so that diagnostics printed on
stdout stay machine readable.  ``configs/logging.yaml`` (or ``--log-config``)
replaces the defaults below; ``-v``/``-vv`` only move the level.
"""

from __future__ import annotations

import copy
import logging
import logging.config
from pathlib import Path
from threading import RLock
from typing import Any, Mapping

import yaml

ROOT_LOGGER = "raisecheck"

_CONFIG_LOCK = RLock()
_CONFIGURED = False

_DEFAULT_CONFIG: dict[str, Any] = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "checker": {"format": "%(levelname)s %(name)s: %(message)s"},
    },
    "handlers": {
        "stderr": {
            "class": "logging.StreamHandler",
            "stream": "ext://sys.stderr",
            "formatter": "checker",
        }
    },
    "loggers": {
        ROOT_LOGGER: {"level": "WARNING", "handlers": ["stderr"], "propagate": False},
    },
}

_ALLOWED_KEYS = ("version", "disable_existing_loggers", "formatters", "handlers", "root", "loggers")

_VERBOSITY_LEVELS = ("WARNING", "INFO", "DEBUG")


def _config_path() -> Path:
    return Path(__file__).resolve().parents[2] / "configs" / "logging.yaml"


def _load_config(path: Path | None = None) -> dict[str, Any]:
    config_path = path or _config_path()
    if not config_path.exists():
        return copy.deepcopy(_DEFAULT_CONFIG)
    try:
        data = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        logging.getLogger(ROOT_LOGGER).warning("ignoring unreadable %s: %s", config_path, exc)
        return copy.deepcopy(_DEFAULT_CONFIG)
    if not isinstance(data, Mapping):
        return copy.deepcopy(_DEFAULT_CONFIG)
    merged = copy.deepcopy(_DEFAULT_CONFIG)
    merged.update({k: v for k, v in data.items() if k in _ALLOWED_KEYS})
    return merged


def configure(path: Path | None = None, *, force: bool = False) -> None:
    """Apply the logging configuration once.

    ``force`` re-applies it, which the CLI does for ``--log-config``.
    """

    global _CONFIGURED
    with _CONFIG_LOCK:
        if _CONFIGURED and not force:
            return
        logging.config.dictConfig(_load_config(path))
        _CONFIGURED = True


def level_for_verbosity(verbose: int) -> str:
    """Map a count of ``-v`` flags to a level name."""

    return _VERBOSITY_LEVELS[max(0, min(verbose, len(_VERBOSITY_LEVELS) - 1))]


def set_level(level: int | str) -> None:
    """Adjust the ``raisecheck`` logger level."""

    configure()
    logging.getLogger(ROOT_LOGGER).setLevel(level)


def get_logger(name: str) -> logging.Logger:
    """Return a logger under the ``raisecheck`` hierarchy."""

    if not isinstance(name, str) or not name:
        raise ValueError("logger name must be a non-empty string")
    configure()
    return logging.getLogger(name)


__all__ = ["ROOT_LOGGER", "configure", "get_logger", "level_for_verbosity", "set_level"]
