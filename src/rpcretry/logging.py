"""Logging setup for the rpcretry logger hierarchy."""

from __future__ import annotations

import logging as py_logging
import sys
from pathlib import Path
from typing import TextIO

LOGGER_NAME = "rpcretry"
LOG_LEVELS = {
    "DEBUG": py_logging.DEBUG,
    "INFO": py_logging.INFO,
    "WARN": py_logging.WARNING,
    "WARNING": py_logging.WARNING,
    "ERROR": py_logging.ERROR,
}
DEFAULT_LOG_PATH = Path("~/.config/rpcretry/logs/rpcretry.log")
_FALLBACK_LOG_PATH = Path(".rpcretry/logs/rpcretry.log")
_FORMAT = "%(asctime)s %(levelname)s [%(threadName)s] %(name)s:%(lineno)d %(message)s"

py_logging.getLogger(LOGGER_NAME).addHandler(py_logging.NullHandler())


def resolve_level(level: str) -> int:
    return LOG_LEVELS.get(level.strip().upper(), py_logging.INFO)


def default_log_path() -> Path:
    try:
        resolved = DEFAULT_LOG_PATH.expanduser()
    except RuntimeError:
        return (Path.cwd() / _FALLBACK_LOG_PATH).resolve()
    if not resolved.is_absolute():
        resolved = resolved.resolve()
    return resolved


def _file_handler(log_file: str | Path, formatter: py_logging.Formatter) -> py_logging.Handler | None:
    try:
        log_path = Path(log_file).expanduser()
    except RuntimeError:
        log_path = Path(log_file)
    if not log_path.is_absolute():
        log_path = log_path.resolve()
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handler = py_logging.FileHandler(log_path, encoding="utf-8")
    except OSError:
        return None
    handler.setLevel(py_logging.DEBUG)
    handler.setFormatter(formatter)
    return handler


def configure_logging(
    level: str = "INFO",
    stream: TextIO | None = None,
    *,
    log_file: str | Path | None = None,
) -> py_logging.Logger:
    """Attach a stream handler (and optionally a DEBUG file handler) to ``rpcretry``.

    Calling it again replaces the handlers installed by the previous call.
    """
    resolved = resolve_level(level)
    logger = py_logging.getLogger(LOGGER_NAME)
    logger.setLevel(resolved)
    logger.handlers.clear()
    formatter = py_logging.Formatter(_FORMAT)

    handler = py_logging.StreamHandler(stream or sys.stderr)
    handler.setLevel(resolved)
    handler.setFormatter(formatter)
    logger.addHandler(handler)

    if log_file:
        file_handler = _file_handler(log_file, formatter)
        if file_handler is not None:
            logger.addHandler(file_handler)

    logger.propagate = False
    return logger


def configure_from_config(
    config: object,
    stream: TextIO | None = None,
    *,
    log_file: str | Path | None = None,
) -> py_logging.Logger:
    """Configure logging from any object with a ``log_level`` attribute (e.g. ``ClientConfig``)."""
    level = getattr(config, "log_level", "INFO")
    return configure_logging(str(level), stream, log_file=log_file)
