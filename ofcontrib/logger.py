"""Default logger of the flagd provider."""

from __future__ import annotations

import logging
from enum import IntEnum
from typing import Any


class LogLevel(IntEnum):
    """Verbosity levels; higher is chattier."""

    WARN = 0
    INFO = 1
    DEBUG = 2


class ProviderLogger:
    """Logs errors always; other messages only up to the configured verbosity.

    With no verbosity set, only errors are emitted.
    """

    def __init__(self, verbosity: LogLevel | None = None, name: str = "ofcontrib.flagd") -> None:
        self.verbosity = verbosity
        self.logger = logging.getLogger(name)

    def _emit(self, level: LogLevel, log_level: int, msg: str, args: tuple[Any, ...]) -> None:
        if self.verbosity is not None and level <= self.verbosity:
            self.logger.log(log_level, msg, *args)

    def info(self, msg: str, *args: Any) -> None:
        self._emit(LogLevel.INFO, logging.INFO, msg, args)

    def debug(self, msg: str, *args: Any) -> None:
        self._emit(LogLevel.DEBUG, logging.DEBUG, msg, args)

    def warning(self, msg: str, *args: Any) -> None:
        self._emit(LogLevel.WARN, logging.WARNING, msg, args)

    def error(self, err: BaseException | str, msg: str = "") -> None:
        self.logger.error("flagd-provider: %s", err, extra={"context_message": msg})