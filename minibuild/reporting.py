"""Build log sink and per-cycle compile reporting."""

from __future__ import annotations

import logging
import os
import re
import sys
import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, List, Mapping, NoReturn

from .logging import get_logger
from .models import CompileStats

HOSTED_ENV_VAR = "MINIBUILD_ENV"
HOSTED_ENV_VALUE = "hosted"

# Emitted for every require() with a variable argument; never actionable.
_BENIGN_WARNING_RE = re.compile(r"Critical dependency: the request of a dependency is an expression")
_ANSI_RE = re.compile(r"\x1b\[[0-9;]*[A-Za-z]")


@dataclass
class LogBatch:
    """Entries removed from a :class:`BuildLog` by one drain."""

    info: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.info or self.warnings or self.errors)


class BuildLog:
    """Ordered info/warning/error queues filled by compiler collaborators."""

    def __init__(self) -> None:
        self._info: Deque[str] = deque()
        self._warnings: Deque[str] = deque()
        self._errors: Deque[str] = deque()

    def info(self, message: str) -> None:
        self._info.append(message)

    def warning(self, message: str) -> None:
        self._warnings.append(message)

    def error(self, message: str) -> None:
        self._errors.append(message)

    def drain(self) -> LogBatch:
        """Remove and return everything queued so far."""
        batch = LogBatch()
        while self._info:
            batch.info.append(self._info.popleft())
        while self._warnings:
            batch.warnings.append(self._warnings.popleft())
        while self._errors:
            batch.errors.append(self._errors.popleft())
        return batch

    def __len__(self) -> int:
        return len(self._info) + len(self._warnings) + len(self._errors)


def clean_log(message: str) -> str:
    """Strip terminal escape codes and surrounding whitespace."""
    return _ANSI_RE.sub("", str(message)).strip()


def is_benign_warning(message: str) -> bool:
    return bool(_BENIGN_WARNING_RE.search(message))


def is_hosted_environment(environ: Mapping[str, str]) -> bool:
    return environ.get(HOSTED_ENV_VAR, "").strip().lower() == HOSTED_ENV_VALUE


def exit_process(code: int) -> NoReturn:
    """Terminate the whole process with ``code``, whichever thread reports.

    Watch cycles are reported on watcher threads, where :func:`sys.exit` would
    only end the reporting thread.
    """
    if threading.current_thread() is threading.main_thread():
        sys.exit(code)
    for handler in (*logging.getLogger().handlers, *get_logger().handlers):
        handler.flush()
    sys.stdout.flush()
    sys.stderr.flush()
    os._exit(code)


class Reporter:
    """Writes build logs and compile results through the minibuild logger.

    Under hosted mode the first reported error terminates the process.
    """

    def __init__(
        self,
        *,
        silent: bool = False,
        hosted: bool = False,
        logger: logging.Logger | None = None,
        exit: Callable[[int], NoReturn] = exit_process,
    ) -> None:
        self.silent = silent
        self.hosted = hosted
        self.logger = logger or get_logger("report")
        self._exit = exit

    def report_log(self, log: BuildLog) -> LogBatch:
        batch = log.drain()
        if batch.info:
            self.logger.info("\n".join(batch.info))
        if not self.silent:
            for message in batch.warnings:
                self.logger.warning(clean_log(message))
        for message in batch.errors:
            self.logger.error(clean_log(message))
        if batch.errors and self.hosted:
            self._exit(1)
        return batch

    def report_stats(self, stats: CompileStats) -> None:
        if stats.has_warnings() and not self.silent:
            for message in stats.warnings:
                if is_benign_warning(message):
                    continue
                self.logger.warning("Warning:\n%s", clean_log(message))
        if stats.has_errors():
            for message in stats.errors:
                self.logger.error("Error:\n%s", clean_log(message))
                if self.hosted:
                    self._exit(1)


__all__ = [
    "BuildLog",
    "HOSTED_ENV_VAR",
    "LogBatch",
    "Reporter",
    "clean_log",
    "exit_process",
    "is_benign_warning",
    "is_hosted_environment",
]
