"""Logging utilities for minibuild commands."""

from __future__ import annotations

import logging
from pathlib import Path

_LOGGER_NAME = "minibuild"
_CONSOLE_FORMAT = "[minibuild] %(levelname)s %(message)s"
_FILE_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def get_logger(name: str | None = None) -> logging.Logger:
    """Return a module-scoped logger under the minibuild hierarchy."""
    full_name = f"{_LOGGER_NAME}.{name}" if name else _LOGGER_NAME
    return logging.getLogger(full_name)


class CycleReportFormatter(logging.Formatter):
    """Indents continuation lines of multi-line ``Warning:`` and ``Error:`` reports."""

    def __init__(self, fmt: str = _CONSOLE_FORMAT, *, indent: str = "    ") -> None:
        super().__init__(fmt)
        self.indent = indent

    def format(self, record: logging.LogRecord) -> str:
        head, *rest = super().format(record).split("\n")
        lines = [head]
        lines.extend(f"{self.indent}{line}" if line.strip() else "" for line in rest)
        return "\n".join(lines)


def configure_logging(
    *, verbose: bool = False, log_file: Path | None = None
) -> logging.Logger:
    """Configure the minibuild logger with console output and an optional file sink."""
    level = logging.DEBUG if verbose else logging.INFO
    logger = logging.getLogger(_LOGGER_NAME)
    logger.setLevel(level)
    logger.propagate = False

    # Repeated calls replace handlers instead of stacking them.
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    stream_handler = logging.StreamHandler()
    stream_handler.setLevel(level)
    stream_handler.setFormatter(CycleReportFormatter())
    logger.addHandler(stream_handler)

    if log_file is not None:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(CycleReportFormatter(_FILE_FORMAT, indent="\t"))
        logger.addHandler(file_handler)

    return logger


__all__ = ["CycleReportFormatter", "configure_logging", "get_logger"]
