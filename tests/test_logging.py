"""Tests for minibuild.logging."""

from __future__ import annotations

import logging

from minibuild.logging import CycleReportFormatter, configure_logging, get_logger


def _record(message: str, level: int = logging.WARNING) -> logging.LogRecord:
    return logging.LogRecord("minibuild.report", level, __file__, 1, message, None, None)


def test_formatter_indents_report_blocks() -> None:
    formatter = CycleReportFormatter()

    output = formatter.format(_record("Warning:\n./source/app.js\nUnused export\n\ntrailing"))

    assert output.split("\n") == [
        "[minibuild] WARNING Warning:",
        "    ./source/app.js",
        "    Unused export",
        "",
        "    trailing",
    ]


def test_formatter_leaves_single_line_messages_alone() -> None:
    formatter = CycleReportFormatter(indent="\t")

    assert formatter.format(_record("compiled", logging.INFO)) == "[minibuild] INFO compiled"


def test_configure_logging_replaces_handlers(tmp_path) -> None:
    logger = configure_logging(verbose=True)
    configure_logging(verbose=False, log_file=tmp_path / "build.log")

    try:
        assert logger is get_logger()
        assert logger.level == logging.INFO
        assert len(logger.handlers) == 2
        assert all(isinstance(handler.formatter, CycleReportFormatter) for handler in logger.handlers)
        assert logger.propagate is False
    finally:
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()
        logger.propagate = True
