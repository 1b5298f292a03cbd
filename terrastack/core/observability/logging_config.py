"""
Logging configuration for the CLI.

``setup_logging()`` is called once by main.py; modules log through
``logging.getLogger(__name__)``.  Records emitted while a stack runs
carry that stack's path (``%(stack)s``), set with ``stack_context()``.

Console level precedence:
    CLI flag  >  TERRASTACK_LOG_LEVEL  >  WARNING

A log file is written when TERRASTACK_LOG_FILE is set, at
TERRASTACK_LOG_FILE_LEVEL (default: the console level).
"""

from __future__ import annotations

import logging
import os
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator

ENV_LOG_LEVEL = "TERRASTACK_LOG_LEVEL"
ENV_LOG_FILE = "TERRASTACK_LOG_FILE"
ENV_LOG_FILE_LEVEL = "TERRASTACK_LOG_FILE_LEVEL"

_current_stack: ContextVar[str] = ContextVar("terrastack_stack", default="")

# (format, datefmt) by the most verbose level they apply to
_CONSOLE_FORMATS = (
    (logging.DEBUG, "%(asctime)s %(levelname)-5s [%(stack)s] %(name)s:%(lineno)d  %(message)s", "%H:%M:%S"),
    (logging.INFO, "%(asctime)s [%(stack)s] %(message)s", "%H:%M:%S"),
)
_DEFAULT_FORMAT = "%(levelname)s: %(message)s"

_FILE_FORMAT = "%(asctime)s %(levelname)-5s [%(stack)s] %(name)s:%(lineno)d  %(message)s"
_FILE_DATEFMT = "%Y-%m-%d %H:%M:%S"


class StackContextFilter(logging.Filter):
    """Set ``record.stack`` to the stack being run, or ``-``."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.stack = _current_stack.get() or "-"
        return True


@contextmanager
def stack_context(path: str) -> Iterator[None]:
    """Tag every record logged inside the block with ``path``."""
    token = _current_stack.set(path)
    try:
        yield
    finally:
        _current_stack.reset(token)


def resolve_level(cli_level: str | None = None) -> str:
    if cli_level:
        return cli_level
    return os.environ.get(ENV_LOG_LEVEL) or "WARNING"


def setup_logging(
    level: str = "WARNING",
    log_file: str | None = None,
    log_file_level: str | None = None,
) -> None:
    """Replace the root handlers with a stderr handler (and a file handler).

    Args:
        level: Console level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
            Unknown names mean WARNING.
        log_file: Log file path (default: ``TERRASTACK_LOG_FILE``).
        log_file_level: File level (default: ``TERRASTACK_LOG_FILE_LEVEL``,
            then ``level``).
    """
    console_level = _parse_level(level)
    log_file = log_file or os.environ.get(ENV_LOG_FILE)
    log_file_level = log_file_level or os.environ.get(ENV_LOG_FILE_LEVEL)

    context = StackContextFilter()

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(_console_formatter(console_level))
    console.addFilter(context)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(console)
    root_level = console_level

    if log_file:
        file_level = _parse_level(log_file_level) if log_file_level else console_level
        handler = logging.FileHandler(log_file, encoding="utf-8")
        handler.setLevel(file_level)
        handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt=_FILE_DATEFMT))
        handler.addFilter(context)
        root.addHandler(handler)
        root_level = min(root_level, file_level)

    root.setLevel(root_level)

    # A closed stream must not turn a log call into a traceback
    logging.raiseExceptions = False


def _console_formatter(level: int) -> logging.Formatter:
    for threshold, fmt, datefmt in _CONSOLE_FORMATS:
        if level <= threshold:
            return logging.Formatter(fmt, datefmt=datefmt)
    return logging.Formatter(_DEFAULT_FORMAT)


def _parse_level(level: str | None) -> int:
    numeric = getattr(logging, (level or "").upper(), None)
    return numeric if isinstance(numeric, int) else logging.WARNING
