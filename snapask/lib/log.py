"""Structured logging for SnapAsk.

Everything logs through structlog with key/value context. Handlers bind
the request channel (and conversation id when known) with
``request_context`` so every line emitted while serving a request carries
them, including lines logged deep inside the store.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, TextIO

import structlog
from structlog._config import BoundLoggerLazyProxy
from structlog.types import Processor


class _StderrProxy:
    """Writes to whatever ``sys.stderr`` is at write time.

    PrintLoggerFactory keeps the file it was given; pytest's capture swaps
    sys.stderr per test, so the cached logger must not hold the old one.
    """

    def write(self, s: str) -> int:
        return sys.stderr.write(s)

    def flush(self) -> None:
        sys.stderr.flush()

    def isatty(self) -> bool:
        return sys.stderr.isatty()


_stderr_proxy: TextIO = _StderrProxy()  # type: ignore[assignment]


def _processors(json_logs: bool) -> list[Processor]:
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    if json_logs:
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))
    return processors


def configure_logging(verbose: bool = False, json_logs: bool = False, quiet: bool = False) -> None:
    """Configure structlog for the process.

    INFO by default, DEBUG with ``verbose``, WARNING with ``quiet`` (the CLI
    default, so log lines do not interleave with command output).
    ``json_logs`` switches the console renderer for one JSON object per line.
    """
    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.WARNING
    else:
        level = logging.INFO
    structlog.configure(
        processors=_processors(json_logs),
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=_stderr_proxy),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> Any:
    """Return a lazy logger that picks up ``configure_logging`` on first use."""
    if name is None:
        return structlog.get_logger()
    # ``structlog.get_logger(logger=name)`` collides with wrap_logger's own
    # ``logger`` parameter, so build the same lazy proxy directly.
    return BoundLoggerLazyProxy(None, logger_factory_args=(), initial_values={"logger": name})


@contextmanager
def request_context(channel: str, **fields: Any) -> Iterator[None]:
    """Bind ``channel`` and extra fields to every log line in this block."""
    with structlog.contextvars.bound_contextvars(channel=channel, **fields):
        yield


__all__ = ["configure_logging", "get_logger", "request_context"]
