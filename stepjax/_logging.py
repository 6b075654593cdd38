"""Logging configuration for stepjax.

Provides two logging modes:
- Default: WARNING level only (quiet), so aborted or partially reported
  runs are visible and everything else is silent
- Tracing: DEBUG level, flushed after every record, optionally prefixed with
  memory stats and perf_counter stamps. Shows run start/end, every step cut
  and every Newton iteration.

Usage:
    from stepjax._logging import logger, enable_performance_logging

    logger.warning("This will show")
    logger.info("This won't show")

    enable_performance_logging()
    logger.info("Now this shows as: [CPU:12MB] message")

    enable_performance_logging(with_memory=False, with_perf_counter=True)
    logger.info("Now shows: [1234.567890] message")

    reset_logging()  # back to quiet
"""

import logging
import sys
import time
import tracemalloc
from typing import IO, Optional

import jax

logger = logging.getLogger("stepjax")

_PLAIN_FORMAT = "%(message)s"


def _get_memory_stats() -> str:
    """CPU (tracemalloc) and accelerator memory in use, as '[CPU:12MB gpu:300MB]'."""
    parts = []

    if tracemalloc.is_tracing():
        current, _ = tracemalloc.get_traced_memory()
        parts.append(f"CPU:{current / 1024 / 1024:.0f}MB")

    for dev in jax.devices():
        if dev.platform == "cpu":
            continue
        stats = dev.memory_stats()
        if stats and "bytes_in_use" in stats:
            parts.append(f"{dev.platform}:{stats['bytes_in_use'] / 1024 / 1024:.0f}MB")

    return f"[{' '.join(parts)}]" if parts else ""


class TracingFormatter(logging.Formatter):
    """Formatter that prefixes memory stats and/or a perf_counter stamp.

    The prefix is added at format time, so the record itself is left
    untouched for any other handler.
    """

    def __init__(self, with_memory: bool = False, with_perf_counter: bool = False):
        super().__init__(_PLAIN_FORMAT)
        self.with_memory = with_memory
        self.with_perf_counter = with_perf_counter

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        prefix = []
        if self.with_memory:
            mem_stats = _get_memory_stats()
            if mem_stats:
                prefix.append(mem_stats)
        if self.with_perf_counter:
            prefix.append(f"[{time.perf_counter():.6f}]")
        return " ".join(prefix + [message])


class FlushingHandler(logging.StreamHandler):
    """StreamHandler that flushes after every emit."""

    def emit(self, record):
        super().emit(record)
        self.flush()


def _replace_handlers(handler: logging.Handler, level: int):
    for old in logger.handlers[:]:
        logger.removeHandler(old)
    handler.setLevel(level)
    logger.addHandler(handler)
    logger.setLevel(level)


def reset_logging(stream: Optional[IO[str]] = None):
    """Restore the quiet default: WARNING and above, plain messages."""
    handler = logging.StreamHandler(stream if stream is not None else sys.stdout)
    handler.setFormatter(logging.Formatter(_PLAIN_FORMAT))
    _replace_handlers(handler, logging.WARNING)


def enable_performance_logging(
    with_memory: bool = True,
    with_perf_counter: bool = False,
    stream: Optional[IO[str]] = None,
):
    """Enable DEBUG level logging with immediate flush.

    Use this to follow a long run step by step: every attempted step,
    every cut and every Newton iteration is logged.

    Args:
        with_memory: If True, prepend CPU/accelerator memory stats to each log line.
        with_perf_counter: If True, prepend time.perf_counter() timestamps.
        stream: Output stream (default: sys.stdout)
    """
    if with_memory and not tracemalloc.is_tracing():
        tracemalloc.start()

    handler = FlushingHandler(stream if stream is not None else sys.stdout)
    handler.setFormatter(TracingFormatter(with_memory, with_perf_counter))
    _replace_handlers(handler, logging.DEBUG)


def set_log_level(level: int):
    """Set the logging level.

    Args:
        level: logging.DEBUG, logging.INFO, logging.WARNING, etc.
    """
    logger.setLevel(level)
    for handler in logger.handlers:
        handler.setLevel(level)


if not logger.handlers:
    reset_logging()
