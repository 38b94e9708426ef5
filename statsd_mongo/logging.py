"""
Logging for the flush pipeline.

Context scoped logging on top of the stdlib `logging` module:
- namespace / collection of the metric being written are injected automatically
- scopes nest and the innermost one is shown
- timed operations log their duration and failures

Usage:
    from statsd_mongo.logging import get_logger, LogContext

    logger = get_logger(__name__)

    with LogContext.scope("insert", namespace="app", collection="gauges.cpu_10"):
        logger.info("Writing")  # ... [app/gauges.cpu_10:insert] Writing

    with LogContext.operation("flush", flush_time=1000):
        ...  # logs "flush completed in 0.012s"
"""

from __future__ import annotations
import asyncio
import contextvars
import logging
import os
import time
import traceback
from contextlib import contextmanager
from datetime import datetime
from enum import Enum, auto
from pathlib import Path
from typing import Any, Iterator


# =============================================================================
# Log levels
# =============================================================================


class LogLevel(Enum):
    DEBUG = auto()
    INFO = auto()
    WARNING = auto()
    ERROR = auto()

    def to_logging_level(self) -> int:
        return {
            LogLevel.DEBUG: logging.DEBUG,
            LogLevel.INFO: logging.INFO,
            LogLevel.WARNING: logging.WARNING,
            LogLevel.ERROR: logging.ERROR,
        }[self]


# =============================================================================
# Context variables
# =============================================================================

# Context properties (task local)
_log_context: contextvars.ContextVar[dict[str, Any]] = contextvars.ContextVar(
    "log_context", default={}
)

# Scope stack
_scope_stack: contextvars.ContextVar[list[str]] = contextvars.ContextVar(
    "scope_stack", default=[]
)


# =============================================================================
# LogContext
# =============================================================================


class LogContext:
    """
    Scoped log context.

    Properties set here are picked up by ContextFormatter. Each asyncio task
    gets its own copy, so concurrent inserts never see each other's context.
    """

    @classmethod
    def current_scope(cls) -> str | None:
        scopes = _scope_stack.get()
        return scopes[-1] if scopes else None

    @classmethod
    @contextmanager
    def scope(cls, name: str, **kwargs: Any) -> Iterator[None]:
        """
        Enter a named scope.

        Args:
            name: scope name
            **kwargs: extra context properties
        """
        current_stack = _scope_stack.get().copy()
        current_stack.append(name)
        stack_token = _scope_stack.set(current_stack)

        current_ctx = _log_context.get().copy()
        current_ctx.update(kwargs)
        ctx_token = _log_context.set(current_ctx)

        try:
            yield
        finally:
            _scope_stack.reset(stack_token)
            _log_context.reset(ctx_token)

    @classmethod
    @contextmanager
    def operation(
        cls,
        name: str,
        level: LogLevel = LogLevel.INFO,
        **kwargs: Any,
    ) -> Iterator[None]:
        """
        Timed operation scope.

        Logs completion time at `level`, failures at ERROR, and re-raises.
        """
        logger = get_logger("statsd_mongo.operation")
        t_start = time.time()

        with cls.scope(name, **kwargs):
            try:
                yield

                elapsed = time.time() - t_start
                logger.log(level.to_logging_level(), f"{name} completed in {elapsed:.3f}s")

            except asyncio.CancelledError:
                elapsed = time.time() - t_start
                logger.warning(f"{name} cancelled after {elapsed:.3f}s")
                raise
            except Exception as e:
                elapsed = time.time() - t_start
                logger.error(f"{name} failed after {elapsed:.3f}s: {e}")
                logger.debug(traceback.format_exc())
                raise


# =============================================================================
# Formatter
# =============================================================================


class ContextFormatter(logging.Formatter):
    """Adds `[namespace/collection:scope]` to every record as `%(ctx)s`."""

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:
        ct = datetime.fromtimestamp(record.created)
        if datefmt:
            # strftime has no portable %f
            return ct.strftime(datefmt.replace("%f", f"{ct.microsecond:06d}"))
        return ct.strftime("%Y-%m-%dT%H:%M:%S.") + f"{ct.microsecond:06d}"

    def format(self, record: logging.LogRecord) -> str:
        ctx = _log_context.get()

        target = ctx.get("namespace")
        if target and ctx.get("collection"):
            target = f"{target}/{self._truncate(ctx['collection'], 40)}"

        scope = LogContext.current_scope()

        if target and scope:
            ctx_str = f"[{target}:{scope}]"
        elif target:
            ctx_str = f"[{target}]"
        elif scope:
            ctx_str = f"[{scope}]"
        else:
            ctx_str = "[*]"

        record.ctx = ctx_str
        return super().format(record)

    @staticmethod
    def _truncate(value: str | None, max_len: int = 20) -> str:
        if not value:
            return ""
        if len(value) <= max_len:
            return value
        return value[:max_len - 3] + "..."


# =============================================================================
# Setup
# =============================================================================


_initialized = False


def setup_logging(
    log_dir: str | None = None,
    log_level: str = "INFO",
    console: bool = True,
    file: bool = False,
) -> str | None:
    """
    Configure the root logger.

    Args:
        log_dir: log directory, defaults to LOG_DIR or "logs"
        log_level: level name, LOG_LEVEL overrides it
        console: log to stderr
        file: log to `<log_dir>/<date>/<time>.log`

    Returns:
        Log file path when file output is enabled
    """
    global _initialized

    if _initialized:
        return None

    log_base_dir = log_dir or os.getenv("LOG_DIR", "logs")
    level_name = os.getenv("LOG_LEVEL", log_level).upper()
    level = getattr(logging, level_name, logging.INFO)

    # timestamp [level] [namespace/collection:scope] message
    log_format = "%(asctime)s [%(levelname)-8s] %(ctx)s %(message)s"
    date_format = "%Y-%m-%dT%H:%M:%S.%f"
    formatter = ContextFormatter(log_format, datefmt=date_format)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    log_file_path = None

    if console:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    if file:
        now = datetime.now()
        log_path = Path(log_base_dir) / now.strftime("%Y-%m-%d")
        log_path.mkdir(parents=True, exist_ok=True)

        log_file = log_path / (now.strftime("%H-%M-%S") + ".log")
        log_file_path = str(log_file)

        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    _initialized = True
    return log_file_path


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
