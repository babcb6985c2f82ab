"""Shared logging helpers and error types for the GVCF merger.

The module wires the ``gvcf_merger`` logger to a consistent timestamped format.
Importing it installs a console handler only; the command line calls
:func:`configure_logging` again to add a persistent log file next to the
output, or to silence the console.

:func:`configure_logging` is idempotent: each call clears the handlers
installed by the previous one, so repeated configuration never duplicates
output.

Errors are split in a small hierarchy rooted at :class:`MergeVCFError`.
:func:`handle_critical_error` logs fatal conditions at ``ERROR`` and
``CRITICAL`` level before raising, :func:`handle_non_critical_error` records
recoverable quirks as warnings.
"""
from __future__ import annotations

import logging
import os
from typing import Iterable

LOG_FILE = "merge_gvcf.log"
LOG_FORMAT = "%(asctime)s : %(levelname)s : %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

logger = logging.getLogger("gvcf_merger")
logger.propagate = False


def _normalize_level(level: int | str) -> int:
    """Return a numeric logging level for *level*."""
    if isinstance(level, str):
        name = level.upper()
        try:
            return logging._nameToLevel[name]  # type: ignore[attr-defined]
        except KeyError as exc:
            raise ValueError(f"Unknown log level: {level}") from exc
    return int(level)


def _clear_handlers(existing: Iterable[logging.Handler]) -> None:
    for h in list(existing):
        try:
            h.close()
        finally:
            logger.removeHandler(h)


def configure_logging(
    *,
    log_level: int | str = logging.INFO,
    log_file: str | os.PathLike[str] | None = None,
    enable_file_logging: bool = True,
    enable_console: bool = True,
    create_dirs: bool = True,
) -> None:
    """Idempotent logger setup for the GVCF merger.

    A file handler is only installed when *log_file* is given and
    *enable_file_logging* is true.
    """
    level = _normalize_level(log_level)
    _clear_handlers(logger.handlers)
    logger.setLevel(level)

    fmt = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    if enable_file_logging and log_file:
        path = os.fspath(log_file)
        if create_dirs:
            d = os.path.dirname(path)
            if d:
                os.makedirs(d, exist_ok=True)
        fh = logging.FileHandler(path)
        fh.setFormatter(fmt)
        logger.addHandler(fh)

    if enable_console:
        sh = logging.StreamHandler()
        sh.setFormatter(fmt)
        logger.addHandler(sh)


class MergeVCFError(RuntimeError):
    """Base exception for unrecoverable errors in the merge workflow."""


class MalformedRecordError(MergeVCFError):
    """Raised when an input line breaks the GVCF format contract."""


class ConsistencyError(MergeVCFError):
    """Raised when the inputs disagree with each other or are unusable."""


class MergeConflictError(MergeVCFError):
    """Raised when records that must be identical for a merge are not."""


def log_message(
    message: str,
    verbose: bool = False,
    level: int = logging.INFO,
    *,
    exc_info: BaseException | bool | None = None,
) -> None:
    """Log *message* at the requested level and optionally echo it to stdout."""

    logger.log(level, message, exc_info=exc_info)
    if verbose:
        print(message)


def handle_critical_error(
    message: str,
    exc_cls=None,
    *,
    exc_info: BaseException | bool | None = None,
) -> None:
    """Log and raise a fatal error."""

    log_message(message, level=logging.ERROR)
    logger.critical(message, exc_info=exc_info)
    exception_class = exc_cls or MergeVCFError
    if isinstance(exc_info, BaseException):
        raise exception_class(message) from exc_info
    raise exception_class(message)


def handle_non_critical_error(message: str) -> None:
    """Log a recoverable error."""

    log_message(message, level=logging.WARNING)


__all__ = [
    "LOG_FILE",
    "configure_logging",
    "logger",
    "log_message",
    "handle_critical_error",
    "handle_non_critical_error",
    "MergeVCFError",
    "MalformedRecordError",
    "ConsistencyError",
    "MergeConflictError",
]

# Default configuration: console only at INFO level.
configure_logging(enable_file_logging=False)
