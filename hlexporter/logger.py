"""Levelled console logging with microsecond timestamps."""

from __future__ import annotations

import enum
import sys
import threading
from datetime import datetime


class Level(enum.IntEnum):
    """Severity levels, lowest first."""

    DEBUG = 0
    INFO = 1
    WARNING = 2
    ERROR = 3


_TIMESTAMP_FORMAT = "%Y/%m/%d %H:%M:%S.%f"

_threshold = Level.DEBUG
_lock = threading.Lock()


def set_log_level(level: str) -> None:
    """Set the minimum level that is written; the name is case-insensitive."""
    global _threshold
    try:
        new_level = Level[level.upper()]
    except KeyError:
        raise ValueError(f"invalid log level: {level}") from None
    with _lock:
        _threshold = new_level


def _emit(level: Level, message: str, args: tuple) -> None:
    if level < _threshold:
        return
    text = message % args if args else message
    timestamp = datetime.now().strftime(_TIMESTAMP_FORMAT)
    stream = sys.stderr if level is Level.ERROR else sys.stdout
    with _lock:
        print(f"{timestamp} {level.name} {text}", file=stream, flush=True)


def debug(message: str, *args: object) -> None:
    """Write a debug message, %-formatted with *args*."""
    _emit(Level.DEBUG, message, args)


def info(message: str, *args: object) -> None:
    """Write an informational message, %-formatted with *args*."""
    _emit(Level.INFO, message, args)


def warning(message: str, *args: object) -> None:
    """Write a warning, %-formatted with *args*."""
    _emit(Level.WARNING, message, args)


def error(message: str, *args: object) -> None:
    """Write an error to standard error, %-formatted with *args*."""
    _emit(Level.ERROR, message, args)