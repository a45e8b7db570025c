"""Log sink with levels and categories, backed by the logging module."""

from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Deque, Iterable, List, Optional, Union

TRACE = 5
logging.addLevelName(TRACE, "TRACE")

LEVELS = {
    "trace": TRACE,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "fatal": logging.CRITICAL,
}

LevelLike = Union[str, int]


def level_number(level: LevelLike) -> int:
    """Map a level name (``trace`` .. ``fatal``) or number to a logging level."""
    if isinstance(level, bool):
        raise ValueError(f"invalid log level {level!r}")
    if isinstance(level, int):
        return level
    key = str(level).strip().lower()
    if key in LEVELS:
        return LEVELS[key]
    if key.isdigit():
        return int(key)
    raise ValueError(f"unknown log level '{level}'")


def level_name(level: int) -> str:
    for name, number in LEVELS.items():
        if number == level and name != "warning":
            return name
    return logging.getLevelName(level).lower()


@dataclass
class LogEntry:
    seq: int
    ts: float
    level: str
    category: str
    message: str


class LogSink:
    """``log(level, message, category)`` capability used across the core.

    Each category is routed to the child logger ``<prefix>.<category>``.
    Entries are also kept in a bounded ring buffer so front-ends can show
    recent messages without attaching their own handler.
    """

    def __init__(
        self,
        *,
        level: LevelLike = "trace",
        categories: Iterable[str] = ("*",),
        buffer_size: int = 512,
        prefix: str = "mlsim",
    ) -> None:
        self.level = level_number(level)
        self.categories = set(categories)
        self.prefix = prefix
        self._buffer: Deque[LogEntry] = deque(maxlen=max(1, buffer_size))
        self._next_seq = 1

    def set_level(self, level: LevelLike) -> None:
        self.level = level_number(level)

    def add_category(self, category: str) -> None:
        self.categories.add(category)

    def remove_category(self, category: str) -> None:
        self.categories.discard(category)

    def logger(self, category: str) -> logging.Logger:
        return logging.getLogger(f"{self.prefix}.{category}")

    def _must_log(self, level: int, category: str) -> bool:
        if level < self.level:
            return False
        return "*" in self.categories or category in self.categories

    def log(self, level: LevelLike, message: str, category: str = "main") -> Optional[LogEntry]:
        number = level_number(level)
        if not self._must_log(number, category):
            return None
        entry = LogEntry(
            seq=self._next_seq,
            ts=time.time(),
            level=level_name(number),
            category=category,
            message=message,
        )
        self._next_seq += 1
        self._buffer.append(entry)
        self.logger(category).log(number, message)
        return entry

    def trace(self, message: str, category: str = "main") -> Optional[LogEntry]:
        return self.log(TRACE, message, category)

    def debug(self, message: str, category: str = "main") -> Optional[LogEntry]:
        return self.log(logging.DEBUG, message, category)

    def info(self, message: str, category: str = "main") -> Optional[LogEntry]:
        return self.log(logging.INFO, message, category)

    def warn(self, message: str, category: str = "main") -> Optional[LogEntry]:
        return self.log(logging.WARNING, message, category)

    def error(self, message: str, category: str = "main") -> Optional[LogEntry]:
        return self.log(logging.ERROR, message, category)

    def fatal(self, message: str, category: str = "main") -> Optional[LogEntry]:
        return self.log(logging.CRITICAL, message, category)

    def entries(self, limit: Optional[int] = None, *, category: Optional[str] = None) -> List[LogEntry]:
        items = [entry for entry in self._buffer if category is None or entry.category == category]
        if limit is None or limit <= 0 or limit >= len(items):
            return items
        return items[-limit:]

    def clear(self) -> None:
        self._buffer.clear()
