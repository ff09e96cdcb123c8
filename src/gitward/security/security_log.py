"""
gitward — bounded security event log

File: src/gitward/security/security_log.py
Last updated: 2026-10-19

Purpose
- Forensic record of security-relevant rejections, held in a fixed-capacity ring buffer.

Functional requirements
- FIFO eviction once capacity is reached; the buffer never grows unbounded.
- Read-only snapshot and explicit clear for audit callers.
- Every entry is mirrored to the ``gitward.security`` logger so rejections are
  recorded even when nobody reads the buffer.

Non-functional requirements
- Append-and-evict is atomic across threads.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Final

DEFAULT_LOG_CAPACITY: Final[int] = 1000

_logger = logging.getLogger("gitward.security")


class SecurityEventLevel(str, Enum):
    """Severity recorded for one security event."""

    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"

    @property
    def logging_level(self) -> int:
        return int(getattr(logging, self.value))


@dataclass(frozen=True, slots=True)
class SecurityLogEntry:
    """One immutable security event."""

    level: SecurityEventLevel
    message: str
    path: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, str]:
        return {
            "timestamp": self.timestamp.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": self.level.value,
            "message": self.message,
            "path": self.path,
        }


class SecurityLog:
    """Thread-safe fixed-capacity ring buffer of :class:`SecurityLogEntry`."""

    __slots__ = ("_capacity", "_entries", "_lock", "_evicted")

    def __init__(self, capacity: int = DEFAULT_LOG_CAPACITY) -> None:
        if isinstance(capacity, bool) or not isinstance(capacity, int):
            raise TypeError("capacity must be an integer")
        if capacity <= 0:
            raise ValueError("capacity must be > 0")
        self._capacity = capacity
        self._entries: deque[SecurityLogEntry] = deque(maxlen=capacity)
        self._lock = threading.Lock()
        self._evicted = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def evicted(self) -> int:
        """Number of entries dropped by FIFO eviction since the last clear."""
        with self._lock:
            return self._evicted

    def record(
        self,
        level: SecurityEventLevel | str,
        message: str,
        path: str = "",
    ) -> SecurityLogEntry:
        entry = SecurityLogEntry(
            level=SecurityEventLevel(level),
            message=message,
            path=path,
        )
        with self._lock:
            if len(self._entries) == self._capacity:
                self._evicted += 1
            self._entries.append(entry)

        _logger.log(
            entry.level.logging_level,
            "security event: %s",
            message,
            extra={"security_path": path, "security_level": entry.level.value},
        )
        return entry

    def snapshot(self) -> tuple[SecurityLogEntry, ...]:
        with self._lock:
            return tuple(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._evicted = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


__all__ = [
    "DEFAULT_LOG_CAPACITY",
    "SecurityEventLevel",
    "SecurityLog",
    "SecurityLogEntry",
]
