"""Bounded, newest-first audit trail of administrative activity."""
from __future__ import annotations

import secrets
import threading
import time
from collections import deque
from datetime import datetime, timezone
from typing import Callable, Deque, Dict, Iterator, List

from .models import AuditLogEntry

DEFAULT_LOG_CAPACITY = 100

SYSTEM_ACTOR = "SYSTEM"
ADMIN_ACTOR = "ADMIN"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _entry_id() -> str:
    return f"{time.time_ns() // 1_000_000:x}-{secrets.token_hex(4)}"


class AuditLog:
    """Keeps the most recent audit entries for the admin dashboard.

    Entries are stored newest first. Once the log holds ``capacity`` entries
    every append silently drops the oldest one; nothing is archived.
    """

    def __init__(
        self,
        *,
        capacity: int = DEFAULT_LOG_CAPACITY,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if capacity < 1:
            raise ValueError("Audit log capacity must be at least 1")
        self._entries: Deque[AuditLogEntry] = deque(maxlen=capacity)
        self._clock = clock
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._entries.maxlen or DEFAULT_LOG_CAPACITY

    def append(self, action: str, actor: str, details: str) -> AuditLogEntry:
        entry = AuditLogEntry(
            id=_entry_id(),
            timestamp=self._clock(),
            action=action.strip().upper(),
            actor=actor,
            details=details,
        )
        with self._lock:
            self._entries.appendleft(entry)
        return entry

    def entries(self) -> List[AuditLogEntry]:
        """Return the current entries, newest first."""

        with self._lock:
            return list(self._entries)

    def to_dicts(self) -> List[Dict[str, object]]:
        return [entry.to_dict() for entry in self.entries()]

    def __iter__(self) -> Iterator[AuditLogEntry]:
        return iter(self.entries())

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


__all__ = [
    "ADMIN_ACTOR",
    "AuditLog",
    "DEFAULT_LOG_CAPACITY",
    "SYSTEM_ACTOR",
]
